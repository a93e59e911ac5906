"""
Calendar Tools - CalendarEvent operations via JMAP for Calendars.

Events use JSCalendar (RFC 8984) objects; ids are always server ids.
"""

import logging
from datetime import timezone
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from dateutil import parser as date_parser
from dateutil import tz

from .client import back_reference
from .errors import CreateError, UpdateError, ValidationError, describe_set_error

if TYPE_CHECKING:
    from .client import JmapClient

logger = logging.getLogger(__name__)

EVENT_PROPERTIES = [
    "id", "calendarIds", "title", "description", "start", "duration",
    "timeZone", "showWithoutTime", "locations", "participants", "status",
]

UTC_TIME_ZONE = "Etc/UTC"


def local_datetime(value: str, time_zone: Optional[str] = None) -> Tuple[str, Optional[str]]:
    """
    Normalize a user datetime to a JSCalendar LocalDateTime and its time zone.

    A value with an offset is converted into ``time_zone``, or to UTC with
    time zone ``Etc/UTC`` when none is given. A naive value is taken as
    wall-clock time in ``time_zone`` (floating if omitted).

    Raises:
        ValidationError: if ``time_zone`` is not a known IANA name
    """
    parsed = date_parser.parse(value)
    target = None
    if time_zone:
        target = tz.gettz(time_zone)
        if target is None:
            raise ValidationError(f"Unknown time zone: {time_zone}")

    if parsed.tzinfo is not None:
        if target is not None:
            parsed = parsed.astimezone(target)
        else:
            parsed = parsed.astimezone(timezone.utc)
            time_zone = UTC_TIME_ZONE
    return parsed.replace(tzinfo=None).isoformat(timespec="seconds"), time_zone


def utc_datetime(value: str) -> str:
    """Normalize a user datetime to a UTCDate string for query filters."""
    parsed = date_parser.parse(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed.isoformat(timespec="seconds") + "Z"


def build_participants(participants: Optional[List[Dict[str, Any]]]) -> Dict[str, Dict[str, Any]]:
    """
    Key participants p1, p2, ... and fill omitted optional fields.

    Each entry is passed through; only ``name``, ``roles`` and the
    ``sendTo`` imip address derived from ``email`` are defaulted.
    """
    result = {}
    for i, participant in enumerate(participants or [], start=1):
        entry = {"@type": "Participant", "name": "", "roles": {"attendee": True}}
        entry.update(participant)
        email = entry.pop("email", None)
        if email and "sendTo" not in entry:
            entry["sendTo"] = {"imip": f"mailto:{email}"}
        result[f"p{i}"] = entry
    return result


class CalendarTools:
    """Calendar operations via JMAP."""

    def __init__(self, client: "JmapClient"):
        self.client = client

    async def list_calendars(self) -> Dict[str, Any]:
        return await self.client.call("Calendar/get", {"ids": None}, "calendars")

    async def list_events(
        self,
        calendar_id: Optional[str] = None,
        after: Optional[str] = None,
        before: Optional[str] = None,
        limit: int = 50,
    ) -> Dict[str, Any]:
        """
        List events, earliest first.

        Args:
            calendar_id: Only events in this calendar
            after: Only events ending after this time (ISO format)
            before: Only events starting before this time (ISO format)
            limit: Maximum number of events to return

        Returns:
            Dict with the raw ``query`` and ``events`` results
        """
        filter_: Dict[str, Any] = {}
        if calendar_id:
            filter_["inCalendar"] = calendar_id
        if after:
            filter_["after"] = utc_datetime(after)
        if before:
            filter_["before"] = utc_datetime(before)

        session = await self.client.ensure_session()
        responses = await self.client.request([
            ["CalendarEvent/query", {
                "accountId": session.account_id,
                "filter": filter_,
                "sort": [{"property": "start", "isAscending": True}],
                "limit": limit,
            }, "query"],
            ["CalendarEvent/get", {
                "accountId": session.account_id,
                "#ids": back_reference("query", "CalendarEvent/query"),
                "properties": EVENT_PROPERTIES,
            }, "events"],
        ])
        return {
            "query": self.client.result_of(responses, 0, "CalendarEvent/query"),
            "events": self.client.result_of(responses, 1, "CalendarEvent/get"),
        }

    async def get_event(self, event_id: str) -> Dict[str, Any]:
        return await self.client.call("CalendarEvent/get", {"ids": [event_id]}, "event")

    async def create_event(
        self,
        calendar_id: str,
        title: str,
        start: str,
        duration: str = "PT1H",
        time_zone: Optional[str] = None,
        description: str = "",
        location: str = "",
        participants: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """
        Create an event.

        Args:
            calendar_id: Calendar to place the event in
            title: Event title
            start: Start time (ISO format); an offset is converted into time_zone
            duration: ISO 8601 duration (default: PT1H)
            time_zone: IANA time zone name; floating time if omitted, Etc/UTC if start has an offset
            description: Event description
            location: Location name
            participants: Participant objects; ``email`` is turned into sendTo

        Returns:
            Dict with ``eventId`` and the raw set result

        Raises:
            CreateError: if the server did not create the event
        """
        if not calendar_id or not title or not start:
            raise ValidationError("calendar_id, title and start are required")
        local_start, event_time_zone = local_datetime(start, time_zone)

        event: Dict[str, Any] = {
            "@type": "Event",
            "calendarIds": {calendar_id: True},
            "title": title,
            "description": description,
            "start": local_start,
            "duration": duration,
            "timeZone": event_time_zone,
        }
        if location:
            event["locations"] = {"l1": {"@type": "Location", "name": location}}
        if participants:
            event["participants"] = build_participants(participants)

        result = await self.client.call("CalendarEvent/set", {"create": {"event": event}}, "createEvent")
        error = (result.get("notCreated") or {}).get("event")
        if error:
            raise CreateError(f"Failed to create event: {describe_set_error(error)}")
        created = (result.get("created") or {}).get("event")
        if not created:
            raise CreateError("Event creation failed - no created object returned")

        logger.info(f"Created event {created['id']}: {title}")
        return {"eventId": created["id"], "response": result}

    async def update_event(
        self,
        event_id: str,
        title: Optional[str] = None,
        start: Optional[str] = None,
        duration: Optional[str] = None,
        time_zone: Optional[str] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Patch only the provided fields of an event."""
        patch: Dict[str, Any] = {}
        if title is not None:
            patch["title"] = title
        if start is not None:
            local_start, start_time_zone = local_datetime(start, time_zone)
            patch["start"] = local_start
            if start_time_zone is not None:
                patch["timeZone"] = start_time_zone
        if duration is not None:
            patch["duration"] = duration
        if time_zone is not None:
            patch["timeZone"] = time_zone
        if description is not None:
            patch["description"] = description
        if location is not None:
            patch["locations"] = {"l1": {"@type": "Location", "name": location}}

        if not patch:
            raise ValidationError("No fields provided to update")

        result = await self.client.call("CalendarEvent/set", {"update": {event_id: patch}}, "updateEvent")
        error = (result.get("notUpdated") or {}).get(event_id)
        if error:
            raise UpdateError(f"Failed to update event {event_id}: {describe_set_error(error)}")

        return {"eventId": event_id, "updatedFields": list(patch.keys()), "response": result}

    async def delete_events(self, event_ids: List[str]) -> Dict[str, Any]:
        if not event_ids:
            raise ValidationError("eventIds must contain at least one id")
        return await self.client.call("CalendarEvent/set", {"destroy": list(event_ids)}, "deleteEvents")
