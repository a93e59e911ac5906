"""
Contact Tools - ContactCard operations via JMAP for Contacts.

Cards are JSContact (RFC 9553) objects. Emails, phones and addresses are
passed through as given, keyed e1/p1/a1..., with omitted optional fields
set to empty values.
"""

import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING, Union

from .client import back_reference
from .errors import CreateError, UpdateError, ValidationError, describe_set_error

if TYPE_CHECKING:
    from .client import JmapClient

logger = logging.getLogger(__name__)

CARD_PROPERTIES = [
    "id", "addressBookIds", "name", "emails", "phones",
    "addresses", "organizations", "notes", "updated",
]

Entry = Union[str, Dict[str, Any]]


def _keyed(prefix: str, items: Optional[List[Entry]], value_key: str, type_name: str) -> Dict[str, Dict[str, Any]]:
    result = {}
    for i, item in enumerate(items or [], start=1):
        entry = {"@type": type_name, value_key: "", "label": ""}
        if isinstance(item, str):
            entry[value_key] = item
        else:
            entry.update(item)
        result[f"{prefix}{i}"] = entry
    return result


def build_card_fields(
    full_name: Optional[str] = None,
    emails: Optional[List[Entry]] = None,
    phones: Optional[List[Entry]] = None,
    addresses: Optional[List[Entry]] = None,
    organization: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """JSContact properties for the arguments that were given."""
    fields: Dict[str, Any] = {}
    if full_name is not None:
        fields["name"] = {"@type": "Name", "full": full_name}
    if emails is not None:
        fields["emails"] = _keyed("e", emails, "address", "EmailAddress")
    if phones is not None:
        fields["phones"] = _keyed("p", phones, "number", "Phone")
    if addresses is not None:
        fields["addresses"] = _keyed("a", addresses, "full", "Address")
    if organization is not None:
        fields["organizations"] = {"o1": {"@type": "Organization", "name": organization}}
    if notes is not None:
        fields["notes"] = {"n1": {"@type": "Note", "note": notes}}
    return fields


class ContactTools:
    """Contact operations via JMAP."""

    def __init__(self, client: "JmapClient"):
        self.client = client

    async def list_address_books(self) -> Dict[str, Any]:
        return await self.client.call("AddressBook/get", {"ids": None}, "addressBooks")

    async def list_contacts(self, address_book_id: Optional[str] = None, limit: int = 50) -> Dict[str, Any]:
        filter_ = {"inAddressBook": address_book_id} if address_book_id else {}
        return await self._query_and_get(filter_, limit)

    async def search_contacts(self, query: str, limit: int = 20) -> Dict[str, Any]:
        """Free-text search over names, emails, phones and addresses."""
        if not query:
            raise ValidationError("query is required")
        return await self._query_and_get({"text": query}, limit)

    async def get_contact(self, contact_id: str) -> Dict[str, Any]:
        return await self.client.call("ContactCard/get", {"ids": [contact_id]}, "contact")

    async def create_contact(
        self,
        address_book_id: str,
        full_name: str,
        emails: Optional[List[Entry]] = None,
        phones: Optional[List[Entry]] = None,
        addresses: Optional[List[Entry]] = None,
        organization: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a contact card.

        Args:
            address_book_id: Address book to place the card in
            full_name: Display name
            emails: Addresses as strings or EmailAddress objects
            phones: Numbers as strings or Phone objects
            addresses: Postal addresses as strings or Address objects
            organization: Company name
            notes: Free-form note

        Returns:
            Dict with ``contactId`` and the raw set result
        """
        if not address_book_id or not full_name:
            raise ValidationError("address_book_id and full_name are required")

        card = {
            "@type": "Card",
            "version": "1.0",
            "addressBookIds": {address_book_id: True},
            **build_card_fields(
                full_name,
                emails or [],
                phones or [],
                addresses or [],
                organization,
                notes,
            ),
        }

        result = await self.client.call("ContactCard/set", {"create": {"contact": card}}, "createContact")
        error = (result.get("notCreated") or {}).get("contact")
        if error:
            raise CreateError(f"Failed to create contact: {describe_set_error(error)}")
        created = (result.get("created") or {}).get("contact")
        if not created:
            raise CreateError("Contact creation failed - no created object returned")

        logger.info(f"Created contact {created['id']}: {full_name}")
        return {"contactId": created["id"], "response": result}

    async def update_contact(
        self,
        contact_id: str,
        full_name: Optional[str] = None,
        emails: Optional[List[Entry]] = None,
        phones: Optional[List[Entry]] = None,
        addresses: Optional[List[Entry]] = None,
        organization: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Replace the given properties of a card; omitted ones are left alone."""
        patch = build_card_fields(full_name, emails, phones, addresses, organization, notes)
        if not patch:
            raise ValidationError("No fields provided to update")

        result = await self.client.call("ContactCard/set", {"update": {contact_id: patch}}, "updateContact")
        error = (result.get("notUpdated") or {}).get(contact_id)
        if error:
            raise UpdateError(f"Failed to update contact {contact_id}: {describe_set_error(error)}")

        return {"contactId": contact_id, "updatedFields": list(patch.keys()), "response": result}

    async def delete_contacts(self, contact_ids: List[str]) -> Dict[str, Any]:
        if not contact_ids:
            raise ValidationError("contactIds must contain at least one id")
        return await self.client.call("ContactCard/set", {"destroy": list(contact_ids)}, "deleteContacts")

    async def _query_and_get(self, filter_: Dict[str, Any], limit: int) -> Dict[str, Any]:
        session = await self.client.ensure_session()
        responses = await self.client.request([
            ["ContactCard/query", {
                "accountId": session.account_id,
                "filter": filter_,
                "limit": limit,
            }, "query"],
            ["ContactCard/get", {
                "accountId": session.account_id,
                "#ids": back_reference("query", "ContactCard/query"),
                "properties": CARD_PROPERTIES,
            }, "contacts"],
        ])
        return {
            "query": self.client.result_of(responses, 0, "ContactCard/query"),
            "contacts": self.client.result_of(responses, 1, "ContactCard/get"),
        }
