"""
Tests for configuration loading.
"""

import json

import pytest
from pydantic import ValidationError

from jmap_mcp.config import JmapConfig, config_from_env, config_from_file, load_config


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Run with an empty working directory and home so no real config is found."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    return tmp_path


def write_config(path, **data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestJmapConfig:

    def test_trailing_slash_is_removed(self):
        config = JmapConfig(base_url="https://jmap.example.com/", username="alice", password="secret")
        assert config.base_url == "https://jmap.example.com"

    def test_aliases_are_accepted(self):
        config = JmapConfig.model_validate({
            "baseUrl": "https://jmap.example.com",
            "username": "alice",
            "password": "secret",
            "accountId": "acc9",
            "identityId": "",
        })
        assert config.account_id == "acc9"
        assert config.identity_id is None

    def test_non_http_url_is_rejected(self):
        with pytest.raises(ValidationError):
            JmapConfig(base_url="jmap.example.com", username="alice", password="secret")

    def test_empty_password_is_rejected(self):
        with pytest.raises(ValidationError):
            JmapConfig(base_url="https://jmap.example.com", username="alice", password="")

    @pytest.mark.parametrize("base_url, username, expected", [
        ("https://mail.example.com", "alice", "alice@example.com"),
        ("https://jmap.example.com:8443", "alice", "alice@jmap.example.com"),
        ("https://mail.example.com", "alice@example.org", "alice@example.org"),
    ])
    def test_sender_address(self, base_url, username, expected):
        config = JmapConfig(base_url=base_url, username=username, password="secret")
        assert config.sender_address == expected


class TestLoadConfig:

    def test_environment_wins(self, isolated):
        write_config(isolated / "jmap-config.json",
                     baseUrl="https://file.example.com", username="file", password="x")

        config = load_config({
            "JMAP_BASE_URL": "https://env.example.com",
            "JMAP_USERNAME": "env",
            "JMAP_PASSWORD": "y",
            "JMAP_TIMEOUT": "5",
        })

        assert config.base_url == "https://env.example.com"
        assert config.timeout == 5.0

    def test_incomplete_environment_is_ignored(self):
        assert config_from_env({"JMAP_BASE_URL": "https://env.example.com"}) is None

    def test_falls_back_to_working_directory_file(self, isolated):
        write_config(isolated / "jmap-config.json",
                     baseUrl="https://file.example.com", username="file", password="x")

        config = load_config({})

        assert config.base_url == "https://file.example.com"
        assert config.username == "file"

    def test_explicit_path_comes_first(self, isolated):
        write_config(isolated / "jmap-config.json",
                     baseUrl="https://cwd.example.com", username="cwd", password="x")
        explicit = write_config(isolated / "custom.json",
                                baseUrl="https://custom.example.com", username="custom", password="x")

        config = load_config({"JMAP_CONFIG_PATH": str(explicit)})

        assert config.username == "custom"

    def test_invalid_file_is_skipped(self, isolated):
        broken = isolated / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        write_config(isolated / "jmap-config.json",
                     baseUrl="https://cwd.example.com", username="cwd", password="x")

        config = load_config({"JMAP_CONFIG_PATH": str(broken)})

        assert config.username == "cwd"

    def test_nothing_found(self, isolated):
        assert load_config({}) is None

    def test_config_from_file_validates(self, isolated):
        path = write_config(isolated / "bad.json", baseUrl="ftp://x", username="a", password="b")

        with pytest.raises(ValidationError):
            config_from_file(path)
