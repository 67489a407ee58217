from __future__ import annotations

import pytest

from gatekeeper.config import Settings, load_settings
from gatekeeper.errors import ValidationError
from gatekeeper.security.roles import StaffTier

ENV_KEYS = (
    "DISCORD_TOKEN",
    "OWNER_IDS",
    "MODERATOR_IDS",
    "SUPPORT_CAN_MANAGE_TICKETS",
    "DEFAULT_COOLDOWN_SECONDS",
    "COMMAND_COOLDOWNS",
    "AUDIT_STREAMS",
    "RATE_LIMIT_DEFAULT_LIMIT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults() -> None:
    settings = Settings()
    assert settings.default_cooldown_seconds == 3
    assert settings.owner_ids == frozenset()
    assert settings.cooldown_for("anything") == 3
    assert settings.default_rate_limit.limit >= 1


def test_from_mapping_rejects_unknown_keys() -> None:
    with pytest.raises(ValidationError) as info:
        Settings.from_mapping({"owner_ids": "1", "prefix": "!"})
    assert "prefix" in str(info.value)


def test_from_mapping_parses_strings() -> None:
    settings = Settings.from_mapping(
        {
            "owner_ids": "1, 2,,",
            "moderator_ids": ["3"],
            "command_cooldowns": "ban:10, clear:5",
            "audit_streams": {"100": 555},
        }
    )
    assert settings.owner_ids == frozenset({"1", "2"})
    assert settings.staff.tier_of("3") is StaffTier.MODERATOR
    assert settings.cooldown_for("ban", 3) == 10
    assert settings.cooldown_for("kick", 3) == 3
    assert settings.audit_streams == {"100": "555"}


@pytest.mark.parametrize(
    "options",
    [
        {"audit_streams": "100"},
        {"command_cooldowns": "ban:soon"},
        {"command_cooldowns": "ban:-1"},
        {"default_cooldown_seconds": -1},
        {"rate_limit_default_limit": 0},
        {"persistence_timeout_seconds": 0},
    ],
)
def test_invalid_values(options) -> None:
    with pytest.raises(ValidationError):
        Settings.from_mapping(options)


def test_load_settings_requires_token() -> None:
    with pytest.raises(RuntimeError):
        load_settings()


def test_load_settings_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("DISCORD_TOKEN", "abc")
    monkeypatch.setenv("OWNER_IDS", "1,2")
    monkeypatch.setenv("MODERATOR_IDS", "5")
    monkeypatch.setenv("SUPPORT_CAN_MANAGE_TICKETS", "yes")
    monkeypatch.setenv("DEFAULT_COOLDOWN_SECONDS", "not-a-number")
    monkeypatch.setenv("COMMAND_COOLDOWNS", "ban:7")
    monkeypatch.setenv("AUDIT_STREAMS", "100:555")

    settings = load_settings()
    assert settings.token == "abc"
    assert settings.owner_ids == frozenset({"1", "2"})
    assert settings.staff.tier_of("1") is StaffTier.OWNER
    assert settings.support_can_manage_tickets is True
    assert settings.default_cooldown_seconds == 3
    assert settings.cooldown_for("ban") == 7
    assert settings.audit_streams == {"100": "555"}


def test_from_mapping_coerces_scalars() -> None:
    settings = Settings.from_mapping(
        {
            "default_cooldown_seconds": "5",
            "rate_limit_default_window_ms": 30_000.0,
            "persistence_timeout_seconds": "2.5",
            "support_can_manage_tickets": "yes",
            "sync_guild_id": " 42 ",
            "log_level": " DEBUG ",
        }
    )
    assert settings.default_cooldown_seconds == 5
    assert settings.rate_limit_default_window_ms == 30_000
    assert settings.persistence_timeout_seconds == 2.5
    assert settings.support_can_manage_tickets is True
    assert settings.sync_guild_id == 42
    assert settings.log_level == "DEBUG"
    assert Settings.from_mapping({"support_can_manage_tickets": "off"}).support_can_manage_tickets is False


@pytest.mark.parametrize(
    "options",
    [
        {"default_cooldown_seconds": "soon"},
        {"default_cooldown_seconds": 1.5},
        {"rate_limit_default_limit": True},
        {"persistence_timeout_seconds": "fast"},
        {"support_can_manage_tickets": "maybe"},
    ],
)
def test_from_mapping_rejects_unparseable_scalars(options) -> None:
    with pytest.raises(ValidationError) as info:
        Settings.from_mapping(options)
    assert info.value.field == next(iter(options))
