from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock, MagicMock, Mock

import discord
import pytest

from gatekeeper.logging_setup import setup_logging
from gatekeeper.notifier import DirectMessageNotifier
from gatekeeper.observability import EventKind, LogLevel, ObservabilityManager


def test_counters_by_kind() -> None:
    obs = ObservabilityManager()
    obs.log_command("ban", "10", "100", duration_ms=12.5, case_id="X")
    obs.log_command("ban", "11", "100")
    obs.log_denial("ban", "12", "cooldown", "100")
    obs.log_error("kick", "10", KeyError("k"), "UnclassifiedException", "100")

    metrics = obs.get_metrics()
    assert metrics["command_counts"] == {"ban": 2}
    assert metrics["denial_counts"] == {"cooldown": 1}
    assert metrics["error_counts"] == {"KeyError:kick": 1}


def test_structured_payload_is_json(caplog) -> None:
    obs = ObservabilityManager()
    with caplog.at_level(logging.INFO, logger="gatekeeper.observability"):
        obs.log_structured(LogLevel.INFO, EventKind.STARTUP, "ready", details={"commands": 3})
    line = caplog.records[-1].getMessage()
    assert line.startswith("[startup] ready | ")
    payload = json.loads(line.split(" | ", 1)[1])
    assert payload["kind"] == "startup"
    assert payload["details"] == {"commands": 3}


def test_setup_logging_is_idempotent() -> None:
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        setup_logging("DEBUG")
        setup_logging("INFO")
        ours = [h for h in root.handlers if getattr(h, "_gatekeeper", False)]
        assert len(ours) == 1
        assert root.level == logging.INFO
        assert logging.getLogger("discord").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)
        root.setLevel(level)
        logging.getLogger("discord").setLevel(logging.NOTSET)
        logging.getLogger("discord.http").setLevel(logging.NOTSET)


@pytest.mark.asyncio
async def test_direct_messages_are_sent_in_background() -> None:
    user = MagicMock()
    user.send = AsyncMock()
    bot = MagicMock()
    bot.get_user.return_value = user

    notifier = DirectMessageNotifier(bot)
    notifier.notify("42", "hello")
    await notifier.drain()
    user.send.assert_awaited_once_with("hello")


@pytest.mark.asyncio
async def test_closed_direct_messages_are_ignored() -> None:
    user = MagicMock()
    user.send = AsyncMock(side_effect=discord.Forbidden(Mock(status=403, reason="Forbidden"), "closed"))
    bot = MagicMock()
    bot.get_user.return_value = None
    bot.fetch_user = AsyncMock(return_value=user)

    notifier = DirectMessageNotifier(bot)
    notifier.notify("42", "hello")
    await notifier.drain()
    bot.fetch_user.assert_awaited_once_with(42)


def test_notify_without_loop_is_dropped() -> None:
    notifier = DirectMessageNotifier(MagicMock())
    notifier.notify("42", "hello")
