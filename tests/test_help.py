from __future__ import annotations

import pytest

from gatekeeper.cogs.help import HelpHandlers
from gatekeeper.cogs.moderation import ModerationHandlers
from gatekeeper.cogs.tickets import TicketHandlers
from gatekeeper.security.roles import StaffDirectory
from gatekeeper.testing.fakes import FakeModerationActions, InMemoryTicketRepository, make_ctx
from gatekeeper.tickets import TicketLifecycle


@pytest.fixture
def registered(dispatcher, audit, clock):
    lifecycle = TicketLifecycle(InMemoryTicketRepository(), StaffDirectory(), audit=audit, clock=clock)
    for handlers in (
        ModerationHandlers(FakeModerationActions(), audit),
        TicketHandlers(lifecycle, audit),
        HelpHandlers(dispatcher.registry),
    ):
        for descriptor, handler in handlers.commands():
            dispatcher.registry.register(descriptor, handler)
    return dispatcher


@pytest.mark.asyncio
async def test_help_groups_commands_by_category(registered, repo) -> None:
    outcome = await registered.invoke(make_ctx("help", community=None))
    assert outcome.ok
    lines = outcome.message.splitlines()

    headers = [line for line in lines if line.startswith(("🛡️", "🎫", "🔧"))]
    assert headers == ["🛡️ **Moderation**", "🎫 **Tickets**", "🔧 **Utility**"]
    assert "`/clear`: Bulk delete recent messages in this channel. (5s cooldown)" in lines
    assert "`/ticket_create`: Open a support ticket. (30s cooldown)" in lines

    moderation = lines.index("🛡️ **Moderation**")
    tickets = lines.index("🎫 **Tickets**")
    assert [line.split("`")[1] for line in lines[moderation + 1 : tickets - 1]] == [
        "/ban",
        "/cases",
        "/clear",
        "/kick",
        "/timeout",
        "/warn",
    ]
    assert repo.action_types() == ["help"]


@pytest.mark.asyncio
async def test_help_for_one_command(registered) -> None:
    outcome = await registered.invoke(make_ctx("help", community=None, options={"command": "/BAN"}))
    assert outcome.ok
    assert outcome.message.startswith("📋 **/ban**")
    assert "Requires: Ban Members" in outcome.message
    assert "Cooldown: 3 seconds" in outcome.message


@pytest.mark.asyncio
async def test_help_for_unknown_command(registered, repo) -> None:
    outcome = await registered.invoke(make_ctx("help", community=None, options={"command": "nope"}))
    assert outcome.outcome == "error"
    assert "Command not found" in outcome.message
    assert repo.action_types() == ["FAILED:help"]
