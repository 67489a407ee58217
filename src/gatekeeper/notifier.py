from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

import discord

log = logging.getLogger("gatekeeper.notifier")


@runtime_checkable
class Notifier(Protocol):
    def notify(self, user_id: str, message: str) -> None:
        """Schedule delivery and return immediately. Never raises."""
        ...


class NullNotifier:
    def notify(self, user_id: str, message: str) -> None:
        return None


class DirectMessageNotifier:
    """Direct messages sent in background tasks; delivery failures are ignored."""

    def __init__(self, bot: discord.Client) -> None:
        self.bot = bot
        self._pending: set[asyncio.Task[None]] = set()

    def notify(self, user_id: str, message: str) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(str(user_id), message[:2000]))
        except RuntimeError:
            log.debug("no running loop; dropping notification for %s", user_id)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, user_id: str, message: str) -> None:
        try:
            user = self.bot.get_user(int(user_id)) or await self.bot.fetch_user(int(user_id))
            await user.send(message)
        except asyncio.CancelledError:
            raise
        except (discord.Forbidden, discord.NotFound):
            log.debug("cannot DM user %s", user_id)
        except discord.HTTPException as e:
            log.debug("DM to %s failed: %s", user_id, e)
        except ValueError:
            log.debug("not a user id: %r", user_id)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
