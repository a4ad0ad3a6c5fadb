"""Narrow forum-channel interface over discord.py used by the reconciler."""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

import discord

from .outcomes import DEFAULT_RETRY_AFTER_SEC, PlatformError, classify_exception

if TYPE_CHECKING:
    from .render import RenderedPost

log = logging.getLogger("c1c.guild_sync.gateway")

AUTO_ARCHIVE_MINUTES = 60
MESSAGE_SCAN_LIMIT = 50

# discord.RateLimited is raised instead of sleeping once a wait exceeds
# the client's max_ratelimit_timeout.
_PLATFORM_ERRORS = (discord.HTTPException, discord.RateLimited)


@dataclass(frozen=True)
class ThreadRef:
    """Read-only view of a forum thread: enough to correlate and delete it."""

    id: int
    title: str
    created_at: Optional[datetime]
    channel_id: int
    handle: Any = field(default=None, compare=False, repr=False)

    @property
    def normalized_title(self) -> str:
        return (self.title or "").strip().lower()


class ForumGateway(Protocol):
    async def ensure_forums(self, channel_ids: Sequence[int]) -> None: ...

    async def list_active_threads(self, channel_id: int) -> list[ThreadRef]: ...

    async def create_thread(
        self, channel_id: int, title: str, post: "RenderedPost", *, reason: str
    ) -> ThreadRef: ...

    async def delete_thread(self, thread: ThreadRef, *, reason: str) -> None: ...

    async def fetch_messages(self, thread: ThreadRef) -> list[str]: ...


class ForumChannelMissing(LookupError):
    """Configured channel does not exist or is not a forum."""


class DiscordForumGateway:
    """:class:`ForumGateway` backed by a live discord.py client."""

    def __init__(
        self,
        bot: discord.Client,
        *,
        default_retry_after: float = DEFAULT_RETRY_AFTER_SEC,
        call_timeout: float = 10.0,
    ) -> None:
        self.bot = bot
        self.default_retry_after = default_retry_after
        self.call_timeout = call_timeout

    def _failure(self, exc: BaseException, operation: str):
        return classify_exception(
            exc, operation=operation, default_retry_after=self.default_retry_after
        )

    async def _forum(self, channel_id: int) -> discord.ForumChannel:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            try:
                channel = await asyncio.wait_for(
                    self.bot.fetch_channel(channel_id), self.call_timeout
                )
            except (discord.NotFound, discord.Forbidden) as exc:
                raise ForumChannelMissing(f"channel {channel_id} unavailable: {exc}") from exc
            except (*_PLATFORM_ERRORS, asyncio.TimeoutError) as exc:
                raise PlatformError(self._failure(exc, "fetch channel")) from exc
        if not isinstance(channel, discord.ForumChannel):
            raise ForumChannelMissing(f"channel {channel_id} is not a forum channel")
        return channel

    async def ensure_forums(self, channel_ids: Sequence[int]) -> None:
        for channel_id in channel_ids:
            await self._forum(channel_id)

    async def list_active_threads(self, channel_id: int) -> list[ThreadRef]:
        forum = await self._forum(channel_id)
        try:
            threads = await forum.guild.active_threads()
        except _PLATFORM_ERRORS as exc:
            raise PlatformError(self._failure(exc, "list threads")) from exc
        return [_to_ref(thread) for thread in threads if thread.parent_id == forum.id]

    async def create_thread(
        self, channel_id: int, title: str, post: "RenderedPost", *, reason: str
    ) -> ThreadRef:
        forum = await self._forum(channel_id)
        files = [
            discord.File(io.BytesIO(item.data), filename=item.filename)
            for item in post.attachments
        ]
        kwargs: dict[str, Any] = {
            "name": title,
            "auto_archive_duration": AUTO_ARCHIVE_MINUTES,
            "reason": reason,
        }
        if post.content:
            kwargs["content"] = post.content
        if post.embed is not None:
            kwargs["embed"] = post.embed
        if files:
            kwargs["files"] = files
        try:
            created = await forum.create_thread(**kwargs)
        except _PLATFORM_ERRORS as exc:
            raise PlatformError(self._failure(exc, "create thread")) from exc
        return _to_ref(created.thread)

    async def delete_thread(self, thread: ThreadRef, *, reason: str) -> None:
        target = thread.handle
        if target is None:
            target = self.bot.get_channel(thread.id)
        if target is None:
            missing = LookupError(f"thread {thread.id} not cached")
            raise PlatformError(self._failure(missing, "delete thread"))
        try:
            await target.delete(reason=reason)
        except discord.NotFound:
            log.debug("thread already gone", extra={"thread_id": thread.id})
        except _PLATFORM_ERRORS as exc:
            raise PlatformError(self._failure(exc, "delete thread")) from exc

    async def fetch_messages(self, thread: ThreadRef) -> list[str]:
        target = thread.handle or self.bot.get_channel(thread.id)
        if target is None:
            return []
        try:
            return [
                message.content or ""
                async for message in target.history(limit=MESSAGE_SCAN_LIMIT)
            ]
        except _PLATFORM_ERRORS as exc:
            raise PlatformError(self._failure(exc, "fetch messages")) from exc


def _to_ref(thread: discord.Thread) -> ThreadRef:
    return ThreadRef(
        id=thread.id,
        title=thread.name,
        created_at=thread.created_at,
        channel_id=thread.parent_id,
        handle=thread,
    )
