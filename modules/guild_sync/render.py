"""Turn a spreadsheet entry into a forum post: title, embed and attachments."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Mapping, Optional, Sequence

import discord

from modules.common.embeds import (
    MAX_FIELD_NAME,
    MAX_FIELD_VALUE,
    MAX_FIELDS,
    get_embed_colour,
)

from .columns import ColumnKind, Entry, SheetLayout, cell, classify_column
from .images import ImageAttachment, ImageFetcher

log = logging.getLogger("c1c.guild_sync.render")

EMBED_TITLE = "Guild Details"
FALLBACK_TITLE = "No Title"
MAX_TITLE_LENGTH = 100
# Leaves room for the brackets and a scope inside MAX_TITLE_LENGTH.
MAX_NAME_LENGTH = 80
ZERO_WIDTH_NAME = "\u200b"
ELLIPSIS = "..."

CLASS_EMOTES: dict[str, str] = {
    "[Warrior]": "<:wa_i:1281118860514164759>",
    "[Mage]": "<:ma_i:1281118847151247424>",
    "[Warlock]": "<:wl_i:1281118899232051241>",
    "[Hunter]": "<:hu_i:1281118845460807690>",
    "[Rogue]": "<:ro_i:1281118853887295498>",
    "[Druid]": "<:dr_i:1281118706424090654>",
    "[Priest]": "<:pr_i:1281118852440133666>",
    "[Paladin]": "<:pa_i:1281118849793659043>",
    "[Shaman]": "<:sh_i:1281118855401574410>",
    "[Monk]": "<:mo_i:1281118848598413414>",
    "[Evoker]": "<:ev_i:1281118844001452086>",
    "[Demon Hunter]": "<:dh_i:1281118841027563550>",
    "[Death Knight]": "<:dk_i:1281118842512478319>",
}

ROLE_EMOTES: dict[str, str] = {
    "Tank": "<:t_i:1275165468164096192>",
    "Healer": "<:h_i:1275165466872250388>",
    "DPSMelee": "<:md_i:1275165464086970409>",
    "DPSRanged": "<:rd_i:1275165465374752860>",
}

# Letters (accented included), digits, whitespace and hyphens survive.
_TITLE_STRIP_RE = re.compile(r"[^\w\s-]|_")

__all__ = [
    "CLASS_EMOTES",
    "ListingRenderer",
    "ROLE_EMOTES",
    "RenderedPost",
    "match_key",
    "sanitize_title",
    "truncate_value",
]


def _clean(text: str | None) -> str:
    return _TITLE_STRIP_RE.sub("", text or "").strip()


def _clean_name(guild_name: str | None) -> str:
    return _clean(guild_name)[:MAX_NAME_LENGTH].rstrip()


def sanitize_title(guild_name: str | None, scope: str | None) -> str:
    """Build the ``<Name> - Scope`` thread title."""

    name = _clean_name(guild_name)
    kind = _clean(scope)
    if not name and not kind:
        return FALLBACK_TITLE
    return f"<{name}> - {kind}"[:MAX_TITLE_LENGTH]


def match_key(guild_name: str | None) -> str:
    """Lower-cased guild name as it appears inside a sanitized title.

    Long names are clamped the same way :func:`sanitize_title` clamps them.
    Names made only of stripped characters fall back to the raw lower-cased
    name so they never match every title.
    """

    cleaned = _clean_name(guild_name).lower()
    return cleaned or (guild_name or "").strip().lower()


def truncate_value(value: str, limit: int = MAX_FIELD_VALUE) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - len(ELLIPSIS)] + ELLIPSIS


@dataclass
class RenderedPost:
    title: str
    embed: Optional[discord.Embed]
    content: str = ""
    attachments: list[ImageAttachment] = field(default_factory=list)


class ListingRenderer:
    """Render entries using one guild's header configuration."""

    def __init__(
        self,
        *,
        excluded_header: str = "",
        image_header: str = "",
        image_fetcher: Optional[ImageFetcher] = None,
        class_emotes: Mapping[str, str] = CLASS_EMOTES,
        role_emotes: Mapping[str, str] = ROLE_EMOTES,
        clock: Callable[[], datetime] = discord.utils.utcnow,
    ) -> None:
        self.excluded_header = excluded_header
        self.image_header = image_header
        self.image_fetcher = image_fetcher
        self.class_emotes = class_emotes
        self.role_emotes = role_emotes
        self.clock = clock

    def class_role_line(self, header: str, value: str) -> str:
        label = self.class_emotes.get(header, header)
        roles = [token.strip() for token in value.split(",") if token.strip()]
        rendered = " ".join(self.role_emotes.get(role, role) for role in roles)
        return f"{label} {rendered}".strip()

    def build_fields(
        self, layout: SheetLayout, row: Sequence[str]
    ) -> list[tuple[str, str]]:
        """Ordered ``(name, value)`` pairs: generic fields, class/role lines,
        then Discord Link and Discord Contact."""

        generic: list[tuple[str, str]] = []
        class_lines: list[tuple[str, str]] = []
        link: Optional[str] = None
        contact: Optional[str] = None

        for index, raw_header in enumerate(layout.headers):
            if index == layout.timestamp:
                continue
            header = raw_header.strip()
            value = cell(row, index)
            if not header or not value:
                continue
            kind = classify_column(
                header,
                excluded_header=self.excluded_header,
                image_header=self.image_header,
            )
            if kind in (ColumnKind.EXCLUDED, ColumnKind.IMAGE):
                continue
            if kind is ColumnKind.BRACKETED:
                line = truncate_value(self.class_role_line(header, value))
                class_lines.append((ZERO_WIDTH_NAME, line))
            elif kind is ColumnKind.DISCORD_LINK:
                link = truncate_value(value)
            elif kind is ColumnKind.DISCORD_CONTACT:
                contact = truncate_value(value)
            else:
                generic.append((header[:MAX_FIELD_NAME], truncate_value(value)))

        trailing: list[tuple[str, str]] = []
        if link:
            trailing.append(("Discord Link", link))
        if contact:
            trailing.append(("Discord Contact", contact))

        body = generic + class_lines
        budget = MAX_FIELDS - len(trailing)
        if len(body) > budget:
            log.warning(
                "embed field cap reached; dropping %d field(s)",
                len(body) - budget,
                extra={"dropped": len(body) - budget},
            )
            body = body[:budget]
        return body + trailing

    def build_embed(self, layout: SheetLayout, row: Sequence[str]) -> discord.Embed:
        embed = discord.Embed(
            title=EMBED_TITLE,
            colour=get_embed_colour("listing"),
            timestamp=self.clock(),
        )
        for name, value in self.build_fields(layout, row):
            embed.add_field(name=name, value=value, inline=False)
        return embed

    async def _attachments(self, layout: SheetLayout, entry: Entry) -> list[ImageAttachment]:
        if self.image_fetcher is None or layout.image is None:
            return []
        url = cell(entry.cells, layout.image)
        if not url:
            return []
        try:
            image = await self.image_fetcher.fetch(url)
        except Exception:
            log.exception("image fetch failed", extra={"url": url, "guild": entry.guild_name})
            return []
        return [image] if image is not None else []

    async def render(self, layout: SheetLayout, entry: Entry) -> RenderedPost:
        return RenderedPost(
            title=sanitize_title(entry.guild_name, entry.scope),
            embed=self.build_embed(layout, entry.cells),
            attachments=await self._attachments(layout, entry),
        )
