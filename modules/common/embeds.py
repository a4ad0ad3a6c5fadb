from __future__ import annotations

"""Shared helpers for Discord embeds."""

from typing import Literal

import discord


EmbedCategory = Literal["admin", "listing"]

_COLOURS: dict[EmbedCategory, discord.Colour] = {
    "admin": discord.Colour(0xF200E5),
    "listing": discord.Colour(0x0099FF),
}

# Discord embed limits.
MAX_FIELDS = 25
MAX_FIELD_NAME = 256
MAX_FIELD_VALUE = 1024


def get_embed_colour(category: EmbedCategory) -> discord.Colour:
    """Return the embed colour for the given category."""

    return _COLOURS.get(category, discord.Colour.default())


__all__ = [
    "EmbedCategory",
    "MAX_FIELDS",
    "MAX_FIELD_NAME",
    "MAX_FIELD_VALUE",
    "get_embed_colour",
]
