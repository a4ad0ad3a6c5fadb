from __future__ import annotations

import asyncio
import logging
import os

import discord
from discord.ext import commands

from shared.config import (
    get_command_prefix,
    get_discord_token,
    get_env_name,
)
from shared.redaction import sanitize_text
from shared import health as healthmod
from modules.common.logs import guild_label
from modules.common.runtime import Runtime

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger("c1c.app")

INTENTS = discord.Intents.default()
INTENTS.message_content = True

BANG_PREFIX = get_command_prefix()
# Longer waits raise discord.RateLimited instead of sleeping in the HTTP client.
MAX_RATELIMIT_WAIT_SEC = 30.0

bot = commands.Bot(
    command_prefix=commands.when_mentioned_or(BANG_PREFIX),
    intents=INTENTS,
    max_ratelimit_timeout=MAX_RATELIMIT_WAIT_SEC,
)

runtime = Runtime(bot)


@bot.event
async def on_ready():
    healthmod.set_component("discord", True)
    log.info(
        'Bot ready as %s | env=%s | prefixes=["%s", "@mention"] | guilds=%s',
        bot.user,
        get_env_name(),
        BANG_PREFIX,
        ", ".join(guild_label(g) for g in bot.guilds) or "-",
    )
    if runtime.start_guild_sync():
        await runtime.send_log_message(
            f"🟢 **GuildSync** — online • env={get_env_name()} • guilds={len(bot.guilds)}"
        )


@bot.event
async def on_resumed():
    healthmod.set_component("discord", True)


@bot.event
async def on_disconnect():
    healthmod.set_component("discord", False)


@bot.event
async def on_command_error(ctx: commands.Context, error: Exception):
    if isinstance(error, commands.CommandNotFound):
        return
    if ctx.cog is not None and ctx.cog.has_error_handler():
        return
    log.warning(
        "cmd error: cmd=%s user=%s err=%r",
        getattr(ctx.command, "qualified_name", None),
        getattr(ctx.author, "id", None),
        error,
    )
    try:
        await runtime.send_log_message(
            f"⚠️ **Command** — cmd={getattr(ctx.command, 'qualified_name', None) or '-'}"
            f" • user={getattr(ctx.author, 'id', '-')} • reason={sanitize_text(str(error))}"
        )
    except Exception:
        log.exception("failed to send command error to log channel")


async def main() -> None:
    token = get_discord_token()
    try:
        await runtime.start(token)
    finally:
        await runtime.close()


if __name__ == "__main__":
    asyncio.run(main())
