"""Server-admin commands for configuring and driving the guild listing sync."""

from __future__ import annotations

import logging
from typing import Optional

import discord
from discord.ext import commands

from modules.common import runtime as runtime_helpers
from modules.common.embeds import get_embed_colour
from modules.common.logs import channel_label
from modules.guild_sync.cycle import GuildSyncCycle
from modules.guild_sync.settings import GuildSettings
from shared.config import get_similarity_threshold
from shared.redaction import sanitize_text, sheet_tail

log = logging.getLogger("c1c.guild_sync.admin")

MAX_CAP = 50
MAX_CLUSTER_LINES = 20

USAGE = (
    "Usage: !guildsync channels <alliance> <horde> <mod> • "
    "!guildsync sheet <spreadsheet_id> <range> [image_header] [excluded_header] • "
    "!guildsync timers <repost_hours> <max_entry_days> • !guildsync cap <n> • "
    "!guildsync show • !guildsync run • !guildsync similar <forum>"
)


def _settings_embed(guild: discord.Guild, settings: GuildSettings) -> discord.Embed:
    embed = discord.Embed(title="Guild sync settings", colour=get_embed_colour("admin"))
    embed.add_field(
        name="Forums",
        value="\n".join(
            [
                f"Alliance: {channel_label(guild, settings.alliance_channel_id)}",
                f"Horde: {channel_label(guild, settings.horde_channel_id)}",
                f"Moderation: {channel_label(guild, settings.mod_channel_id)}",
            ]
        ),
        inline=False,
    )
    embed.add_field(
        name="Spreadsheet",
        value="\n".join(
            [
                f"Sheet: {sheet_tail(settings.spreadsheet_id) if settings.spreadsheet_id else 'unset'}",
                f"Range: {settings.sheet_range or 'unset'}",
                f"Image column: {settings.image_column_header or '-'}",
                f"Excluded column: {settings.excluded_column_header or '-'}",
            ]
        ),
        inline=False,
    )
    embed.add_field(
        name="Timers",
        value=(
            f"Repost after: {settings.thread_age_limit_hours:g}h\n"
            f"Entry expires after: {settings.max_entry_age_days:g}d\n"
            f"New threads per cycle: {settings.max_new_threads_per_cycle}"
        ),
        inline=False,
    )
    missing = settings.missing_fields()
    status = "ready" if not missing else "incomplete • missing=" + ", ".join(missing)
    embed.set_footer(text=f"Status: {status}")
    return embed


class GuildSyncAdmin(commands.Cog):
    """Setup and manual controls for the spreadsheet to forum sync."""

    def __init__(self, bot: commands.Bot, *, cycle: Optional[GuildSyncCycle] = None) -> None:
        self.bot = bot
        if cycle is None:
            runtime = runtime_helpers.get_active_runtime()
            cycle = runtime.cycle if runtime is not None else GuildSyncCycle(bot)
        self.cycle = cycle

    @property
    def store(self):
        return self.cycle.store

    async def cog_check(self, ctx: commands.Context) -> bool:
        if ctx.guild is None:
            raise commands.NoPrivateMessage()
        perms = getattr(ctx.author, "guild_permissions", None)
        if perms is None or not perms.manage_guild:
            raise commands.MissingPermissions(["manage_guild"])
        return True

    async def cog_command_error(self, ctx: commands.Context, error: Exception) -> None:
        if isinstance(error, (commands.MissingPermissions, commands.NoPrivateMessage)):
            await ctx.reply("You need Manage Server in this server to do that.", mention_author=False)
            return
        if isinstance(error, (commands.BadArgument, commands.MissingRequiredArgument)):
            await ctx.reply(f"{error}\n{USAGE}", mention_author=False)
            return
        log.warning(
            "guildsync command failed",
            extra={"command": getattr(ctx.command, "qualified_name", None), "error": repr(error)},
        )
        await ctx.reply("Something went wrong; check the logs.", mention_author=False)

    @commands.group(
        name="guildsync",
        invoke_without_command=True,
        help="Configure and drive the recruitment spreadsheet to forum sync.",
    )
    async def guildsync(self, ctx: commands.Context) -> None:
        if ctx.invoked_subcommand is not None:
            return
        await ctx.reply(USAGE, mention_author=False)

    @guildsync.command(name="channels", help="Set the Alliance, Horde and moderation forums.")
    async def channels(
        self,
        ctx: commands.Context,
        alliance: discord.ForumChannel,
        horde: discord.ForumChannel,
        mod: discord.ForumChannel,
    ) -> None:
        self.store.update(
            ctx.guild.id,
            alliance_channel_id=alliance.id,
            horde_channel_id=horde.id,
            mod_channel_id=mod.id,
        )
        await ctx.reply(
            f"Forums saved • alliance={alliance.mention} • horde={horde.mention} • mod={mod.mention}",
            mention_author=False,
        )

    @guildsync.command(name="sheet", help="Set the spreadsheet id, range and optional headers.")
    async def sheet(
        self,
        ctx: commands.Context,
        spreadsheet_id: str,
        sheet_range: str,
        image_header: str = "",
        excluded_header: str = "",
    ) -> None:
        self.store.update(
            ctx.guild.id,
            spreadsheet_id=spreadsheet_id.strip(),
            sheet_range=sheet_range.strip(),
            image_column_header=image_header.strip(),
            excluded_column_header=excluded_header.strip(),
        )
        await ctx.reply(
            f"Spreadsheet saved • sheet={sheet_tail(spreadsheet_id)} • range={sanitize_text(sheet_range)}",
            mention_author=False,
        )

    @guildsync.command(name="timers", help="Set repost age (hours) and entry expiry (days).")
    async def timers(
        self, ctx: commands.Context, thread_age_limit_hours: float, max_entry_age_days: float
    ) -> None:
        if thread_age_limit_hours <= 0 or max_entry_age_days <= 0:
            await ctx.reply("Both values must be greater than zero.", mention_author=False)
            return
        self.store.update(
            ctx.guild.id,
            thread_age_limit_hours=thread_age_limit_hours,
            max_entry_age_days=max_entry_age_days,
        )
        await ctx.reply(
            f"Timers saved • repost_after={thread_age_limit_hours:g}h • expire_after={max_entry_age_days:g}d",
            mention_author=False,
        )

    @guildsync.command(name="cap", help="Set how many new threads one cycle may create.")
    async def cap(self, ctx: commands.Context, max_new_threads: int) -> None:
        if not 1 <= max_new_threads <= MAX_CAP:
            await ctx.reply(f"Cap must be between 1 and {MAX_CAP}.", mention_author=False)
            return
        self.store.update(ctx.guild.id, max_new_threads_per_cycle=max_new_threads)
        await ctx.reply(f"New thread cap saved • cap={max_new_threads}", mention_author=False)

    @guildsync.command(name="show", help="Show this server's sync settings.")
    async def show(self, ctx: commands.Context) -> None:
        settings = self.store.load(ctx.guild.id)
        await ctx.reply(embed=_settings_embed(ctx.guild, settings), mention_author=False)

    @guildsync.command(name="run", help="Run a sync cycle for this server now.")
    async def run(self, ctx: commands.Context) -> None:
        if self.cycle.running:
            await ctx.reply("A sync cycle is in progress; yours runs right after it.", mention_author=False)
        report = await self.cycle.run_guild(ctx.guild.id)
        if report is None:
            settings = self.store.load(ctx.guild.id)
            missing = settings.missing_fields()
            detail = f"missing={', '.join(missing)}" if missing else "forums unavailable"
            await ctx.reply(f"Sync skipped • {detail}", mention_author=False)
            return
        await ctx.reply(f"Sync finished • {report.summary()}", mention_author=False)
        await runtime_helpers.send_log_message(
            f"🧾 **GuildSync** — reason=manual • actor={ctx.author.id} • {report.summary()}"
        )

    @guildsync.command(name="similar", help="List similar thread titles in a forum without alerting.")
    async def similar(self, ctx: commands.Context, forum: discord.ForumChannel) -> None:
        settings = self.store.load(ctx.guild.id)
        reconciler = self.cycle.build_reconciler(settings)
        clusters = await reconciler.similar_clusters(forum.id, threshold=get_similarity_threshold())
        if not clusters:
            await ctx.reply(f"No similar titles in {forum.mention}.", mention_author=False)
            return
        lines = [f"Similar titles in {forum.mention}:"]
        for cluster in clusters[:MAX_CLUSTER_LINES]:
            members = ", ".join(thread.title for thread in cluster.members)
            lines.append(f"• {cluster.key} ↔ {members}")
        if len(clusters) > MAX_CLUSTER_LINES:
            lines.append(f"…and {len(clusters) - MAX_CLUSTER_LINES} more")
        await ctx.reply("\n".join(lines)[:1900], mention_author=False)


async def setup(bot: commands.Bot) -> None:
    await bot.add_cog(GuildSyncAdmin(bot))
