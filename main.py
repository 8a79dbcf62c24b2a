from datetime import datetime as dt, time
import asyncio
import logging
import sys

import discord
from discord.ext import commands, tasks
import requests

from config import (
    KEEPALIVE_MINUTES, LEADERBOARD_POST_HOURS, NIGHTLY_CLOSE, PACIFIC,
    RESET_CHECK_MINUTES, settings,
)
import git_sync
import health
import leaderboard as lb
from sales_parser import parse_sales
from sales_store import ALL_TIME, DAILY, MONTHLY, WEEKLY, SalesStore


logger = logging.getLogger(__name__)

# --- Bot Setup ---
intents = discord.Intents.default()
intents.message_content = True
intents.messages = True


class PolicyPulseBot(commands.Bot):
    """The bot owns the sales store and the git mirror; commands and tasks reach them through it."""

    def __init__(self, store: SalesStore, mirror):
        super().__init__(command_prefix="!", intents=intents, help_command=None, case_insensitive=True)
        self.store = store
        self.mirror = mirror
        self.health_runner = None

    async def setup_hook(self):
        self.health_runner = await health.start_health_server(self.status, settings.PORT)

    async def close(self):
        if self.health_runner is not None:
            await self.health_runner.cleanup()
        await super().close()

    def status(self) -> dict:
        return {
            "bot": str(self.user) if self.user else "connecting",
            "ready": self.is_ready(),
            "guilds": len(self.guilds),
            "agents_today": len(self.store.get_bucket(DAILY)),
            "agents_this_week": len(self.store.get_bucket(WEEKLY)),
            "mirror": self.mirror.display_remote if self.mirror else "disabled",
        }


bot = PolicyPulseBot(SalesStore(settings.data_file()), git_sync.mirror_from_settings(settings))


# --- Helpers ---
def is_sales_channel(channel) -> bool:
    """Without a configured sales channel every channel counts."""
    return settings.SALES_CHANNEL_ID is None or channel.id == settings.SALES_CHANNEL_ID


def get_reports_channel():
    channel_id = settings.REPORTS_CHANNEL_ID or settings.SALES_CHANNEL_ID
    if channel_id is None:
        logger.error("Neither REPORTS_CHANNEL_ID nor SALES_CHANNEL_ID is set. Automatic reports will not be posted.")
        return None
    channel = bot.get_channel(channel_id)
    if channel is None:
        logger.error("Reports channel ID %s not found or bot cannot access it.", channel_id)
    return channel


async def send_embed(destination: discord.abc.Messageable, embed: discord.Embed):
    """Send an embed, falling back to a plain-text permissions hint when embeds are blocked."""
    try:
        await destination.send(embed=embed)
    except discord.Forbidden:
        logger.warning("Cannot send embeds to %s; sending permissions hint instead.", destination)
        try:
            await destination.send(lb.EMBED_PERMISSION_HINT)
        except discord.HTTPException as e:
            logger.error("Could not send the permissions hint to %s: %s", destination, e)


async def record_sales(message: discord.Message, entries):
    for entry in entries:
        bot.store.add_sale(message.author.id, message.author.display_name, entry.amount, entry.category)
    logger.info(
        "Recorded %d sale(s) for %s: %s",
        len(entries), message.author.display_name,
        ", ".join(f"{lb.money(e.amount)} {e.category}" for e in entries),
    )

    emojis = lb.reaction_emojis(
        entries,
        large=settings.LARGE_SALE_THRESHOLD,
        huge=settings.HUGE_SALE_THRESHOLD,
        multi=settings.MULTI_SALE_COUNT,
    )
    for emoji in emojis:
        try:
            await message.add_reaction(emoji)
        except discord.HTTPException as e:
            logger.warning("Could not react with %s: %s", emoji, e)
            break


async def post_backup():
    """Attach the current sales file to the backup channel, if one is configured."""
    if settings.BACKUP_CHANNEL_ID is None:
        return
    channel = bot.get_channel(settings.BACKUP_CHANNEL_ID)
    if channel is None:
        logger.error("Backup channel ID %s not found or bot cannot access it.", settings.BACKUP_CHANNEL_ID)
        return
    if not bot.store.save():
        return

    now = dt.now(PACIFIC)
    try:
        await channel.send(
            content=f"🗂️ Sales data backup — {now.strftime('%Y-%m-%d %I:%M %p %Z')}",
            file=discord.File(str(bot.store.data_file), filename=f"sales-{now.strftime('%Y-%m-%d')}.json"),
        )
    except (discord.HTTPException, OSError) as e:
        logger.error("Failed to post sales backup: %s", e)


async def run_mirror_sync():
    if bot.mirror is None:
        return None
    bot.store.save()
    report = await bot.mirror.sync()
    if not report.ok:
        logger.warning("Git sync failed; the remote copy of the sales data is stale.")
    return report


# --- Event: Bot Ready ---
@bot.event
async def on_ready():
    logger.info("%s has connected to Discord!", bot.user.name)
    logger.info("Bot ID: %s", bot.user.id)
    bot.store.check_resets()
    if not reset_checker.is_running():
        reset_checker.start()
    if not periodic_leaderboard_poster.is_running():
        periodic_leaderboard_poster.start()
    if not nightly_close.is_running():
        nightly_close.start()
    if settings.RENDER and not keep_alive.is_running():
        keep_alive.start()


@bot.event
async def on_message(message):
    if message.author.bot:
        return

    if settings.DEBUG_COMMANDS:
        logger.info("[MSG] %s: %s", message.author, message.content)

    if is_sales_channel(message.channel) and not message.content.startswith(bot.command_prefix):
        entries = parse_sales(message.content)
        if entries:
            await record_sales(message, entries)
            return

    await bot.process_commands(message)


@bot.event
async def on_command_error(ctx, error):
    if isinstance(error, commands.CommandNotFound):
        return
    if isinstance(error, commands.MissingPermissions):
        await ctx.reply("⛔ Requires Administrator.")
        return
    if isinstance(error, commands.NoPrivateMessage):
        await ctx.reply("This command only works inside the server.")
        return

    logger.error("Command handler error in !%s", ctx.command, exc_info=error)
    try:
        await ctx.reply("⚠️ Error running command.")
    except discord.HTTPException as e:
        logger.error("Could not report the command error: %s", e)


# --- Commands ---
@bot.command(name="leaderboard", aliases=["lb", "ap", "rankings"], help="Shows the AP leaderboard.")
async def leaderboard_command(ctx, *args):
    period = lb.resolve_period(args[0] if args else None)
    flags = {arg.lower() for arg in args[1:]}
    if period is None or flags - {"final", "count"}:
        await ctx.reply(lb.LEADERBOARD_USAGE)
        return

    final = "final" in flags
    if final and period == ALL_TIME:
        await ctx.reply("The all-time board never closes, so it has no final standings.\n" + lb.LEADERBOARD_USAGE)
        return

    store = ctx.bot.store
    store.check_resets()
    title = lb.final_title(period) if final else None
    by = "count" if "count" in flags else "total"
    await send_embed(ctx, lb.render_leaderboard(store.get_bucket(period, final=final), period, title=title, by=by))


@bot.command(name="mystats", aliases=["mysales"], help="Shows your own sales stats.")
async def mystats_command(ctx):
    store = ctx.bot.store
    store.check_resets()
    stats = store.get_agent_stats(ctx.author.id, ctx.author.display_name)
    positions = {period: store.position(period, ctx.author.id) for period in (DAILY, WEEKLY, MONTHLY)}
    await send_embed(ctx, lb.render_stats(stats, positions))


@bot.command(name="help", aliases=["commands"], help="Shows the user manual.")
async def help_command(ctx):
    await send_embed(ctx, lb.render_help())


@bot.command(name="ping", help="Checks that the bot is alive.")
async def ping_command(ctx):
    await ctx.reply(f"🏓 Pong! ({bot.latency * 1000:.0f} ms)")


@bot.command(name="timezone", aliases=["tz"], help="Shows the bot's reporting time zone.")
async def timezone_command(ctx):
    now = dt.now(PACIFIC)
    await ctx.reply(
        f"🕒 All tracking runs on Pacific time: it is **{now.strftime('%A %b %d, %I:%M %p %Z')}**.\n"
        "Daily totals reset at midnight, weekly on Monday, monthly on the 1st.\n"
        + lb.schedule_text()
    )


@bot.command(name="sync", help="Pushes the sales data to GitHub (admins only).")
@commands.guild_only()
@commands.has_permissions(administrator=True)
async def sync_command(ctx):
    if ctx.bot.mirror is None:
        await ctx.reply("⚠️ Git sync is not configured. Set GITHUB_TOKEN, GITHUB_OWNER and GITHUB_REPO.")
        return

    msg = await ctx.reply("🔁 Syncing data to GitHub…")
    report = await run_mirror_sync()
    if report.ok and not report.warnings:
        await msg.edit(content="✅ Sync complete")
    elif report.ok:
        await msg.edit(content=f"⚠️ Sync finished with warnings ({', '.join(report.warnings)})")
    else:
        await msg.edit(content="❌ Error syncing to GitHub. Check logs.")


# --- Task: Reset Check ---
@tasks.loop(minutes=RESET_CHECK_MINUTES)
async def reset_checker():
    bot.store.check_resets()


# --- Task: Automated Leaderboard Posts (Pacific, never during quiet hours) ---
@tasks.loop(time=[time(hour, 0, tzinfo=PACIFIC) for hour in LEADERBOARD_POST_HOURS])
async def periodic_leaderboard_poster():
    channel = get_reports_channel()
    if channel is None:
        return
    bot.store.check_resets()
    logger.info("Posting automated daily leaderboard to channel: %s (%s)", channel.name, channel.id)
    await send_embed(channel, lb.render_leaderboard(bot.store.get_bucket(DAILY), DAILY))


# --- Task: Nightly Close ---
@tasks.loop(time=time(*NIGHTLY_CLOSE, tzinfo=PACIFIC))
async def nightly_close():
    now = dt.now(PACIFIC)
    bot.store.check_resets(now)

    channel = get_reports_channel()
    if channel is not None:
        titles = lb.closing_titles(now)
        for period in (DAILY, WEEKLY, MONTHLY):
            await send_embed(channel, lb.render_leaderboard(bot.store.get_bucket(period), period, title=titles[period], now=now))

    await post_backup()
    await run_mirror_sync()


# --- Task: Keep-Alive Ping ---
@tasks.loop(minutes=KEEPALIVE_MINUTES)
async def keep_alive():
    target = settings.RENDER_EXTERNAL_URL or f"http://localhost:{settings.PORT}/health"
    if not target.startswith(("http://", "https://")):
        target = f"https://{target}"
    try:
        await asyncio.to_thread(requests.get, target, timeout=10)
    except requests.RequestException as e:
        logger.debug("Keep-alive ping failed: %s", e)


@reset_checker.before_loop
@periodic_leaderboard_poster.before_loop
@nightly_close.before_loop
@keep_alive.before_loop
async def wait_for_ready():
    await bot.wait_until_ready()


def main():
    discord.utils.setup_logging(level=settings.log_level(), root=True)

    try:
        settings.validate()
    except ValueError as e:
        logger.critical("%s", e)
        sys.exit(1)

    bot.store.load()

    try:
        bot.run(settings.DISCORD_TOKEN, log_handler=None)
    except discord.LoginFailure:
        logger.critical("Failed to log in to Discord: the bot token was rejected.")
        sys.exit(1)


if __name__ == "__main__":
    main()
