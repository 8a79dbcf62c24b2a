from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import discord

from config import LEADERBOARD_POST_HOURS, NIGHTLY_CLOSE, QUIET_HOURS, settings
from sales_parser import SaleEntry
from sales_store import (
    ALL_TIME, DAILY, MONTHLY, WEEKLY,
    AgentRecord, Bucket, bucket_totals, rank, to_local,
)

HIGHLIGHTED = 3
MAX_ROWS = 10

PERIOD_ALIASES = {
    "daily": DAILY, "day": DAILY, "today": DAILY,
    "weekly": WEEKLY, "week": WEEKLY,
    "monthly": MONTHLY, "month": MONTHLY,
    "alltime": ALL_TIME, "all-time": ALL_TIME, "all": ALL_TIME,
}

PERIOD_LABELS = {
    DAILY: "Daily",
    WEEKLY: "Weekly",
    MONTHLY: "Monthly",
    ALL_TIME: "All-Time",
}

LEADERBOARD_USAGE = (
    "Usage: `!leaderboard [daily|weekly|monthly|alltime] [final] [count]`\n"
    "e.g. `!lb week`, `!lb monthly final`, `!lb today count`"
)
EMBED_PERMISSION_HINT = (
    "ℹ️ I cannot send embeds here. Please enable **Embed Links** for my role or try another channel."
)
FOOTER_TEXT = "All rankings based on Annual Premium (AP)"

MEDALS = ("🥇", "🥈", "🥉")


def resolve_period(arg: Optional[str]) -> Optional[str]:
    """Map a user-typed period word to a bucket name. No word means daily; unknown words give None."""
    if not arg:
        return DAILY
    return PERIOD_ALIASES.get(arg.lower())


def money(amount: float) -> str:
    return f"${amount:,.2f}"


def tier_suffix(total: float, period: str) -> str:
    if period in (MONTHLY, ALL_TIME):
        if total >= 40000:
            return "🔥"
        elif total >= 20000:
            return "💎"
        elif total >= 10000:
            return "🏆"
        elif total >= 5000:
            return "🤑"
    else:
        if total >= 10000:
            return "🤯"
        elif total >= 5000:
            return "🏆"
        elif total >= 2500:
            return "🤑"
        elif total >= 1000:
            return "💪"
    return ""


def _row(position: int, record: AgentRecord, period: str) -> str:
    policies = "Policy" if record.count == 1 else "Policies"
    suffix = tier_suffix(record.total, period)
    name = f"{record.display_name} {suffix}".rstrip()
    if position <= HIGHLIGHTED:
        return f"{MEDALS[position - 1]} **{name}** — **{money(record.total)}** | **{record.count}** {policies}"
    return f"#{position} {name} — {money(record.total)} | {record.count} {policies}"


def render_leaderboard(bucket: Bucket, period: str, title: Optional[str] = None,
                       by: str = "total", now: Optional[datetime] = None) -> discord.Embed:
    """
    Build the ranked leaderboard embed for one bucket.

    The top three get medals, the next seven are listed plainly, and a
    totals block closes the board. The bucket is only read.
    """
    label = PERIOD_LABELS.get(period, period.capitalize())
    if title is None:
        title = f"🏆 AP Leaderboard — {label}" if by == "total" else f"📋 Policy Leaderboard — {label}"

    embed = discord.Embed(title=title, color=discord.Color.gold())
    embed.set_footer(text=FOOTER_TEXT)
    embed.timestamp = to_local(now)

    ranked = rank(bucket, by)
    if not ranked:
        embed.description = "No sales recorded yet."
        return embed

    top = ranked[:HIGHLIGHTED]
    rest = ranked[HIGHLIGHTED:MAX_ROWS]
    embed.add_field(
        name=f"Top {len(top)}",
        value="\n".join(_row(i, record, period) for i, (_, record) in enumerate(top, start=1)),
        inline=False,
    )
    if rest:
        embed.add_field(
            name="Chasing the Podium",
            value="\n".join(
                _row(i, record, period) for i, (_, record) in enumerate(rest, start=HIGHLIGHTED + 1)
            )[:1024],
            inline=False,
        )
    if len(ranked) > MAX_ROWS:
        embed.add_field(name="\u200b", value=f"…and {len(ranked) - MAX_ROWS} more agents on the board.", inline=False)

    total_ap, total_policies, average = bucket_totals(bucket)
    embed.add_field(
        name="Totals",
        value=(
            f"Sales: **{total_policies}**\n"
            f"AP: **{money(total_ap)}**\n"
            f"Avg AP/policy: **{money(average)}**"
        ),
        inline=False,
    )
    return embed


def render_stats(stats: Dict[str, AgentRecord], positions: Optional[Dict[str, Optional[int]]] = None) -> discord.Embed:
    """Personal stats card for `!mystats`."""
    positions = positions or {}
    embed = discord.Embed(
        title="📈 YOUR SALES STATS",
        description="Personal performance overview based on Annual Premium (AP)",
        color=discord.Color.teal(),
    )

    for period, heading in ((DAILY, "📅 TODAY"), (WEEKLY, "🗓️ THIS WEEK"), (MONTHLY, "📆 THIS MONTH")):
        record = stats[period]
        value = f"💵 **{money(record.total)}**\n📋 **{record.count} Policies**"
        if positions.get(period):
            value += f"\n🏅 Rank **#{positions[period]}**"
        embed.add_field(name=heading, value=value, inline=True)

    all_time = stats[ALL_TIME]
    if all_time.total > 0:
        embed.add_field(
            name="🌟 ALL-TIME RECORD",
            value=f"💎 **{money(all_time.total)} Total AP**\n📝 **{all_time.count} Total Policies**",
            inline=False,
        )

    monthly = stats[MONTHLY]
    if monthly.category_counts:
        top = sorted(monthly.category_counts.items(), key=lambda item: item[1], reverse=True)[:3]
        embed.add_field(
            name="🏷️ TOP PRODUCTS THIS MONTH",
            value="\n".join(f"{category}: **{count}**" for category, count in top),
            inline=False,
        )

    embed.set_footer(text=FOOTER_TEXT)
    return embed


def _hour_label(hour: int) -> str:
    return datetime(2000, 1, 1, hour).strftime("%I %p").lstrip("0")


def schedule_text() -> str:
    hours = ", ".join(_hour_label(h) for h in LEADERBOARD_POST_HOURS)
    close_hour, close_minute = NIGHTLY_CLOSE
    close = datetime(2000, 1, 1, close_hour, close_minute).strftime("%I:%M %p").lstrip("0")
    return (
        f"AP leaderboard posts automatically at {hours} Pacific\n"
        f"Daily close at {close} Pacific:\n"
        "  - Daily Final Standings\n"
        "  - Weekly Progress (week-to-date)\n"
        "  - Monthly Progress (month-to-date)\n"
        f"Weekly FINAL on Sundays at {close}\n"
        f"Monthly FINAL on the last day of the month at {close}\n"
        f"🌙 Quiet hours: {_hour_label(QUIET_HOURS[0])} - {_hour_label(QUIET_HOURS[1])} (no automatic messages)"
    )


def render_help() -> discord.Embed:
    embed = discord.Embed(
        title="📚 Policy Pulse - User Manual",
        description="Annual Premium Tracking System - Pacific Time Zone",
        color=discord.Color.blurple(),
    )
    embed.add_field(
        name="💰 RECORDING SALES",
        value=(
            "Post in the sales channel:\n\n"
            "Single Sale:\n`$624 Americo IUL`\n`624$ Americo IUL` (both formats work)\n\n"
            "Multiple Sales (Family/Couple):\n`His: $4,000 NLG IUL Hers: $2,400 NLG IUL`\n\n"
            "✅ Each sale is counted separately\n🔇 I only react with emojis"
        ),
        inline=False,
    )
    embed.add_field(
        name="📊 LEADERBOARD COMMANDS",
        value=(
            "`!leaderboard` - Today's AP rankings\n"
            "`!leaderboard weekly` / `monthly` / `alltime`\n"
            "`!leaderboard weekly final` - Final standings of last week\n"
            "`!leaderboard daily count` - Rank by policy count\n\n"
            "Aliases: `!lb`, `!ap`, `!rankings`"
        ),
        inline=False,
    )
    embed.add_field(name="📈 PERSONAL STATS", value="`!mystats` - Your totals and rankings", inline=False)
    embed.add_field(
        name="⭐ EMOJI REACTIONS",
        value=(
            "✅ Sale recorded\n💰 Money earned\n"
            f"🔥 Total >{money(settings.LARGE_SALE_THRESHOLD)}\n"
            f"🚀 Total >{money(settings.HUGE_SALE_THRESHOLD)}\n"
            f"⭐ {settings.MULTI_SALE_COUNT}+ policies in one message"
        ),
        inline=False,
    )
    embed.add_field(name="⏰ AUTOMATIC REPORTS (PST/PDT)", value=schedule_text(), inline=False)
    embed.add_field(name="🛠️ OTHER", value="`!ping`, `!timezone`, `!sync` (admins)", inline=False)
    return embed


def reaction_emojis(entries: Sequence[SaleEntry], large: float, huge: float, multi: int) -> List[str]:
    """Reactions for a sales post, based on the message's total and how many sales it held."""
    if not entries:
        return []
    total = sum(entry.amount for entry in entries)
    emojis = ["✅", "💰"]
    if total > large:
        emojis.append("🔥")
    if total > huge:
        emojis.append("🚀")
    if len(entries) >= multi:
        emojis.append("⭐")
    return emojis


def closing_titles(now: Optional[datetime] = None) -> Dict[str, str]:
    """Titles for the nightly close. Sundays and month ends get FINAL boards."""
    local = to_local(now)
    date_text = local.strftime("%b %d, %Y")
    is_month_end = (local + timedelta(days=1)).day == 1
    return {
        DAILY: f"🌙 Daily Final Standings — {date_text}",
        WEEKLY: "🏁 Weekly FINAL Standings" if local.weekday() == 6 else "📊 Weekly Progress (week-to-date)",
        MONTHLY: "🏁 Monthly FINAL Standings" if is_month_end else "📈 Monthly Progress (month-to-date)",
    }


def final_title(period: str) -> str:
    return f"🏁 {PERIOD_LABELS[period]} FINAL Standings (last {period_noun(period)})"


def period_noun(period: str) -> str:
    return {DAILY: "day", WEEKLY: "week", MONTHLY: "month"}.get(period, period)
