"""
Sales totals per agent, sliced into daily/weekly/monthly/all-time buckets.

The whole document lives in memory and is written through to one JSON file
after every change. Buckets roll over on civil (Pacific) calendar
boundaries, detected by comparing boundary tags rather than by timers, so a
missed check catches up the next time one runs.
"""
import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from config import MAX_RECENT_ENTRIES, PACIFIC

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

DAILY, WEEKLY, MONTHLY, ALL_TIME = "daily", "weekly", "monthly", "allTime"
PERIODS = (DAILY, WEEKLY, MONTHLY, ALL_TIME)
RESETTABLE_PERIODS = (DAILY, WEEKLY, MONTHLY)

RANK_FIELDS = ("total", "count")


@dataclass
class AgentRecord:
    """One agent's aggregate inside one bucket."""

    display_name: str
    total: float = 0.0
    count: int = 0
    category_counts: Dict[str, int] = field(default_factory=dict)
    recent_entries: List[dict] = field(default_factory=list)

    def fold(self, amount: float, category: str, timestamp: datetime) -> None:
        self.total = round(self.total + amount, 2)
        self.count += 1
        self.category_counts[category] = self.category_counts.get(category, 0) + 1
        self.recent_entries.append({
            "amount": amount,
            "category": category,
            "timestamp": timestamp.isoformat(),
        })
        del self.recent_entries[:-MAX_RECENT_ENTRIES]

    @property
    def average(self) -> float:
        return self.total / self.count if self.count else 0.0

    def to_dict(self) -> dict:
        return {
            "displayName": self.display_name,
            "total": self.total,
            "count": self.count,
            "categoryCounts": dict(self.category_counts),
            "recentEntries": list(self.recent_entries),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AgentRecord":
        # Files written before the schema was versioned used "username".
        return cls(
            display_name=str(data.get("displayName") or data.get("username") or "Unknown"),
            total=float(data.get("total") or 0),
            count=int(data.get("count") or 0),
            category_counts={str(k): int(v) for k, v in (data.get("categoryCounts") or {}).items()},
            recent_entries=list(data.get("recentEntries") or [])[-MAX_RECENT_ENTRIES:],
        )


Bucket = Dict[str, AgentRecord]


@dataclass
class ResetState:
    daily_tag: Optional[str] = None
    weekly_tag: Optional[str] = None
    monthly_tag: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "dailyTag": self.daily_tag,
            "weeklyTag": self.weekly_tag,
            "monthlyTag": self.monthly_tag,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResetState":
        # Legacy numeric "daily"/"weekly"/"monthly" fields are dropped.
        return cls(
            daily_tag=data.get("dailyTag"),
            weekly_tag=data.get("weeklyTag"),
            monthly_tag=data.get("monthlyTag"),
        )


def to_local(now: Optional[datetime] = None) -> datetime:
    """Convert an instant to Pacific civil time. Naive datetimes are taken as UTC."""
    if now is None:
        return datetime.now(PACIFIC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(PACIFIC)


def day_tag(local: datetime) -> str:
    return local.strftime("%Y-%m-%d")


def week_tag(local: datetime) -> str:
    iso_year, iso_week, _ = local.isocalendar()
    return f"{iso_year}-W{iso_week}"


def month_tag(local: datetime) -> str:
    return f"{local.year}-{local.month:02d}"


def rank(bucket: Bucket, by: str = "total") -> List[Tuple[str, AgentRecord]]:
    """
    Order a bucket's agents by `total` (AP) or `count` (policies), highest first.

    Ties keep the bucket's insertion order, i.e. the agent who reached the
    bucket first stays ahead. sorted() is stable, reverse included.
    """
    if by not in RANK_FIELDS:
        raise ValueError(f"Unknown ranking field: {by}")
    return sorted(bucket.items(), key=lambda item: getattr(item[1], by), reverse=True)


def bucket_totals(bucket: Bucket) -> Tuple[float, int, float]:
    """Sum of AP, sum of policies and average AP per policy (0 when there are none)."""
    total_ap = round(sum(record.total for record in bucket.values()), 2)
    total_policies = sum(record.count for record in bucket.values())
    average = total_ap / total_policies if total_policies else 0.0
    return total_ap, total_policies, average


class SalesStore:
    """Owns the sales document: aggregation, calendar resets and persistence."""

    def __init__(self, data_file: Path):
        self.data_file = Path(data_file)
        self.clear()

    def clear(self) -> None:
        """Drop every bucket, snapshot and reset tag."""
        self.buckets: Dict[str, Bucket] = {period: {} for period in PERIODS}
        self.snapshots: Dict[str, Bucket] = {period: {} for period in RESETTABLE_PERIODS}
        self.last_reset = ResetState()

    # --- Persistence ---

    def to_dict(self) -> dict:
        document = {"version": SCHEMA_VERSION}
        for period in PERIODS:
            document[period] = {agent_id: rec.to_dict() for agent_id, rec in self.buckets[period].items()}
        for period in RESETTABLE_PERIODS:
            document[f"{period}Snapshot"] = {
                agent_id: rec.to_dict() for agent_id, rec in self.snapshots[period].items()
            }
        document["lastReset"] = self.last_reset.to_dict()
        return document

    def load_dict(self, document: dict) -> None:
        """Replace the in-memory state with a parsed document, filling any missing parts."""
        if not isinstance(document, dict):
            raise ValueError("Sales document must be a JSON object")

        version = document.get("version", 1)
        if version > SCHEMA_VERSION:
            logger.warning("Sales file has schema version %s, newer than %s.", version, SCHEMA_VERSION)

        for period in PERIODS:
            raw = document.get(period) or {}
            self.buckets[period] = {str(k): AgentRecord.from_dict(v) for k, v in raw.items()}
        for period in RESETTABLE_PERIODS:
            raw = document.get(f"{period}Snapshot") or {}
            self.snapshots[period] = {str(k): AgentRecord.from_dict(v) for k, v in raw.items()}
        self.last_reset = ResetState.from_dict(document.get("lastReset") or {})

    def load(self) -> None:
        """Load state from disk once at startup. A missing or unreadable file starts fresh."""
        if not self.data_file.exists():
            logger.info("No existing sales data at %s, creating a new file.", self.data_file)
            self.save()
            return

        try:
            with self.data_file.open("r", encoding="utf-8") as f:
                self.load_dict(json.load(f))
        except (OSError, ValueError, TypeError, AttributeError) as e:
            corrupt = self.data_file.with_name(self.data_file.name + ".corrupt")
            logger.error("Could not read %s (%s). Moving it to %s and starting fresh.",
                         self.data_file, e, corrupt.name)
            try:
                self.data_file.replace(corrupt)
            except OSError:
                logger.exception("Could not move the unreadable sales file aside.")
            self.clear()
            self.save()
            return

        logger.info("Loaded sales data: %d agents all-time.", len(self.buckets[ALL_TIME]))

    def save(self) -> bool:
        """Write the whole document. Failures are logged; memory stays authoritative."""
        tmp_file = self.data_file.with_name(self.data_file.name + ".tmp")
        try:
            payload = json.dumps(self.to_dict(), indent=2, ensure_ascii=False, allow_nan=False)
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            with tmp_file.open("w", encoding="utf-8") as f:
                f.write(payload)
            tmp_file.replace(self.data_file)
            return True
        except (OSError, TypeError, ValueError):
            logger.exception("Failed to save sales data to %s", self.data_file)
            return False

    # --- Resets ---

    def check_resets(self, now: Optional[datetime] = None) -> List[str]:
        """
        Clear every bucket whose civil period has ended and return their names.

        Daily rolls over whenever the date tag changes. Weekly needs a new ISO
        week tag and a Monday; monthly needs a new month tag and the 1st. The
        cleared bucket is kept as that period's snapshot. Tags are stored
        before the state is persisted, so repeated calls clear at most once.
        """
        local = to_local(now)
        reset = []

        tag = day_tag(local)
        if self.last_reset.daily_tag != tag:
            self._archive_and_clear(DAILY)
            self.last_reset.daily_tag = tag
            reset.append(DAILY)

        tag = week_tag(local)
        if self.last_reset.weekly_tag != tag and local.weekday() == 0:
            self._archive_and_clear(WEEKLY)
            self.last_reset.weekly_tag = tag
            reset.append(WEEKLY)

        tag = month_tag(local)
        if self.last_reset.monthly_tag != tag and local.day == 1:
            self._archive_and_clear(MONTHLY)
            self.last_reset.monthly_tag = tag
            reset.append(MONTHLY)

        if reset:
            logger.info("Reset %s at %s Pacific.", ", ".join(reset), local.strftime("%Y-%m-%d %H:%M"))
            self.save()
        return reset

    def _archive_and_clear(self, period: str) -> None:
        self.snapshots[period] = copy.deepcopy(self.buckets[period])
        self.buckets[period] = {}

    # --- Aggregation ---

    def add_sale(self, agent_id, display_name: str, amount: float, category: str,
                 now: Optional[datetime] = None) -> None:
        """Fold one sale into every bucket, after rolling over any ended period."""
        self.check_resets(now)
        agent_id = str(agent_id)
        timestamp = to_local(now)
        amount = round(float(amount), 2)

        for period in PERIODS:
            bucket = self.buckets[period]
            record = bucket.get(agent_id)
            if record is None:
                record = bucket[agent_id] = AgentRecord(display_name=display_name)
            elif display_name:
                record.display_name = display_name
            record.fold(amount, category, timestamp)

        self.save()

    def get_agent_stats(self, agent_id, display_name: str) -> Dict[str, AgentRecord]:
        """Copies of an agent's record in every bucket. Agents without sales get empty records, not stored."""
        agent_id = str(agent_id)
        return {
            period: copy.deepcopy(self.buckets[period].get(agent_id)) or AgentRecord(display_name=display_name)
            for period in PERIODS
        }

    def get_bucket(self, period: str, final: bool = False) -> Bucket:
        if period not in PERIODS:
            raise ValueError(f"Unknown period: {period}")
        if final:
            if period == ALL_TIME:
                raise ValueError("The all-time bucket never resets and has no final report.")
            return self.snapshots[period]
        return self.buckets[period]

    def rank(self, period: str, by: str = "total", final: bool = False) -> List[Tuple[str, AgentRecord]]:
        return rank(self.get_bucket(period, final), by)

    def position(self, period: str, agent_id, by: str = "total") -> Optional[int]:
        """1-based leaderboard position of an agent in a live bucket, or None."""
        agent_id = str(agent_id)
        for i, (ranked_id, _) in enumerate(self.rank(period, by), start=1):
            if ranked_id == agent_id:
                return i
        return None
