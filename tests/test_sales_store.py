"""Tests for the sales store: aggregation, calendar resets and persistence."""

import json
from datetime import datetime, timezone

import pytest

from config import MAX_RECENT_ENTRIES
from sales_store import (
    ALL_TIME, DAILY, MONTHLY, WEEKLY,
    AgentRecord, SalesStore,
    bucket_totals, day_tag, month_tag, rank, to_local, week_tag,
)


class TestBoundaryTags:
    """Tags computed on the Pacific wall clock."""

    def test_tags(self, pacific):
        """Date, ISO week and month tags."""
        monday = pacific(2026, 10, 19)
        assert day_tag(monday) == "2026-10-19"
        assert week_tag(monday) == "2026-W43"
        assert month_tag(monday) == "2026-10"

    def test_iso_year_at_new_year(self, pacific):
        """Jan 1 2027 is a Friday and still belongs to ISO week 53 of 2026."""
        assert week_tag(pacific(2027, 1, 1)) == "2026-W53"

    def test_utc_converted_to_pacific(self):
        """06:30 UTC on the 20th is still the evening of the 19th in Pacific time."""
        local = to_local(datetime(2026, 10, 20, 6, 30, tzinfo=timezone.utc))
        assert day_tag(local) == "2026-10-19"

    def test_naive_datetimes_are_utc(self):
        """Naive datetimes are read as UTC."""
        assert day_tag(to_local(datetime(2026, 10, 20, 6, 30))) == "2026-10-19"


class TestAddSale:
    """Folding sales into the buckets."""

    def test_totals_and_counts(self, store, pacific):
        """N sales in one period sum up in every bucket."""
        now = pacific(2026, 10, 21)
        for amount in (100.0, 250.5, 649.5):
            store.add_sale(1, "Ana", amount, "Iul", now=now)

        stats = store.get_agent_stats(1, "Ana")
        for period in (DAILY, WEEKLY, MONTHLY, ALL_TIME):
            assert stats[period].total == 1000.0
            assert stats[period].count == 3
        assert stats[DAILY].category_counts == {"Iul": 3}

    def test_agent_ids_are_normalized(self, store, pacific):
        """Integer and string ids refer to the same agent."""
        now = pacific(2026, 10, 21)
        store.add_sale(42, "Ana", 100, "Iul", now=now)
        store.add_sale("42", "Ana", 100, "Iul", now=now)
        assert list(store.get_bucket(DAILY)) == ["42"]

    def test_display_name_follows_latest_sale(self, store, pacific):
        """Renamed agents show their newest name."""
        now = pacific(2026, 10, 21)
        store.add_sale(1, "Ana", 100, "Iul", now=now)
        store.add_sale(1, "Ana B.", 100, "Iul", now=now)
        assert store.get_bucket(ALL_TIME)["1"].display_name == "Ana B."

    def test_recent_entries_are_bounded(self, store, pacific):
        """Only the newest entries are kept per record."""
        now = pacific(2026, 10, 21)
        for i in range(MAX_RECENT_ENTRIES + 5):
            store.add_sale(1, "Ana", i + 1, "Iul", now=now)
        record = store.get_bucket(ALL_TIME)["1"]
        assert len(record.recent_entries) == MAX_RECENT_ENTRIES
        assert record.recent_entries[-1]["amount"] == MAX_RECENT_ENTRIES + 5
        assert record.count == MAX_RECENT_ENTRIES + 5

    def test_new_day_starts_empty(self, store, pacific):
        """A sale on the next day lands in a fresh daily bucket."""
        store.add_sale(1, "Ana", 100, "Iul", now=pacific(2026, 10, 21))
        store.add_sale(1, "Ana", 300, "Iul", now=pacific(2026, 10, 22))

        stats = store.get_agent_stats(1, "Ana")
        assert stats[DAILY].total == 300.0
        assert stats[WEEKLY].total == 400.0
        assert stats[ALL_TIME].count == 2
        assert store.snapshots[DAILY]["1"].total == 100.0

    def test_reset_runs_before_the_sale(self, store, pacific):
        """A Monday sale is not wiped by the weekly reset it triggers."""
        store.add_sale(1, "Ana", 100, "Iul", now=pacific(2026, 10, 16))
        store.last_reset.weekly_tag = "2026-W42"
        store.add_sale(1, "Ana", 700, "Iul", now=pacific(2026, 10, 19, 9))
        assert store.get_bucket(WEEKLY)["1"].total == 700.0

    def test_every_sale_is_persisted(self, store, data_file, pacific):
        """The file reflects the sale as soon as it is added."""
        store.add_sale(1, "Ana", 100, "Iul", now=pacific(2026, 10, 21))
        document = json.loads(data_file.read_text())
        assert document["allTime"]["1"]["total"] == 100.0
        assert document["lastReset"]["dailyTag"] == "2026-10-21"


class TestGetAgentStats:
    """Reading one agent's numbers."""

    def test_unknown_agent_gets_zeros(self, store):
        """Agents without sales see zeros and are not added to any bucket."""
        stats = store.get_agent_stats(99, "Newbie")
        assert all(record.total == 0 and record.count == 0 for record in stats.values())
        assert stats[DAILY].display_name == "Newbie"
        assert all(not store.get_bucket(period) for period in (DAILY, WEEKLY, MONTHLY, ALL_TIME))

    def test_returned_records_are_copies(self, store, pacific):
        """Changing the returned stats leaves the stored totals alone."""
        store.add_sale(1, "Ana", 100, "Iul", now=pacific(2026, 10, 21))
        stats = store.get_agent_stats(1, "Ana")
        stats[ALL_TIME].total = 1_000_000.0
        stats[DAILY].category_counts["Iul"] = 50

        assert store.get_bucket(ALL_TIME)["1"].total == 100.0
        assert store.get_bucket(DAILY)["1"].category_counts == {"Iul": 1}


class TestCheckResets:
    """Civil-boundary rollovers."""

    def _seed(self, store, now):
        store.add_sale(1, "Ana", 500, "Iul", now=now)

    def test_idempotent(self, store, pacific):
        """Two checks at the same moment leave the state unchanged."""
        now = pacific(2026, 10, 19, 10)
        self._seed(store, now)
        store.check_resets(now)
        before = json.dumps(store.to_dict(), sort_keys=True)
        assert store.check_resets(now) == []
        assert json.dumps(store.to_dict(), sort_keys=True) == before

    def test_weekly_waits_for_monday(self, store, pacific):
        """A stale weekly tag on a Thursday does not clear the week."""
        self._seed(store, pacific(2026, 10, 22))
        store.last_reset.weekly_tag = "2026-W42"

        assert WEEKLY not in store.check_resets(pacific(2026, 10, 22, 18))
        assert store.get_bucket(WEEKLY)["1"].total == 500.0

    def test_weekly_resets_once_on_monday(self, store, pacific):
        """The following Monday clears the week exactly once."""
        self._seed(store, pacific(2026, 10, 22))
        store.last_reset.weekly_tag = "2026-W42"

        assert WEEKLY in store.check_resets(pacific(2026, 10, 26, 0, 5))
        assert store.get_bucket(WEEKLY) == {}
        assert store.snapshots[WEEKLY]["1"].total == 500.0
        assert store.last_reset.weekly_tag == "2026-W44"

        store.add_sale(1, "Ana", 50, "Iul", now=pacific(2026, 10, 26, 9))
        assert WEEKLY not in store.check_resets(pacific(2026, 10, 26, 23))
        assert store.get_bucket(WEEKLY)["1"].total == 50.0

    def test_monthly_waits_for_the_first(self, store, pacific):
        """A stale month tag mid-month does not clear the month."""
        self._seed(store, pacific(2026, 10, 15))
        store.last_reset.monthly_tag = "2026-09"
        assert MONTHLY not in store.check_resets(pacific(2026, 10, 16))
        assert store.get_bucket(MONTHLY)["1"].total == 500.0

    def test_monthly_resets_on_the_first(self, store, pacific):
        """The 1st clears the month and keeps a snapshot."""
        self._seed(store, pacific(2026, 10, 30))
        store.last_reset.monthly_tag = "2026-10"
        assert MONTHLY in store.check_resets(pacific(2026, 11, 1, 3))
        assert store.get_bucket(MONTHLY) == {}
        assert store.snapshots[MONTHLY]["1"].total == 500.0
        assert store.get_bucket(ALL_TIME)["1"].total == 500.0

    def test_missed_day_catches_up(self, store, pacific):
        """A check days late still clears the daily bucket once."""
        self._seed(store, pacific(2026, 10, 20))
        assert store.check_resets(pacific(2026, 10, 23, 15)) == [DAILY]
        assert store.get_bucket(DAILY) == {}
        assert store.check_resets(pacific(2026, 10, 23, 16)) == []

    def test_snapshot_is_a_copy(self, store, pacific):
        """New sales after a reset do not leak into the snapshot."""
        self._seed(store, pacific(2026, 10, 20))
        store.add_sale(1, "Ana", 100, "Iul", now=pacific(2026, 10, 21))
        assert store.snapshots[DAILY]["1"].total == 500.0
        assert store.get_bucket(DAILY)["1"].total == 100.0

    def test_all_time_never_resets(self, store, pacific):
        """Month, week and day boundaries leave all-time alone."""
        self._seed(store, pacific(2026, 10, 31))
        store.last_reset.weekly_tag = "2026-W43"
        store.last_reset.monthly_tag = "2026-10"
        reset = store.check_resets(pacific(2026, 11, 2))
        assert DAILY in reset and WEEKLY in reset
        assert store.get_bucket(ALL_TIME)["1"].total == 500.0


class TestRanking:
    """Ordering agents."""

    def test_ties_keep_insertion_order(self, store, pacific):
        """Equal totals stay in the order the agents first sold."""
        now = pacific(2026, 10, 21)
        store.add_sale("A", "A", 100, "Iul", now=now)
        store.add_sale("B", "B", 300, "Iul", now=now)
        store.add_sale("C", "C", 300, "Iul", now=now)
        assert [agent_id for agent_id, _ in store.rank(DAILY)] == ["B", "C", "A"]

    def test_rank_by_count(self):
        """Policy-count ranking uses the count field."""
        bucket = {
            "A": AgentRecord("A", total=5000, count=1),
            "B": AgentRecord("B", total=900, count=3),
        }
        assert [agent_id for agent_id, _ in rank(bucket, "count")] == ["B", "A"]
        assert [agent_id for agent_id, _ in rank(bucket, "total")] == ["A", "B"]

    def test_unknown_field(self):
        """Only total and count can be ranked on."""
        with pytest.raises(ValueError):
            rank({}, "average")

    def test_position(self, store, pacific):
        """Positions are 1-based; agents without sales have none."""
        now = pacific(2026, 10, 21)
        store.add_sale("A", "A", 100, "Iul", now=now)
        store.add_sale("B", "B", 300, "Iul", now=now)
        assert store.position(DAILY, "A") == 2
        assert store.position(DAILY, "Z") is None


class TestBucketTotals:
    """Summary numbers for a bucket."""

    def test_average(self):
        """Average is total AP over total policies."""
        bucket = {"A": AgentRecord("A", total=300, count=1), "B": AgentRecord("B", total=900, count=3)}
        assert bucket_totals(bucket) == (1200.0, 4, 300.0)

    def test_average_with_no_policies(self):
        """No policies gives an average of exactly zero."""
        assert bucket_totals({}) == (0.0, 0, 0.0)
        assert bucket_totals({"A": AgentRecord("A")})[2] == 0.0


class TestPersistence:
    """Loading and saving the sales file."""

    def test_missing_file_creates_one(self, store, data_file):
        """Loading without a file writes a fresh document."""
        store.load()
        document = json.loads(data_file.read_text())
        assert document["version"] == 2
        assert document["daily"] == {}
        assert document["lastReset"] == {"dailyTag": None, "weeklyTag": None, "monthlyTag": None}

    def test_state_survives_restart(self, store, data_file, pacific):
        """A new store loads what the old one wrote."""
        store.add_sale(1, "Ana", 250, "Americo Iul", now=pacific(2026, 10, 21))

        restarted = SalesStore(data_file)
        restarted.load()
        assert restarted.to_dict() == store.to_dict()
        assert restarted.get_bucket(WEEKLY)["1"].category_counts == {"Americo Iul": 1}

    def test_legacy_document(self, data_file):
        """Older files with "username" and legacy reset fields are upgraded."""
        data_file.parent.mkdir(parents=True)
        data_file.write_text(json.dumps({
            "daily": {"1": {"username": "ana", "total": 624, "count": 1}},
            "weekly": {},
            "allTime": {"1": {"username": "ana", "total": 624, "count": 1}},
            "lastReset": {"daily": 1729000000, "weekly": "2024-10-14", "weeklyTag": "2024-W42"},
        }))

        store = SalesStore(data_file)
        store.load()
        assert store.get_bucket(DAILY)["1"].display_name == "ana"
        assert store.get_bucket(MONTHLY) == {}
        assert store.last_reset.weekly_tag == "2024-W42"
        assert store.last_reset.daily_tag is None
        assert store.snapshots[WEEKLY] == {}

    def test_corrupt_file_is_moved_aside(self, data_file):
        """An unreadable file is kept as .corrupt and the store starts fresh."""
        data_file.parent.mkdir(parents=True)
        data_file.write_text("{not json")

        store = SalesStore(data_file)
        store.load()
        assert (data_file.parent / "sales.json.corrupt").read_text() == "{not json"
        assert json.loads(data_file.read_text())["allTime"] == {}

    def test_non_finite_totals_never_reach_disk(self, store, data_file, pacific):
        """The file stays strict JSON: a save that would write Infinity is refused."""
        store.add_sale(1, "Ana", 100, "Iul", now=pacific(2026, 10, 21))
        store.get_bucket(ALL_TIME)["1"].total = float("inf")

        assert store.save() is False
        text = data_file.read_text()
        assert "Infinity" not in text
        assert json.loads(text)["allTime"]["1"]["total"] == 100.0

    def test_save_failure_is_not_fatal(self, tmp_path, pacific):
        """A failed write is reported, and memory keeps the sale."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = SalesStore(blocker / "sales.json")

        assert store.save() is False
        store.add_sale(1, "Ana", 100, "Iul", now=pacific(2026, 10, 21))
        assert store.get_bucket(ALL_TIME)["1"].total == 100.0
