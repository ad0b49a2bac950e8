# =============================================================================
# tests/unit/test_conflict_resolver.py
# Unit Tests for Last-Write-Wins Conflict Resolution
# =============================================================================

import pandas as pd
import pytest

from lifedash_core.errors import StorageUnavailable
from lifedash_core.notifications import ERROR, INFO
from lifedash_core.offline.conflict_resolver import Resolution, classify, recency


T0 = "2024-01-01T00:00:00Z"


def at(seconds):
    return (pd.Timestamp(T0) + pd.Timedelta(seconds=seconds)).isoformat()


class TestRecency:
    """Timestamp used for last-write-wins"""

    def test_prefers_updated_at(self):
        ts = recency({"updated_at": "2024-01-02T00:00:00Z", "created_at": "2024-01-01T00:00:00Z"})
        assert ts == pd.Timestamp("2024-01-02T00:00:00Z")

    def test_falls_back_to_created_at(self):
        assert recency({"created_at": T0}) == pd.Timestamp(T0)

    def test_naive_values_are_utc(self):
        assert recency({"updated_at": "2024-01-01T00:00:00"}) == pd.Timestamp(T0)

    def test_missing_or_garbage_is_none(self):
        assert recency({}) is None
        assert recency({"updated_at": "not a date"}) is None


class TestClassify:
    """Tolerance window and direction"""

    @pytest.mark.parametrize("local_offset, remote_offset, expected", [
        (5, 0, Resolution.LOCAL_NEWER),
        (0, 5, Resolution.REMOTE_NEWER),
        (0.5, 0, Resolution.IN_SYNC),
        (1, 0, Resolution.IN_SYNC),
        (1.5, 0, Resolution.LOCAL_NEWER),
        (0, 1.5, Resolution.REMOTE_NEWER),
    ])
    def test_last_write_wins_outside_tolerance(self, local_offset, remote_offset, expected):
        local = {"id": "n1", "updated_at": at(local_offset)}
        remote = {"id": "n1", "updated_at": at(remote_offset)}
        assert classify(local, remote, tolerance_seconds=1.0) is expected

    def test_missing_timestamp_is_not_a_conflict(self):
        assert classify({"id": "n1"}, {"id": "n1", "updated_at": T0}) is Resolution.IN_SYNC

    def test_timezones_compare_as_instants(self):
        local = {"updated_at": "2024-01-01T02:00:05+02:00"}
        remote = {"updated_at": "2024-01-01T00:00:00Z"}
        assert classify(local, remote) is Resolution.LOCAL_NEWER


class TestReconcile:
    """Collection sweep against the remote store"""

    def test_local_newer_is_pushed(self, open_core, arun, remote_store):
        remote_store.seed("notes", {"id": "n1", "user_id": "user-1", "body": "old", "updated_at": at(0)})

        async def scenario():
            async with open_core(online=True) as ctx:
                await ctx.local_db.put("notes", {"id": "n1", "user_id": "user-1", "body": "new", "updated_at": at(5)})
                report = await ctx.resolver.reconcile("notes")
                return report, await ctx.local_db.get("notes", "n1")

        report, local = arun(scenario())
        assert (report.conflicts, report.pushed, report.pulled) == (1, 1, 0)
        assert remote_store.rows("notes")[0]["body"] == "new"
        assert local["body"] == "new"

    def test_remote_newer_overwrites_local(self, open_core, arun, remote_store):
        remote_store.seed("tasks", {"id": 3, "user_id": "user-1", "title": "remote", "updated_at": at(10)})

        async def scenario():
            async with open_core(online=True) as ctx:
                await ctx.local_db.put("tasks", {"id": 3, "user_id": "user-1", "title": "local", "updated_at": at(0)})
                report = await ctx.resolver.reconcile("tasks")
                return report, await ctx.local_db.get("tasks", 3)

        report, local = arun(scenario())
        assert report.pulled == 1
        assert local["title"] == "remote"
        assert remote_store.calls_for("update") == []

    def test_within_tolerance_left_alone(self, open_core, arun, remote_store):
        remote_store.seed("habits", {"id": "h1", "user_id": "user-1", "name": "remote", "updated_at": at(0)})

        async def scenario():
            async with open_core(online=True) as ctx:
                await ctx.local_db.put("habits", {"id": "h1", "user_id": "user-1", "name": "local", "updated_at": at(1)})
                report = await ctx.resolver.reconcile("habits")
                return report, await ctx.local_db.get("habits", "h1")

        report, local = arun(scenario())
        assert report.scanned == 1
        assert report.conflicts == 0
        assert local["name"] == "local"
        assert remote_store.rows("habits")[0]["name"] == "remote"

    def test_temp_and_local_only_records_skipped(self, open_core, arun, remote_store):
        remote_store.seed("tasks", {"id": "temp_1_x", "user_id": "user-1", "updated_at": at(0)})

        async def scenario():
            async with open_core(online=True) as ctx:
                await ctx.local_db.put("tasks", {"id": "temp_1_x", "updated_at": at(50)})
                await ctx.local_db.put("tasks", {"id": "only-here", "updated_at": at(50)})
                return await ctx.resolver.reconcile("tasks")

        report = arun(scenario())
        assert report.scanned == 0
        assert remote_store.calls_for("update") == []

    def test_failed_push_leaves_pair_unresolved(self, open_core, arun, remote_store, notifier):
        remote_store.seed("notes", {"id": "n1", "user_id": "user-1", "body": "old", "updated_at": at(0)})
        remote_store.fail("update")

        async def scenario():
            async with open_core(online=True) as ctx:
                await ctx.local_db.put("notes", {"id": "n1", "user_id": "user-1", "body": "new", "updated_at": at(9)})
                return await ctx.resolver.reconcile_all(["notes"])

        (report,) = arun(scenario())
        assert report.failed == 1
        assert report.resolved == 0
        assert remote_store.rows("notes")[0]["body"] == "old"
        assert notifier.messages() == []

    def test_remote_select_failure_skips_collection(self, open_core, arun, remote_store):
        remote_store.fail("select")

        async def scenario():
            async with open_core(online=True) as ctx:
                await ctx.local_db.put("notes", {"id": "n1", "updated_at": at(0)})
                return await ctx.resolver.reconcile("notes")

        report = arun(scenario())
        assert report.skipped
        assert report.conflicts == 0

    def test_signed_out_skips(self, open_core, arun, identity):
        identity.user = None

        async def scenario():
            async with open_core(online=True) as ctx:
                return await ctx.resolver.reconcile("notes")

        assert arun(scenario()).skipped == "signed out"


class TestReconcileAll:
    """Sweep summary"""

    def test_single_summary_notice(self, open_core, arun, remote_store, notifier):
        remote_store.seed("notes", {"id": "n1", "user_id": "user-1", "updated_at": at(0)})
        remote_store.seed("tasks", {"id": "t1", "user_id": "user-1", "updated_at": at(20)})

        async def scenario():
            async with open_core(online=True) as ctx:
                await ctx.local_db.put("notes", {"id": "n1", "user_id": "user-1", "updated_at": at(10)})
                await ctx.local_db.put("tasks", {"id": "t1", "user_id": "user-1", "updated_at": at(0)})
                return await ctx.resolver.reconcile_all(["tasks", "notes", "goals"])

        reports = arun(scenario())
        assert [r.collection for r in reports] == ["tasks", "notes", "goals"]
        assert notifier.messages(INFO) == ["Resolved 2 conflict(s)"]

    def test_no_conflicts_no_notice(self, open_core, arun, notifier):
        async def scenario():
            async with open_core(online=True) as ctx:
                return await ctx.resolver.reconcile_all(["tasks"])

        arun(scenario())
        assert notifier.messages() == []

    def test_local_storage_failure_is_surfaced_and_sweep_continues(self, open_core, arun, notifier, monkeypatch):
        async def scenario():
            async with open_core(online=True) as ctx:
                original = ctx.resolver.reconcile

                async def flaky(collection):
                    if collection == "tasks":
                        raise StorageUnavailable("disk full", collection="tasks", operation="get")
                    return await original(collection)

                monkeypatch.setattr(ctx.resolver, "reconcile", flaky)
                return await ctx.resolver.reconcile_all(["tasks", "notes"])

        reports = arun(scenario())
        assert reports[0].skipped == "disk full"
        assert reports[1].collection == "notes"
        assert notifier.messages(ERROR) == ["Critical Error: disk full. Your changes may not be saved."]
