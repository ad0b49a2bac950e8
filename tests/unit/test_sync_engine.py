# =============================================================================
# tests/unit/test_sync_engine.py
# Unit Tests for SyncEngine
# =============================================================================

import asyncio

import pytest

from lifedash_core.data.remote_store import CurrentUser
from lifedash_core.errors import StorageUnavailable
from lifedash_core.notifications import ERROR
from lifedash_core.offline.operations import Create, Delete, Update
from lifedash_core.offline.sync_engine import DrainReport


async def queue_offline(ctx, collection, *mutations):
    """Enqueue while offline so nothing drains early, then come back online."""
    ctx.connection.set_online(False)
    for mutation in mutations:
        await ctx.queue.enqueue(collection, mutation)
    ctx.connection.set_online(True)


class TestDrainBasics:
    """Replay of queued mutations"""

    def test_drain_offline_is_skipped(self, open_core, arun, remote_store):
        async def scenario():
            async with open_core(online=False) as ctx:
                await ctx.queue.enqueue("tasks", Delete(record_id=1))
                return await ctx.engine.drain(), await ctx.queue.count()

        report, pending = arun(scenario())
        assert report.skipped == "offline"
        assert pending == 1
        assert remote_store.calls == []

    def test_drain_signed_out_leaves_queue(self, open_core, arun, identity):
        identity.user = None

        async def scenario():
            async with open_core() as ctx:
                await queue_offline(ctx, "tasks", Delete(record_id=1))
                return await ctx.engine.drain(), await ctx.queue.count()

        report, pending = arun(scenario())
        assert report.skipped == "signed out"
        assert pending == 1

    def test_create_replaces_temp_record_with_remote_row(self, open_core, arun, remote_store):
        async def scenario():
            async with open_core() as ctx:
                local = await ctx.local_db.put("tasks", {"id": "temp_1_abc", "title": "Buy milk", "user_id": "user-1"})
                await queue_offline(ctx, "tasks", Create(record=local))
                report = await ctx.engine.drain()
                return report, await ctx.local_db.get("tasks"), await ctx.queue.count()

        report, records, pending = arun(scenario())
        assert report.applied == 1
        assert pending == 0
        assert records == [{"id": 1, "title": "Buy milk", "user_id": "user-1"}]
        assert remote_store.calls_for("insert") == [("insert", "tasks", None)]

    def test_follow_up_mutations_retarget_to_new_id(self, open_core, arun, remote_store):
        async def scenario():
            async with open_core() as ctx:
                local = await ctx.local_db.put("tasks", {"id": "temp_1_abc", "title": "a", "user_id": "user-1"})
                await queue_offline(
                    ctx,
                    "tasks",
                    Create(record=local),
                    Update(record_id="temp_1_abc", patch={"title": "b"}),
                )
                report = await ctx.engine.drain()
                return report, await ctx.queue.count()

        report, pending = arun(scenario())
        assert report.applied == 2
        assert pending == 0
        assert remote_store.calls_for("update") == [("update", "tasks", 1)]
        assert remote_store.rows("tasks")[0]["title"] == "b"

    def test_not_found_on_update_or_delete_counts_as_applied(self, open_core, arun, notifier):
        async def scenario():
            async with open_core() as ctx:
                await queue_offline(
                    ctx,
                    "tasks",
                    Update(record_id=99, patch={"title": "gone"}),
                    Delete(record_id=99),
                )
                return await ctx.engine.drain(), await ctx.queue.count()

        report, pending = arun(scenario())
        assert report.applied == 2
        assert report.failed == 0
        assert pending == 0
        assert notifier.messages(ERROR) == []


class TestRetries:
    """Bounded retries and discard"""

    def test_failures_bump_retry_count_in_order(self, open_core, arun, remote_store):
        remote_store.fail("update")

        async def scenario():
            async with open_core() as ctx:
                await queue_offline(ctx, "tasks", *[Update(record_id=5, patch={"n": n}) for n in range(3)])
                report = await ctx.engine.drain()
                return report, await ctx.queue.pending()

        report, entries = arun(scenario())
        assert report.failed == 3
        assert [e.retry_count for e in entries] == [1, 1, 1]
        assert [e.mutation.patch["n"] for e in entries] == [0, 1, 2]
        assert entries[0].last_error

    def test_entry_discarded_after_ceiling(self, open_core, arun, remote_store, notifier):
        remote_store.fail("delete")

        async def scenario():
            async with open_core() as ctx:
                await queue_offline(ctx, "notes", Delete(record_id=3))
                reports = [await ctx.engine.drain() for _ in range(5)]
                return reports, await ctx.queue.count()

        reports, pending = arun(scenario())
        assert [r.failed for r in reports[:3]] == [1, 1, 1]
        assert reports[3].discarded == 1
        assert reports[4].attempted == 0
        assert pending == 0
        assert len(remote_store.calls_for("delete")) == 4
        assert notifier.messages(ERROR) == ["Failed to sync delete after 3 retries"]

    def test_one_failure_does_not_block_others(self, open_core, arun, remote_store):
        remote_store.fail("delete")

        async def scenario():
            async with open_core() as ctx:
                remote_store.seed("tasks", {"id": 8, "user_id": "user-1", "title": "x"})
                await queue_offline(ctx, "tasks", Delete(record_id=8), Update(record_id=8, patch={"title": "y"}))
                return await ctx.engine.drain()

        report = arun(scenario())
        assert report.failed == 1
        assert report.applied == 1
        assert remote_store.rows("tasks")[0]["title"] == "y"

    def test_updates_wait_for_failed_create(self, open_core, arun, remote_store):
        remote_store.fail("insert", times=1)

        async def scenario():
            async with open_core() as ctx:
                local = await ctx.local_db.put("tasks", {"id": "temp_9_x", "title": "a"})
                await queue_offline(ctx, "tasks", Create(record=local), Update(record_id="temp_9_x", patch={"title": "b"}))
                first = await ctx.engine.drain()
                entries = await ctx.queue.pending()
                second = await ctx.engine.drain()
                return first, entries, second

        first, entries, second = arun(scenario())
        assert first.failed == 1
        assert first.deferred == 1
        assert [e.retry_count for e in entries] == [1, 0]
        assert second.applied == 2
        assert remote_store.rows("tasks")[0]["title"] == "b"


class TestDrainReport:
    """Report merging across coalesced passes"""

    def test_merge_keeps_skip_reason(self):
        report = DrainReport()
        report.merge(DrainReport(passes=1, skipped="signed out"))
        report.merge(DrainReport(passes=1))
        assert report.skipped == "signed out"
        assert report.passes == 2

    def test_merge_sums_counts(self):
        report = DrainReport()
        report.merge(DrainReport(applied=2, failed=1, errors=["a"]))
        report.merge(DrainReport(applied=1, discarded=1, errors=["b"]))
        assert (report.applied, report.failed, report.discarded) == (3, 1, 1)
        assert report.errors == ["a", "b"]
        assert report.skipped is None


class TestEditsDuringReplay:
    """Local edits racing a queued create that is landing"""

    @pytest.mark.parametrize("yields_before_release", [0, 1, 3, 10, 50])
    def test_edit_while_insert_in_flight_is_kept(self, open_core, arun, remote_store, monkeypatch, yields_before_release):
        async def scenario():
            async with open_core(online=False) as ctx:
                record = await ctx.data_service.create_with_offline("tasks", {"title": "v1"})

                started, release = asyncio.Event(), asyncio.Event()
                insert = remote_store.insert

                async def held_insert(collection, row, owner_id):
                    started.set()
                    await release.wait()
                    return await insert(collection, row, owner_id)

                monkeypatch.setattr(remote_store, "insert", held_insert)
                ctx.connection.set_online(True)

                drain = asyncio.create_task(ctx.engine.drain())
                await started.wait()
                edit = asyncio.create_task(
                    ctx.data_service.update_with_offline("tasks", record["id"], {"title": "v2"})
                )
                for _ in range(yields_before_release):
                    await asyncio.sleep(0)
                release.set()
                await asyncio.gather(drain, edit)
                await ctx.engine.wait_idle()
                await ctx.engine.drain()
                return await ctx.local_db.get("tasks"), await ctx.queue.count()

        local, pending = arun(scenario())
        assert pending == 0
        assert [(r["id"], r["title"]) for r in local] == [(1, "v2")]
        assert [(r["id"], r["title"]) for r in remote_store.rows("tasks")] == [(1, "v2")]

    def test_edit_waiting_on_swap_lands_on_new_id(self, open_core, arun, remote_store):
        async def scenario():
            async with open_core(online=False) as ctx:
                record = await ctx.data_service.create_with_offline("tasks", {"title": "v1"})
                ctx.connection.set_online(True)

                async with ctx.locks.hold("tasks", record["id"]):
                    edit = asyncio.create_task(
                        ctx.data_service.update_with_offline("tasks", record["id"], {"title": "v2"})
                    )
                    await asyncio.sleep(0.01)
                    waiting = not edit.done()
                    entry = (await ctx.queue.pending())[0]
                    await ctx.engine._adopt_created(entry, await remote_store.insert("tasks", {"title": "v1"}, "user-1"))
                    await ctx.queue.remove(entry)

                stored = await edit
                await ctx.engine.wait_idle()
                return waiting, stored, await ctx.local_db.get("tasks"), await ctx.queue.count()

        waiting, stored, local, pending = arun(scenario())
        assert waiting is True
        assert stored["id"] == 1
        assert [(r["id"], r["title"]) for r in local] == [(1, "v2")]
        assert pending == 0
        assert remote_store.rows("tasks")[0]["title"] == "v2"


class TestSingleFlight:
    """At most one drain runs at a time"""

    def test_overlapping_drains_coalesce(self, open_core, arun, remote_store):
        async def scenario():
            async with open_core() as ctx:
                for n in range(3):
                    local = await ctx.local_db.put("tasks", {"id": f"temp_{n}_x", "n": n})
                    await queue_offline(ctx, "tasks", Create(record=local))
                return await asyncio.gather(ctx.engine.drain(), ctx.engine.drain())

        first, second = arun(scenario())
        assert second.skipped == "drain already running"
        assert first.passes == 2
        assert first.applied == 3
        assert len(remote_store.calls_for("insert")) == 3

    def test_enqueue_while_online_triggers_drain(self, open_core, arun, remote_store):
        async def scenario():
            async with open_core(online=True) as ctx:
                await ctx.queue.enqueue("tasks", Delete(record_id=4))
                await ctx.engine.wait_idle()
                return await ctx.queue.count()

        assert arun(scenario()) == 0
        assert remote_store.calls_for("delete") == [("delete", "tasks", 4)]

    def test_storage_failure_aborts_drain(self, open_core, arun, monkeypatch):
        async def scenario():
            async with open_core() as ctx:
                await queue_offline(ctx, "tasks", Delete(record_id=4))

                async def broken_remove(entry):
                    raise StorageUnavailable("disk full", collection="sync_queue", operation="remove")

                monkeypatch.setattr(ctx.queue, "remove", broken_remove)
                try:
                    await ctx.engine.drain()
                finally:
                    assert ctx.engine.is_syncing is False

        with pytest.raises(StorageUnavailable):
            arun(scenario())


class TestEngineStatus:
    """State exposed for the UI"""

    def test_status_display_counts(self, open_core, arun):
        async def scenario():
            async with open_core() as ctx:
                await queue_offline(ctx, "tasks", Delete(record_id=1), Delete(record_id=2))
                before = ctx.engine.get_status_display()
                await ctx.engine.drain()
                return before, ctx.engine.get_status_display()

        before, after = arun(scenario())
        assert before["pending_count"] == 2
        assert after["pending_count"] == 0
        assert after["total_synced"] == 2
        assert after["last_success"] is not None

    def test_state_callbacks_fire_around_drain(self, open_core, arun):
        seen = []

        async def scenario():
            async with open_core(online=True) as ctx:
                ctx.engine.register_callback(lambda state: seen.append(state.is_syncing))
                await ctx.engine.drain()

        arun(scenario())
        assert seen == [True, False]

    def test_other_users_rows_are_not_touched(self, open_core, arun, remote_store, identity):
        identity.user = CurrentUser(id="user-2")

        async def scenario():
            async with open_core() as ctx:
                remote_store.seed("tasks", {"id": 8, "user_id": "user-1", "title": "x"})
                await queue_offline(ctx, "tasks", Update(record_id=8, patch={"title": "hijack"}))
                return await ctx.engine.drain()

        report = arun(scenario())
        assert report.applied == 1
        assert remote_store.rows("tasks")[0]["title"] == "x"
