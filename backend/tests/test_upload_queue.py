import asyncio
import dataclasses
import threading

import pytest

from moda.services.upload_queue import UploadQueueManager
from moda.services.upload_tasks import FailureKind, FileRef, TaskStatus, UploadOptions
from moda.services.version_reconciler import VersionReconciler

from .conftest import COMPLETED_TTL, FAILED_TTL, FakeMetadataStore, FakeRemoteStore, raise_transport


def track(queue):
    """Last snapshot seen for every task id, collected through a subscriber"""
    seen = {}

    def listener(state):
        for task in state.queue:
            seen[task.id] = task

    queue.subscribe(listener)
    return seen


class TestOrdering:

    @pytest.mark.asyncio
    async def test_fifo_one_at_a_time(self, queue, remote_store, upload_options, make_file):
        ids = queue.enqueue([make_file("a.pdf"), make_file("b.pdf"), make_file("c.pdf")], upload_options)
        await queue.wait_idle()

        assert len(ids) == 3
        assert remote_store.upload_order == ["a.pdf", "b.pdf", "c.pdf"]
        assert remote_store.max_active == 1

    @pytest.mark.asyncio
    async def test_enqueue_while_processing_joins_the_same_loop(self, queue, remote_store, upload_options, make_file):
        remote_store.gate = threading.Event()
        queue.enqueue([make_file("a.pdf")], upload_options)
        await remote_store.started.wait()

        queue.enqueue([make_file("b.pdf")], upload_options)
        queue.enqueue([make_file("c.pdf")], upload_options)
        state = queue.get_state()
        assert state.is_processing
        assert state.current_upload.file_name == "a.pdf"
        assert state.pending_count == 2

        remote_store.gate.set()
        await queue.wait_idle()

        assert remote_store.upload_order == ["a.pdf", "b.pdf", "c.pdf"]
        assert remote_store.max_active == 1
        assert queue.get_state().completed_count == 3

    @pytest.mark.asyncio
    async def test_empty_batch(self, queue, upload_options):
        assert queue.enqueue([], upload_options) == []
        assert queue.get_state().total_in_queue == 0

    @pytest.mark.asyncio
    async def test_enqueue_returns_immediately(self, queue, remote_store, upload_options, make_file):
        ids = queue.enqueue([make_file("a.pdf")], upload_options)

        # Nothing has run yet; the drain loop starts on the next loop iteration
        state = queue.get_state()
        assert [t.id for t in state.queue] == ids
        assert state.queue[0].status == TaskStatus.QUEUED
        assert remote_store.upload_order == []
        await queue.wait_idle()


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_only_queued(self, queue, remote_store, upload_options, make_file):
        remote_store.gate = threading.Event()
        a, b, c = queue.enqueue([make_file("a.pdf"), make_file("b.pdf"), make_file("c.pdf")], upload_options)
        await remote_store.started.wait()

        assert queue.cancel(a) is False  # uploading
        assert queue.cancel(b) is True
        assert queue.cancel(b) is False  # already gone
        assert queue.cancel("upload-unknown") is False

        remote_store.gate.set()
        await queue.wait_idle()

        assert remote_store.upload_order == ["a.pdf", "c.pdf"]
        assert queue.cancel(c) is False  # complete

    @pytest.mark.asyncio
    async def test_cancel_all_pending_leaves_current_upload(self, queue, remote_store, upload_options, make_file):
        remote_store.gate = threading.Event()
        queue.enqueue([make_file("a.pdf"), make_file("b.pdf"), make_file("c.pdf")], upload_options)
        await remote_store.started.wait()

        queue.cancel_all_pending()
        state = queue.get_state()
        assert state.pending_count == 0
        assert state.total_in_queue == 1
        assert state.current_upload.file_name == "a.pdf"

        remote_store.gate.set()
        await queue.wait_idle()
        assert remote_store.upload_order == ["a.pdf"]
        assert queue.get_state().completed_count == 1

    @pytest.mark.asyncio
    async def test_cancel_keeps_relative_order(self, queue, remote_store, upload_options, make_file):
        remote_store.gate = threading.Event()
        ids = queue.enqueue([make_file(f"{n}.pdf") for n in "abcde"], upload_options)
        await remote_store.started.wait()

        queue.cancel(ids[2])
        remote_store.gate.set()
        await queue.wait_idle()

        assert remote_store.upload_order == ["a.pdf", "b.pdf", "d.pdf", "e.pdf"]

    @pytest.mark.asyncio
    async def test_cancel_removes_staged_file(self, queue, remote_store, upload_options, tmp_path):
        remote_store.gate = threading.Event()
        staged = tmp_path / "b.pdf"
        staged.write_bytes(b"%PDF")
        first = FileRef.from_bytes("a.pdf", b"%PDF")
        second = FileRef(name="b.pdf", size=4, path=str(staged), temporary=True)

        _, b = queue.enqueue([first, second], upload_options)
        await remote_store.started.wait()
        assert queue.cancel(b)
        assert not staged.exists()

        remote_store.gate.set()
        await queue.wait_idle()


class TestSubscribe:

    @pytest.mark.asyncio
    async def test_one_notification_per_mutation(self, queue, remote_store, upload_options, make_file):
        remote_store.gate = threading.Event()
        queue.enqueue([make_file("a.pdf")], upload_options)
        await remote_store.started.wait()

        calls = []
        unsubscribe = queue.subscribe(calls.append)

        _, c = queue.enqueue([make_file("b.pdf"), make_file("c.pdf")], upload_options)
        assert len(calls) == 1
        queue.cancel(c)
        assert len(calls) == 2
        queue.clear_history()
        assert len(calls) == 3

        unsubscribe()
        unsubscribe()  # idempotent
        queue.cancel_all_pending()
        remote_store.gate.set()
        await queue.wait_idle()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_cancel_all_with_nothing_queued_is_silent(self, queue):
        calls = []
        queue.subscribe(calls.append)

        queue.cancel_all_pending()

        assert calls == []

    @pytest.mark.asyncio
    async def test_each_registration_detaches_separately(self, queue):
        order = []
        first = queue.subscribe(lambda state: order.append("first"))
        second = queue.subscribe(lambda state: order.append("second"))
        queue.clear_history()
        assert order == ["first", "second"]

        calls = []
        detach_a = queue.subscribe(calls.append)
        detach_b = queue.subscribe(calls.append)
        queue.clear_history()
        assert len(calls) == 2

        detach_a()
        queue.clear_history()
        assert len(calls) == 3

        detach_b()
        first()
        second()
        queue.clear_history()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(self, queue, upload_options, make_file):
        def broken(state):
            raise RuntimeError("listener bug")

        calls = []
        queue.subscribe(broken)
        queue.subscribe(calls.append)
        queue.enqueue([make_file("a.pdf")], upload_options)
        await queue.wait_idle()

        assert calls
        assert queue.get_state().completed_count == 1

    @pytest.mark.asyncio
    async def test_progress_ticks_in_order(self, queue, upload_options, make_file):
        percents = []

        def listener(state):
            for task in state.queue:
                if task.status != TaskStatus.QUEUED:
                    percents.append(task.progress.percent)

        queue.subscribe(listener)
        queue.enqueue([make_file("a.pdf")], upload_options)
        await queue.wait_idle()

        deduped = [p for i, p in enumerate(percents) if i == 0 or p != percents[i - 1]]
        assert deduped == [0, 25, 50, 75, 100]


class TestSnapshots:

    @pytest.mark.asyncio
    async def test_snapshots_are_frozen_copies(self, queue, upload_options, make_file):
        queue.enqueue([make_file("a.pdf")], upload_options)
        before = queue.get_state()
        task = before.queue[0]

        with pytest.raises(dataclasses.FrozenInstanceError):
            task.status = TaskStatus.COMPLETE
        with pytest.raises(dataclasses.FrozenInstanceError):
            before.completed_count = 5

        await queue.wait_idle()

        assert task.status == TaskStatus.QUEUED
        assert before.completed_count == 0
        assert queue.get_task(task.id).status == TaskStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_to_dict(self, queue, upload_options, make_file):
        queue.enqueue([make_file("a.pdf")], upload_options)
        await queue.wait_idle()

        data = queue.get_state().to_dict()
        task = data["queue"][0]
        assert task["status"] == "complete"
        assert task["progress"]["phase"] == "complete"
        assert task["destination"]["project_id"] == "proj-1"
        assert task["remote_file"]["id"] == "item-1"
        assert data["current_upload"] is None
        assert data["is_processing"] is False

    @pytest.mark.asyncio
    async def test_clear_history_keeps_queue(self, queue, upload_options, make_file):
        queue.enqueue([make_file("a.pdf")], upload_options)
        await queue.wait_idle()

        queue.clear_history()
        state = queue.get_state()
        assert state.completed_count == 0
        assert state.failed_count == 0
        assert state.total_in_queue == 1


class TestRemoval:

    @pytest.mark.asyncio
    async def test_completed_task_removed_after_grace_period(self, queue, upload_options, make_file):
        (task_id,) = queue.enqueue([make_file("a.pdf")], upload_options)
        assert queue.get_task(task_id) is not None

        await queue.wait_idle()
        assert queue.get_task(task_id).status == TaskStatus.COMPLETE

        await asyncio.sleep(COMPLETED_TTL + 0.1)
        assert queue.get_task(task_id) is None
        assert queue.get_state().completed_count == 1

    @pytest.mark.asyncio
    async def test_failed_task_stays_longer(self, queue, remote_store, upload_options, make_file):
        remote_store.fail_on["a.pdf"] = raise_transport()
        (task_id,) = queue.enqueue([make_file("a.pdf")], upload_options)
        await queue.wait_idle()

        await asyncio.sleep(COMPLETED_TTL + 0.1)
        assert queue.get_task(task_id).status == TaskStatus.FAILED

        await asyncio.sleep(FAILED_TTL)
        assert queue.get_task(task_id) is None

    @pytest.mark.asyncio
    async def test_close_cancels_timers(self, queue, upload_options, make_file):
        (task_id,) = queue.enqueue([make_file("a.pdf")], upload_options)
        await queue.close()

        await asyncio.sleep(COMPLETED_TTL + 0.1)
        assert queue.get_task(task_id) is not None


class TestFailures:

    @pytest.mark.asyncio
    async def test_three_files_second_fails(self, queue, remote_store, upload_options, make_file):
        remote_store.fail_on["b.pdf"] = raise_transport()
        seen = track(queue)

        ids = queue.enqueue([make_file("a.pdf"), make_file("b.pdf"), make_file("c.pdf")], upload_options)
        await queue.wait_idle()

        state = queue.get_state()
        assert state.completed_count == 2
        assert state.failed_count == 1
        assert [seen[i].status for i in ids] == [TaskStatus.COMPLETE, TaskStatus.FAILED, TaskStatus.COMPLETE]

        await asyncio.sleep(FAILED_TTL + 0.1)
        assert queue.get_state().total_in_queue == 0

    @pytest.mark.asyncio
    async def test_transport_error_passed_through(self, queue, remote_store, metadata_store, upload_options, make_file):
        remote_store.fail_on["a.pdf"] = raise_transport("Failed to upload file: quota exceeded")
        seen = track(queue)

        (task_id,) = queue.enqueue([make_file("a.pdf")], upload_options)
        await queue.wait_idle()

        task = seen[task_id]
        assert task.status == TaskStatus.FAILED
        assert task.failure_kind == FailureKind.TRANSPORT
        assert task.error == "Failed to upload file: quota exceeded"
        assert task.remote_file is None
        assert task.end_time is not None
        assert metadata_store.drawings == {}

    @pytest.mark.asyncio
    async def test_metadata_failure_is_distinguishable(self, queue, remote_store, metadata_store, upload_options, make_file):
        seen = track(queue)

        remote_store.fail_on["b.pdf"] = raise_transport()
        metadata_store.fail_create_version = RuntimeError("database is locked")
        a, b = queue.enqueue([make_file("a.pdf"), make_file("b.pdf")], upload_options)
        await queue.wait_idle()

        not_recorded, upload_failed = seen[a], seen[b]
        assert not_recorded.status == upload_failed.status == TaskStatus.FAILED
        assert not_recorded.failure_kind == FailureKind.UPLOADED_NOT_RECORDED
        assert upload_failed.failure_kind == FailureKind.TRANSPORT
        assert not_recorded.remote_file is not None
        assert not_recorded.remote_file.id == "item-1"
        assert not_recorded.error.startswith("Uploaded to remote store but not recorded")
        assert "database is locked" in not_recorded.error
        assert upload_failed.remote_file is None

    @pytest.mark.asyncio
    async def test_store_unavailable(self, queue, remote_store, upload_options, make_file):
        remote_store.available = False
        seen = track(queue)

        (task_id,) = queue.enqueue([make_file("a.pdf")], upload_options)
        await queue.wait_idle()

        assert seen[task_id].failure_kind == FailureKind.STORE_UNAVAILABLE
        assert remote_store.folders == []
        assert remote_store.upload_order == []

    @pytest.mark.asyncio
    async def test_folder_failure_sends_no_bytes(self, queue, remote_store, upload_options, make_file):
        remote_store.folder_error = raise_transport("Failed to create folder 'Locke Lofts': 403")
        seen = track(queue)

        (task_id,) = queue.enqueue([make_file("a.pdf")], upload_options)
        await queue.wait_idle()

        assert seen[task_id].failure_kind == FailureKind.FOLDER_RESOLUTION
        assert "403" in seen[task_id].error
        assert remote_store.upload_order == []

    @pytest.mark.asyncio
    async def test_activity_log_failure_is_swallowed(self, queue, metadata_store, upload_options, make_file):
        metadata_store.fail_log_activity = RuntimeError("activity table missing")
        seen = track(queue)

        (task_id,) = queue.enqueue([make_file("a.pdf")], upload_options)
        await queue.wait_idle()

        assert seen[task_id].status == TaskStatus.COMPLETE
        assert seen[task_id].version == "1.0"
        assert seen[task_id].error is None

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_halt_queue(self, queue, remote_store, upload_options, make_file):
        remote_store.fail_on["a.pdf"] = ValueError("bad chunk size")
        seen = track(queue)

        a, b = queue.enqueue([make_file("a.pdf"), make_file("b.pdf")], upload_options)
        await queue.wait_idle()

        assert seen[a].failure_kind == FailureKind.UNEXPECTED
        assert seen[a].error == "bad chunk size"
        assert seen[b].status == TaskStatus.COMPLETE
        assert not queue.get_state().is_processing


class TestVersioning:

    @pytest.mark.asyncio
    async def test_reupload_creates_next_version(self, queue, remote_store, metadata_store, upload_options, make_file):
        seen = track(queue)
        (first,) = queue.enqueue([make_file("plan.pdf")], upload_options)
        await queue.wait_idle()
        (second,) = queue.enqueue([make_file("plan.pdf")], upload_options)
        await queue.wait_idle()

        assert seen[first].version == "1.0"
        assert seen[second].version == "2.0"
        assert seen[first].drawing_id == seen[second].drawing_id

        (drawing,) = metadata_store.drawings.values()
        assert [v.version for v in drawing.versions] == ["1.0", "2.0"]
        assert [v.file_name for v in drawing.versions] == ["plan.pdf", "plan_v2.pdf"]
        assert [t.file_name for t in remote_store.uploads] == ["plan.pdf", "plan_v2.pdf"]
        assert [a["action"] for a in metadata_store.activity] == ["upload", "new_version"]

    @pytest.mark.asyncio
    async def test_new_drawing_never_takes_another_drawings_file_name(
        self, queue, remote_store, metadata_store, upload_options, make_file
    ):
        queue.enqueue([make_file("plan.pdf"), make_file("plan.pdf"), make_file("plan_v2.pdf")], upload_options)
        await queue.wait_idle()

        names = [t.file_name for t in remote_store.uploads]
        assert names == ["plan.pdf", "plan_v2.pdf", "plan_v2_v2.pdf"]
        assert len({t.folder_path for t in remote_store.uploads}) == 1
        assert sorted(d.name for d in metadata_store.drawings.values()) == ["plan.pdf", "plan_v2.pdf"]

    @pytest.mark.asyncio
    async def test_deleted_label_is_not_issued_again(self, queue, metadata_store, upload_options, make_file):
        seen = track(queue)
        queue.enqueue([make_file("plan.pdf"), make_file("plan.pdf")], upload_options)
        await queue.wait_idle()
        (drawing,) = metadata_store.drawings.values()
        metadata_store.delete_version(drawing.id, "2.0")

        (third,) = queue.enqueue([make_file("plan.pdf")], upload_options)
        await queue.wait_idle()

        assert seen[third].version == "3.0"
        assert [v.version for v in drawing.versions] == ["1.0", "3.0"]
        assert drawing.last_version == "3.0"

    @pytest.mark.asyncio
    async def test_versioned_file_name_overrides_computed_name(
        self, queue, remote_store, metadata_store, upload_options, make_file
    ):
        seen = track(queue)
        named = dataclasses.replace(upload_options, versioned_file_name="Locke Lofts E-101.pdf")
        (task_id,) = queue.enqueue([make_file("e101.pdf")], named)
        await queue.wait_idle()

        assert remote_store.uploads[0].file_name == "Locke Lofts E-101.pdf"
        assert seen[task_id].destination.versioned_file_name == "Locke Lofts E-101.pdf"
        assert seen[task_id].to_dict()["destination"]["versioned_file_name"] == "Locke Lofts E-101.pdf"
        (drawing,) = metadata_store.drawings.values()
        assert drawing.name == "e101.pdf"
        assert drawing.versions[0].file_name == "Locke Lofts E-101.pdf"

    @pytest.mark.asyncio
    async def test_versioned_file_name_does_not_overwrite(self, queue, remote_store, upload_options, make_file):
        queue.enqueue([make_file("plan.pdf")], upload_options)
        await queue.wait_idle()

        queue.enqueue([make_file("cover.pdf")], dataclasses.replace(upload_options, versioned_file_name="plan.pdf"))
        await queue.wait_idle()

        assert [t.file_name for t in remote_store.uploads] == ["plan.pdf", "plan_v2.pdf"]

    @pytest.mark.asyncio
    async def test_folder_path(self, queue, remote_store, upload_options, make_file):
        queue.enqueue([make_file("plan.pdf")], upload_options)
        await queue.wait_idle()

        assert remote_store.folders == ["MODA Drawings/Locke Lofts/Permit Drawings/Electrical Submittal"]
        assert remote_store.uploads[0].folder_path == remote_store.folders[0]

    @pytest.mark.asyncio
    async def test_module_package_upload(self, queue, remote_store, metadata_store, make_file):
        options = UploadOptions(
            project_id="proj-1",
            project_name="Locke Lofts",
            category_name="Shop Drawings",
            discipline_name="Module Packages",
            created_by="Jane Smith",
            serial_number="B1L2M15",
            hitch_blm="BLM-A",
            rear_blm="BLM-B",
        )
        queue.enqueue([make_file("Package.pdf")], options)
        await queue.wait_idle()
        queue.enqueue([make_file("Package.pdf")], options)
        await queue.wait_idle()

        module_path = "MODA Drawings/Locke Lofts/Shop Drawings/Module Packages/B1L2M15 - BLM-A - BLM-B"
        assert [t.folder_path for t in remote_store.uploads] == [module_path, module_path]
        assert [t.file_name for t in remote_store.uploads] == ["Package_v1.0.pdf", "Package_v2.0.pdf"]
        (drawing,) = metadata_store.drawings.values()
        assert drawing.name == "B1L2M15 - BLM-A - BLM-B/Package.pdf"

    @pytest.mark.asyncio
    async def test_versioned_package_reupload_is_next_version(self, queue, remote_store, metadata_store, make_file):
        options = UploadOptions(
            project_id="proj-1",
            project_name="Locke Lofts",
            category_name="Shop Drawings",
            discipline_name="Module Packages",
            serial_number="B1L2M15",
        )
        queue.enqueue([make_file("Package.pdf"), make_file("Package_v1.0.pdf")], options)
        await queue.wait_idle()

        assert [t.file_name for t in remote_store.uploads] == ["Package_v1.0.pdf", "Package_v2.0.pdf"]
        (drawing,) = metadata_store.drawings.values()
        assert drawing.name == "B1L2M15/Package.pdf"
        assert [v.version for v in drawing.versions] == ["1.0", "2.0"]

    @pytest.mark.asyncio
    async def test_module_guessed_from_filename(self, queue, remote_store, make_file):
        options = UploadOptions(
            project_id="proj-1",
            project_name="Locke Lofts",
            category_name="Shop Drawings",
            discipline_name="Module Packages",
        )
        queue.enqueue([make_file("Shops - B1L2M15 Rev2.pdf")], options)
        await queue.wait_idle()

        assert remote_store.uploads[0].folder_path.endswith("/Module Packages/B1L2M15")
        assert remote_store.uploads[0].file_name == "Shops - B1L2M15 Rev2_v1.0.pdf"


@pytest.mark.asyncio
async def test_independent_queues(upload_options, make_file):
    first_store, second_store = FakeRemoteStore(), FakeRemoteStore()
    first = UploadQueueManager(first_store, VersionReconciler(FakeMetadataStore()), COMPLETED_TTL, FAILED_TTL)
    second = UploadQueueManager(second_store, VersionReconciler(FakeMetadataStore()), COMPLETED_TTL, FAILED_TTL)

    first.enqueue([make_file("a.pdf")], upload_options)
    second.enqueue([make_file("b.pdf"), make_file("c.pdf")], upload_options)
    await asyncio.gather(first.wait_idle(), second.wait_idle())

    assert first_store.upload_order == ["a.pdf"]
    assert second_store.upload_order == ["b.pdf", "c.pdf"]
    assert first.get_state().completed_count == 1
    assert second.get_state().completed_count == 2
