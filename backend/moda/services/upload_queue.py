"""
Upload Queue Manager

Background upload queue for drawing files. Callers enqueue batches and get
task ids back immediately; the manager uploads one file at a time, oldest
first, and broadcasts a snapshot of the queue to subscribers after every
change (enqueue, progress tick, status change, removal).

Task lifecycle:
    queued -> uploading -> complete | failed
Only queued tasks can be cancelled. Finished tasks stay visible for a grace
period (3s complete, 10s failed) and are then dropped.

The queue lives in memory only; a restart loses pending uploads.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from ..config import settings
from .errors import StoreUnavailableError, UploadQueueError
from .stores import RemoteFileStore, UploadTarget
from .upload_tasks import (
    FailureKind,
    FileRef,
    QueueStateSnapshot,
    TaskSnapshot,
    TaskStatus,
    UploadOptions,
    UploadPhase,
    UploadProgress,
    UploadTask,
)
from .version_reconciler import VersionReconciler

logger = logging.getLogger(__name__)

Subscriber = Callable[[QueueStateSnapshot], None]


class UploadQueueManager:
    """
    Serial FIFO upload scheduler.

    All public methods except `wait_idle`/`close` are synchronous and never
    suspend; they must be called from the event loop thread.
    """

    def __init__(
        self,
        remote_store: RemoteFileStore,
        reconciler: VersionReconciler,
        completed_ttl: Optional[float] = None,
        failed_ttl: Optional[float] = None,
    ):
        self.remote_store = remote_store
        self.reconciler = reconciler
        self.completed_ttl = settings.COMPLETED_TASK_TTL if completed_ttl is None else completed_ttl
        self.failed_ttl = settings.FAILED_TASK_TTL if failed_ttl is None else failed_ttl

        self._queue: List[UploadTask] = []
        self._is_processing = False
        self._current: Optional[UploadTask] = None
        self._completed_count = 0
        self._failed_count = 0
        self._subscribers: Dict[object, Subscriber] = {}  # insertion ordered
        self._worker: Optional[asyncio.Task] = None
        self._removal_timers: Dict[str, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def enqueue(self, files: Iterable[FileRef], options: UploadOptions) -> List[str]:
        """Append one task per file and start the drain loop if idle"""
        destination = options.destination()
        tasks = [
            UploadTask(
                file=file,
                destination=destination,
                created_by=options.created_by,
                notes=options.notes,
            )
            for file in files
        ]
        if not tasks:
            return []

        self._queue.extend(tasks)
        logger.info(
            f"[UploadQueue] Queued {len(tasks)} file(s) for {destination.project_name} / "
            f"{destination.discipline_name} (pending: {self._pending_count()})"
        )
        self._notify()

        if not self._is_processing and (self._worker is None or self._worker.done()):
            self._worker = asyncio.get_running_loop().create_task(self._process_queue())

        return [task.id for task in tasks]

    def cancel(self, task_id: str) -> bool:
        """Drop a task that has not started yet. In-flight or finished tasks are left alone."""
        for index, task in enumerate(self._queue):
            if task.id == task_id:
                if task.status != TaskStatus.QUEUED:
                    return False
                del self._queue[index]
                task.file.release()
                logger.info(f"[UploadQueue] Cancelled {task.file.name}")
                self._notify()
                return True
        return False

    def cancel_all_pending(self) -> None:
        """Drop every queued task; the current upload runs to completion"""
        dropped = [task for task in self._queue if task.status == TaskStatus.QUEUED]
        self._queue = [task for task in self._queue if task.status != TaskStatus.QUEUED]
        for task in dropped:
            task.file.release()
        if dropped:
            logger.info(f"[UploadQueue] Cancelled {len(dropped)} pending upload(s)")
            self._notify()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a listener; returns an idempotent detach function.
        Listeners run in registration order, and each registration is
        detached on its own, so the same callback may be subscribed twice.
        """
        token = object()
        self._subscribers[token] = callback

        def unsubscribe():
            self._subscribers.pop(token, None)

        return unsubscribe

    def get_state(self) -> QueueStateSnapshot:
        queue = tuple(task.snapshot() for task in self._queue)
        current = next((s for s in queue if self._current and s.id == self._current.id), None)
        return QueueStateSnapshot(
            queue=queue,
            is_processing=self._is_processing,
            current_upload=current,
            completed_count=self._completed_count,
            failed_count=self._failed_count,
            pending_count=sum(1 for s in queue if s.status == TaskStatus.QUEUED),
            total_in_queue=len(queue),
        )

    def get_task(self, task_id: str) -> Optional[TaskSnapshot]:
        for task in self._queue:
            if task.id == task_id:
                return task.snapshot()
        return None

    def clear_history(self) -> None:
        """Reset the completed/failed counters; queue contents are untouched"""
        self._completed_count = 0
        self._failed_count = 0
        self._notify()

    async def wait_idle(self) -> None:
        """Wait until the drain loop has nothing left to do"""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def close(self) -> None:
        """Stop removal timers and wait for the current drain loop"""
        await self.wait_idle()
        for handle in self._removal_timers.values():
            handle.cancel()
        self._removal_timers.clear()
        self._subscribers.clear()

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _pending_count(self) -> int:
        return sum(1 for task in self._queue if task.status == TaskStatus.QUEUED)

    def _next_queued(self) -> Optional[UploadTask]:
        return next((task for task in self._queue if task.status == TaskStatus.QUEUED), None)

    async def _process_queue(self):
        if self._is_processing:
            return
        self._is_processing = True
        try:
            while True:
                task = self._next_queued()
                if task is None:
                    break
                await self._run_task(task)
        finally:
            self._is_processing = False
            self._current = None
            logger.info(
                f"[UploadQueue] Queue drained (completed: {self._completed_count}, "
                f"failed: {self._failed_count})"
            )
            self._notify()

    async def _run_task(self, task: UploadTask):
        self._current = task
        task.status = TaskStatus.UPLOADING
        task.start_time = datetime.utcnow()
        task.progress = UploadProgress(percent=0, phase=UploadPhase.PREPARING, total_bytes=task.file.size)
        self._notify()

        try:
            await self._upload_and_reconcile(task)
            task.status = TaskStatus.COMPLETE
            task.progress = UploadProgress(
                percent=100,
                phase=UploadPhase.COMPLETE,
                bytes_uploaded=task.file.size,
                total_bytes=task.file.size,
                speed_bytes_per_sec=task.progress.speed_bytes_per_sec,
            )
            self._completed_count += 1
            logger.info(f"[UploadQueue] Uploaded {task.file.name} as version {task.version}")
        except UploadQueueError as e:
            self._mark_failed(task, str(e), e.kind)
        except Exception as e:
            logger.exception(f"[UploadQueue] Unexpected error uploading {task.file.name}")
            self._mark_failed(task, str(e) or e.__class__.__name__, FailureKind.UNEXPECTED)
        finally:
            task.end_time = datetime.utcnow()
            self._current = None
            task.file.release()

        self._notify()
        self._schedule_removal(task)

    async def _upload_and_reconcile(self, task: UploadTask):
        if not self.remote_store.is_available():
            raise StoreUnavailableError("Remote file store is not configured")

        plan = await self.reconciler.plan(task, self.remote_store)

        def on_progress(progress: UploadProgress):
            # Terminal progress is set by the queue once metadata is written
            if task.status != TaskStatus.UPLOADING:
                return
            task.progress = progress
            self._notify()

        target = UploadTarget(folder_path=plan.folder_path, file_name=plan.upload_file_name)
        task.remote_file = await self.remote_store.upload_file(task.file, target, on_progress)

        record = await self.reconciler.record(task, plan, task.remote_file, self.remote_store)
        task.drawing_id = record.drawing_id
        task.version = record.version.version

    def _mark_failed(self, task: UploadTask, message: str, kind: FailureKind):
        task.status = TaskStatus.FAILED
        task.error = message
        task.failure_kind = kind
        self._failed_count += 1
        logger.error(f"[UploadQueue] Upload failed for {task.file.name} ({kind.value}): {message}")

    def _schedule_removal(self, task: UploadTask):
        delay = self.completed_ttl if task.status == TaskStatus.COMPLETE else self.failed_ttl
        loop = asyncio.get_running_loop()
        self._removal_timers[task.id] = loop.call_later(delay, self._remove_task, task.id)

    def _remove_task(self, task_id: str):
        self._removal_timers.pop(task_id, None)
        before = len(self._queue)
        self._queue = [task for task in self._queue if task.id != task_id]
        if len(self._queue) != before:
            self._notify()

    def _notify(self):
        if not self._subscribers:
            return
        state = self.get_state()
        for callback in list(self._subscribers.values()):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"[UploadQueue] Listener error: {e}")
