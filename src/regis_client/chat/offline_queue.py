"""Durable FIFO of prompts deferred while offline."""

import asyncio
import json
import os
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from regis_client.chat.models import QueuedRequest
from regis_client.clients.connectivity import ConnectivityMonitor
from regis_client.config.settings import settings
from regis_client.exceptions import QueueError
from regis_client.utils.logger import logger
from regis_client.utils.structured_logging import log_error, log_queue_event

QueueExecutor = Callable[[QueuedRequest], Awaitable[object]]


class OfflineQueue:
    """
    Persisted queue of deferred prompts, replayed in insertion order.

    Each drain pass sends every item once, sequentially. A failed send
    increments the item's retry count; an item that reaches
    ``max_retries`` failures is dropped so it never blocks the items
    behind it.
    """

    def __init__(
        self,
        storage_path: str | Path | None = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        executor: Optional[QueueExecutor] = None,
        max_retries: Optional[int] = None,
    ):
        """
        Initialize the queue and load persisted items.

        Args:
            storage_path: JSON file holding the queue (defaults to settings.OFFLINE_QUEUE_PATH)
            connectivity: Monitor whose online transitions trigger a drain
            executor: Sends one queued request; raising marks the attempt failed
            max_retries: Failed sends before an item is dropped
        """
        self.storage_path = Path(storage_path or settings.OFFLINE_QUEUE_PATH)
        self.connectivity = connectivity if connectivity is not None else ConnectivityMonitor()
        self.executor = executor
        self.max_retries = settings.OFFLINE_QUEUE_MAX_RETRIES if max_retries is None else max_retries
        self._items: List[QueuedRequest] = self._load()
        self._processing = False
        self._drain_task: Optional[asyncio.Task] = None
        self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)
        logger.debug(f"OfflineQueue loaded {len(self._items)} items from {self.storage_path}")

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> List[QueuedRequest]:
        return list(self._items)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def enqueue(self, prompt: str, model: Optional[str] = None) -> str:
        """Append a prompt and persist; returns its id."""
        request = QueuedRequest(prompt=prompt, model=model)
        self._items.append(request)
        self._save()
        log_queue_event("enqueued", request.id, len(self._items))
        return request.id

    def dequeue(self, request_id: str) -> None:
        before = len(self._items)
        self._items = [r for r in self._items if r.id != request_id]
        if len(self._items) != before:
            self._save()
            log_queue_event("removed", request_id, len(self._items))

    def clear(self) -> None:
        self._items = []
        self._save()
        logger.info("Offline queue cleared")

    async def process(self, executor: Optional[QueueExecutor] = None) -> int:
        """
        Drain the queue once.

        Does nothing while offline or when a drain is already running.
        Stops early if connectivity drops mid-drain.

        Args:
            executor: Overrides the executor given at construction

        Returns:
            Number of prompts sent successfully
        """
        executor = executor if executor is not None else self.executor
        if executor is None:
            raise QueueError("OfflineQueue.process() needs an executor")
        if not self.connectivity.is_online or self._processing or not self._items:
            return 0

        self._processing = True
        sent = 0
        try:
            for request in list(self._items):
                if not self.connectivity.is_online:
                    logger.info("Went offline while draining, pausing queue")
                    break
                if request not in self._items:
                    continue
                if request.retry_count >= self.max_retries:
                    self._drop(request)
                    continue
                try:
                    await executor(request)
                except Exception as e:
                    self._record_failure(request, e)
                else:
                    sent += 1
                    self._discard(request)
                    log_queue_event("sent", request.id, len(self._items))
        finally:
            self._processing = False
        return sent

    def close(self) -> None:
        """Detach from connectivity and cancel a scheduled drain."""
        self._unsubscribe()
        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()

    def _record_failure(self, request: QueuedRequest, error: Exception) -> None:
        request.retry_count += 1
        log_error(
            error_type="queue_error",
            error_message=str(error),
            context={"request_id": request.id, "retry_count": request.retry_count},
        )
        if request.retry_count >= self.max_retries:
            self._drop(request)
        else:
            self._save()
            log_queue_event("retry", request.id, len(self._items), retry_count=request.retry_count)

    def _discard(self, request: QueuedRequest) -> None:
        if request in self._items:
            self._items.remove(request)
            self._save()

    def _drop(self, request: QueuedRequest) -> None:
        self._discard(request)
        logger.warning(f"Dropping queued prompt {request.id} after {request.retry_count} failed sends")
        log_queue_event("dropped", request.id, len(self._items), retry_count=request.retry_count)

    def _on_connectivity_change(self, online: bool) -> None:
        if not online or self.executor is None or not self._items:
            return
        if self._drain_task is not None and not self._drain_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Back online outside an event loop; drain on next process() call")
            return
        self._drain_task = loop.create_task(self.process())
        self._drain_task.add_done_callback(self._on_drain_done)

    def _on_drain_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Offline queue drain failed: {error!r}")
            log_error(error_type="queue_error", error_message=str(error), context={"stage": "drain"})

    def _load(self) -> List[QueuedRequest]:
        if not self.storage_path.exists():
            return []
        try:
            data = json.loads(self.storage_path.read_text(encoding="utf-8"))
            return [QueuedRequest.from_dict(item) for item in data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to parse offline queue at {self.storage_path}: {e}")
            return []

    def _save(self) -> None:
        tmp_path = self.storage_path.with_suffix(self.storage_path.suffix + ".tmp")
        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps([r.to_dict() for r in self._items], indent=2),
                encoding="utf-8",
            )
            os.replace(tmp_path, self.storage_path)
        except OSError as e:
            raise QueueError(f"Could not persist offline queue to {self.storage_path}") from e
