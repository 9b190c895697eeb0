"""
Serialized, rate-limited access to the LLM.
A single consumer task drains a FIFO queue so at most one completion is in
flight; a fixed-window limiter rejects requests once the quota is used up.
"""

import asyncio
import time
from typing import Callable

from src.services.llm_service import LLMService, LLMThrottledError, LLMUnavailableError
from src.utils.logger import get_logger
from src.utils.metrics import record_rate_limited

logger = get_logger(__name__)


class QuotaExceededError(LLMThrottledError):
    """Raised when the local request quota for the current window is exhausted."""


class QueueClosedError(LLMUnavailableError):
    """Raised for requests submitted to, or pending in, a closed queue."""


class FixedWindowRateLimiter:
    """
    Counts requests in fixed windows of ``window_seconds``.
    The counter resets when a new window starts.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._window_start = clock()
        self._count = 0

    def _roll_window(self) -> None:
        now = self._clock()
        if now - self._window_start >= self.window_seconds:
            self._window_start = now
            self._count = 0

    def try_acquire(self) -> bool:
        """Takes one slot in the current window; False when none is left."""
        self._roll_window()
        if self._count >= self.max_requests:
            return False
        self._count += 1
        return True

    def retry_after(self) -> float:
        """Seconds until the current window ends."""
        elapsed = self._clock() - self._window_start
        return max(0.0, self.window_seconds - elapsed)

    @property
    def remaining(self) -> int:
        self._roll_window()
        return max(0, self.max_requests - self._count)


class RequestQueue:
    """
    FIFO queue in front of LLMService.

    ``enqueue`` resolves with the completion text or raises the error the
    LLM service raised. The worker task starts on first use and waits on the
    queue while idle, so new requests are never blocked by an idle worker.
    """

    def __init__(self, llm_service: LLMService, limiter: FixedWindowRateLimiter):
        self.llm_service = llm_service
        self.limiter = limiter
        self._queue: asyncio.Queue[tuple[str, asyncio.Future]] | None = None
        self._worker: asyncio.Task | None = None
        self._closed = False

    async def enqueue(self, prompt: str) -> str:
        """
        Submits a prompt and waits for its completion.

        Args:
            prompt: Prompt text

        Returns:
            Completion text

        Raises:
            QuotaExceededError: If the local rate limit is exhausted
            QueueClosedError: If the queue has been closed
            LLMError: Any error raised by the LLM service
        """
        if self._closed:
            raise QueueClosedError("Request queue is closed")

        if not self.limiter.try_acquire():
            retry_after = self.limiter.retry_after()
            record_rate_limited()
            logger.warning("llm_request_rate_limited", retry_after=retry_after)
            raise QuotaExceededError(
                "Too many requests, please try again shortly", retry_after=retry_after
            )

        self._ensure_worker()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put((prompt, future))
        logger.debug("llm_request_enqueued", pending=self._queue.qsize())
        return await future

    def _ensure_worker(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name="llm-request-queue")

    async def _drain(self) -> None:
        """Processes queued prompts one at a time, forever."""
        while True:
            prompt, future = await self._queue.get()
            try:
                if future.cancelled():
                    continue
                try:
                    result = await self.llm_service.complete(prompt)
                except asyncio.CancelledError:
                    if not future.done():
                        future.set_exception(QueueClosedError("Request queue is closed"))
                    raise
                except Exception as e:
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
            finally:
                self._queue.task_done()

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def aclose(self) -> None:
        """Stops the worker and fails requests still waiting in the queue."""
        self._closed = True
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        if self._queue is not None:
            while not self._queue.empty():
                _, future = self._queue.get_nowait()
                if not future.done():
                    future.set_exception(QueueClosedError("Request queue is closed"))
        logger.info("request_queue_closed")
