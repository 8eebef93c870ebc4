"""
Polling state machine for submitted provider tasks.

JobPoller holds the state; step() advances it by one status check and run()
is the driver that waits between steps. Waiting is cooperative: a cancel
event wakes the driver early and ends the loop.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from ai_gen_orchestrator.providers.base import ProviderAdapter, ProviderError, ProviderStatus

from .jobs import JobStatus, PollingPolicy

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class PollOutcome:
    """Terminal result of a polling run."""
    status: JobStatus
    result_urls: Tuple[str, ...] = ()
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    attempts: int = 0
    elapsed_seconds: float = 0.0


class JobPoller:
    """Drives one provider task from polling to a terminal status.

    State transitions:
        polling -> succeeded   provider success with at least one result URL
        polling -> failed      provider failure, success without URLs, or a
                               permanently rejected status check
        polling -> timed_out   attempts exhausted or polling abandoned
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        provider_task_id: str,
        policy: PollingPolicy,
        on_progress: Optional[ProgressCallback] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.adapter = adapter
        self.provider_task_id = provider_task_id
        self.policy = policy
        self.on_progress = on_progress
        self._clock = clock
        self._started_at = clock()
        self.status = JobStatus.POLLING
        self.attempts = 0
        self.result_urls: Tuple[str, ...] = ()
        self.error_message: Optional[str] = None
        self.error_code: Optional[str] = None
        self.last_poll_error: Optional[ProviderError] = None

    @property
    def max_attempts(self) -> int:
        return self.policy.max_attempts

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started_at

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def step(self) -> JobStatus:
        """Perform one status check and apply the resulting transition."""
        if self.is_terminal:
            return self.status

        self.attempts += 1
        try:
            result = self.adapter.check_status(self.provider_task_id)
        except ProviderError as exc:
            self.last_poll_error = exc
            if not exc.transient:
                self.status = JobStatus.FAILED
                self.error_message = exc.message
                self.error_code = exc.code
                logger.error(
                    "Status check rejected for task %s (code %s): %s",
                    self.provider_task_id, exc.code, exc.message,
                )
                return self.status
            # Transient failures use up an attempt and polling continues
            logger.warning(
                "Status check failed for task %s (attempt %d/%d): %s",
                self.provider_task_id, self.attempts, self.max_attempts, exc.message,
            )
            result = None

        if result is not None:
            if result.status is ProviderStatus.SUCCESS:
                if result.result_urls:
                    self.status = JobStatus.SUCCEEDED
                    self.result_urls = tuple(result.result_urls)
                else:
                    self.status = JobStatus.FAILED
                    self.error_message = "Generation succeeded but no result URL was returned"
                    self.error_code = "empty_result"
            elif result.status is ProviderStatus.FAILED:
                self.status = JobStatus.FAILED
                self.error_message = result.error_message or "Unknown error"
                self.error_code = result.error_code

        if not self.is_terminal and self.attempts >= self.max_attempts:
            self.status = JobStatus.TIMED_OUT
            self.error_message = (
                f"Generation did not finish after {self.attempts} status checks "
                f"({self.elapsed:.0f}s)"
            )
        return self.status

    def abandon(self) -> None:
        """Stop polling locally. The provider task keeps running."""
        if not self.is_terminal:
            self.status = JobStatus.TIMED_OUT
            self.error_message = f"Polling abandoned after {self.attempts} status checks"
            self.error_code = "abandoned"

    def _notify(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.attempts + 1, self.max_attempts)
        except Exception:
            logger.warning("Progress callback raised; ignoring", exc_info=True)

    def run(
        self,
        sleep: Optional[Callable[[float], None]] = None,
        cancel: Optional[threading.Event] = None
    ) -> PollOutcome:
        """Poll until a terminal status.

        Args:
            sleep: Wait function, defaults to cancel.wait or time.sleep
            cancel: Event that abandons polling when set

        Returns:
            PollOutcome with the terminal status
        """
        if sleep is None:
            sleep = cancel.wait if cancel is not None else time.sleep

        while not self.is_terminal:
            if cancel is not None and cancel.is_set():
                self.abandon()
                break
            self._notify()
            sleep(self.policy.interval_seconds)
            if cancel is not None and cancel.is_set():
                self.abandon()
                break
            self.step()
            logger.debug(
                "Task %s polled (attempt %d/%d): %s",
                self.provider_task_id, self.attempts, self.max_attempts, self.status.value,
            )

        return self.outcome()

    def outcome(self) -> PollOutcome:
        return PollOutcome(
            status=self.status,
            result_urls=self.result_urls,
            error_message=self.error_message,
            error_code=self.error_code,
            attempts=self.attempts,
            elapsed_seconds=self.elapsed,
        )
