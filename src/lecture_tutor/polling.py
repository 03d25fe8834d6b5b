"""
Polling fetcher for the `next` operation.

The backend answers "PROCESSING" while it is still generating content. The
fetcher keeps asking, one request at a time, until a segment resolves or the
session's abort signal is raised. The signal is checked before every request
and every wait, so a stop takes effect within one poll interval.

Polling is unbounded by default, matching the backend's pacing. Two optional
limits exist:
    soft ceiling - report "still working" once, then keep polling
    hard limit   - give up with PollTimeoutError
"""

import inspect
import logging
import time
from typing import Any, Callable, Optional

from lecture_tutor.cancellation import AbortSignal
from lecture_tutor.core.errors import FetchFailure, PollTimeoutError, TutorSessionError
from lecture_tutor.core.session_models import Segment
from lecture_tutor.gateway import RemoteSessionGateway

logger = logging.getLogger(__name__)

StillWorkingCallback = Callable[[float], Any]


class PollingFetcher:
    """Resolves the next segment for a lecture, retrying while the backend is busy."""

    def __init__(
        self,
        gateway: RemoteSessionGateway,
        interval_seconds: float = 2.0,
        soft_ceiling_seconds: Optional[float] = 60.0,
        hard_limit_seconds: Optional[float] = None,
        on_still_working: Optional[StillWorkingCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.gateway = gateway
        self.interval_seconds = interval_seconds
        self.soft_ceiling_seconds = soft_ceiling_seconds
        self.hard_limit_seconds = hard_limit_seconds
        self.on_still_working = on_still_working
        self.clock = clock

    async def fetch(self, lecture_id: int, signal: AbortSignal) -> Optional[Segment]:
        """
        Poll until a segment resolves.

        Returns:
            The resolved segment, or None if the abort signal was raised.

        Raises:
            FetchFailure: the `next` call failed, returned an inconsistent
                segment, or the hard limit elapsed
        """
        started = self.clock()
        attempts = 0
        reported_still_working = False

        while True:
            if signal.aborted:
                logger.info(f"Polling for lecture {lecture_id} aborted before attempt {attempts + 1}")
                return None

            attempts += 1
            try:
                segment = await self.gateway.next(lecture_id)
            except TutorSessionError as e:
                logger.error(f"next() failed for lecture {lecture_id} on attempt {attempts}: {e}")
                raise FetchFailure(
                    f"Failed to receive the next segment: {e.message}",
                    lecture_id=lecture_id,
                ) from e

            if signal.aborted:
                # Response arrived after a stop; never surface it
                logger.info(f"Discarding next() response for lecture {lecture_id}: session aborted")
                return None

            if not segment.is_processing:
                if segment.waiting_for_answer and not segment.question_id:
                    raise FetchFailure(
                        "Backend is waiting for an answer but sent no question id",
                        lecture_id=lecture_id,
                    )
                logger.info(
                    f"Resolved {segment.content_type} segment for lecture {lecture_id} "
                    f"after {attempts} attempt(s)"
                )
                return segment

            elapsed = self.clock() - started
            if self.hard_limit_seconds is not None and elapsed >= self.hard_limit_seconds:
                raise PollTimeoutError(
                    f"Content still processing after {elapsed:.0f}s ({attempts} attempts)",
                    lecture_id=lecture_id,
                )
            if (
                not reported_still_working
                and self.soft_ceiling_seconds is not None
                and elapsed >= self.soft_ceiling_seconds
            ):
                reported_still_working = True
                logger.warning(f"Lecture {lecture_id} still processing after {elapsed:.0f}s")
                await self._notify_still_working(elapsed)

            logger.debug(f"Lecture {lecture_id} processing; retrying in {self.interval_seconds}s")
            if await signal.wait(self.interval_seconds):
                logger.info(f"Polling for lecture {lecture_id} aborted while waiting")
                return None

    async def _notify_still_working(self, elapsed: float) -> None:
        if self.on_still_working is None:
            return
        try:
            result = self.on_still_working(elapsed)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"still-working callback failed: {e}", exc_info=True)
