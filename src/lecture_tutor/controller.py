"""
Session controller - the public face of the tutoring session state machine.

The controller is the only writer of session state. Every operation feeds an
event to the pure reducer in `lecture_tutor.logic.session`, stores the new
state, and runs the emitted commands through the command executor. Command
results become new events until nothing is left to run. That explicit work
loop replaces nested "fetch next from inside the previous fetch" callbacks.

Typical use:

    async with SessionController.from_settings(on_segment=show) as tutor:
        await tutor.start(42)
        while tutor.waiting_for_answer:
            await tutor.submit_answer(tutor.current_question_id, input("> "))
"""

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

from lecture_tutor.cancellation import CancellationCoordinator
from lecture_tutor.command_executor import (
    ExecutionContext,
    SessionCallbacks,
    execute_command,
    record_usage_metric,
    schedule_remote_cancel,
)
from lecture_tutor.config import TutorSettings, load_settings
from lecture_tutor.core.commands import (
    CancelRemoteSessionCommand,
    Command,
    FetchNextSegmentCommand,
    InitializeSessionCommand,
    SubmitAnswerCommand,
    TrackUsageMetricCommand,
)
from lecture_tutor.core.errors import (
    AnswerSubmissionFailure,
    FetchFailure,
    InitializationError,
    InvalidTransitionError,
    TutorSessionError,
)
from lecture_tutor.core.session_events import (
    AnswerAccepted,
    AnswerFailed,
    AnswerSubmitted,
    CancelReason,
    CancelRequested,
    FetchCancelled,
    FetchFailed,
    InitializationFailed,
    NextRequested,
    SegmentResolved,
    SessionEventType,
    SessionInitialized,
    StartRequested,
)
from lecture_tutor.core.session_models import (
    ChapterManifest,
    RemoteSessionSnapshot,
    Segment,
    SessionError,
    SessionState,
    SessionStatus,
    SupplementaryResult,
)
from lecture_tutor.core.state import LogicResult
from lecture_tutor.gateway import HttpSessionGateway, RemoteSessionGateway
from lecture_tutor.logic.session import create_initial_session_state, reduce_session_event
from lecture_tutor.polling import PollingFetcher

logger = logging.getLogger(__name__)

REMOTE_CANCEL_GRACE_SECONDS = 2.0

StatusChangeCallback = Callable[[SessionStatus, SessionStatus], Any]


class SessionController:
    """Drives one tutoring session at a time for a single lecture context."""

    def __init__(
        self,
        gateway: RemoteSessionGateway,
        settings: Optional[TutorSettings] = None,
        on_segment: Optional[Callable[..., Any]] = None,
        on_supplementary: Optional[Callable[..., Any]] = None,
        on_error: Optional[Callable[..., Any]] = None,
        on_still_working: Optional[Callable[[float], Any]] = None,
        on_status_change: Optional[StatusChangeCallback] = None,
        fetcher: Optional[PollingFetcher] = None,
    ):
        self.settings = settings or load_settings()
        self.gateway = gateway
        self.callbacks = SessionCallbacks(
            on_segment=on_segment,
            on_supplementary=on_supplementary,
            on_error=on_error,
        )
        self.on_status_change = on_status_change
        self.fetcher = fetcher or PollingFetcher(
            gateway,
            interval_seconds=self.settings.poll_interval_seconds,
            soft_ceiling_seconds=self.settings.poll_soft_ceiling_seconds,
            hard_limit_seconds=self.settings.poll_hard_limit_seconds,
            on_still_working=on_still_working,
        )
        self.cancellation = CancellationCoordinator()

        self._state = create_initial_session_state()
        self._generation = 0
        self._background_tasks: Set[asyncio.Task] = set()
        self._manifest: Optional[ChapterManifest] = None
        self._last_segment: Optional[Segment] = None
        self._last_supplementary: Optional[SupplementaryResult] = None

    @classmethod
    def from_settings(cls, settings: Optional[TutorSettings] = None, **kwargs: Any) -> "SessionController":
        """Controller talking HTTP to the backend configured in `settings`."""
        settings = settings or load_settings()
        return cls(HttpSessionGateway(settings), settings=settings, **kwargs)

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def lecture_id(self) -> Optional[int]:
        return self._state.lecture_id

    @property
    def is_active(self) -> bool:
        return self._state.status in ("initializing", "active", "waiting_for_answer")

    @property
    def waiting_for_answer(self) -> bool:
        return self._state.status == "waiting_for_answer"

    @property
    def current_question_id(self) -> Optional[str]:
        return self._state.current_question_id

    @property
    def manifest(self) -> Optional[ChapterManifest]:
        return self._manifest

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def initialize(self, lecture_id: int) -> ChapterManifest:
        """
        Start a remote session for `lecture_id`.

        Raises:
            InitializationError: a session is already in progress, or the
                backend refused to start one
        """
        result = self._dispatch(StartRequested(lecture_id=lecture_id))
        self._generation += 1
        generation = self._generation
        self.cancellation.new_signal()
        self._manifest = None

        await self._run(result.commands)

        if generation != self._generation:
            raise InitializationError(
                f"Session for lecture {lecture_id} was replaced before it became active",
                lecture_id=lecture_id,
            )
        if self._state.status != "active" or self._manifest is None:
            raise InitializationError(
                f"Session for lecture {lecture_id} was {self._state.status} before it became active",
                lecture_id=lecture_id,
            )
        return self._manifest

    async def start(self, lecture_id: int) -> ChapterManifest:
        """Initialize and immediately begin content delivery."""
        manifest = await self.initialize(lecture_id)
        await self.request_next()
        return manifest

    async def request_next(self) -> Optional[Segment]:
        """
        Fetch content until the session waits for an answer or completes.

        Delivery also pauses on a question the backend did not flag as
        waiting; call `request_next()` again to move past it.

        Returns the last segment delivered, or None if nothing resolved.

        Raises:
            InvalidTransitionError: the session is not active, or a fetch is running
            FetchFailure: the backend failed; the session is now errored
        """
        result = self._dispatch(NextRequested())
        self._last_segment = None
        await self._run(result.commands)
        return self._last_segment

    async def submit_answer(self, question_id: str, text: str) -> Optional[SupplementaryResult]:
        """
        Answer the pending question and resume delivery if the backend allows it.

        Returns None when the session was cancelled while the answer was in
        flight; the late reply is discarded whether it succeeded or failed.

        Raises:
            StaleAnswerError: the session is not waiting on `question_id`
            ValueError: the answer is blank
            AnswerSubmissionFailure: the backend call failed; the question stays open
            FetchFailure: the answer went through but resuming delivery failed
        """
        result = self._dispatch(AnswerSubmitted(question_id=question_id, text=text))
        self._last_supplementary = None
        self._last_segment = None
        await self._run(result.commands)
        return self._last_supplementary

    async def cancel(self, reason: CancelReason = "user") -> None:
        """Stop the session. Local state changes at once; remote teardown is best effort."""
        self.cancellation.abort(reason)
        result = self._dispatch(CancelRequested(reason=reason))
        await self._run(result.commands)

    async def switch_lecture(self, lecture_id: int) -> Optional[ChapterManifest]:
        """Cancel the current session, then initialize `lecture_id`.

        Switching to the lecture that is already in progress changes nothing
        and returns None.
        """
        if self.is_active and self._state.lecture_id == lecture_id:
            logger.info(f"Lecture {lecture_id} already in progress; nothing to switch")
            return None
        await self.cancel("lecture_switch")
        return await self.initialize(lecture_id)

    def unload(self) -> None:
        """
        Synchronous teardown for process exit.

        Raises the abort flag and marks the session cancelled before
        returning. The remote cancel is started but never awaited, so it may
        not complete.
        """
        self.cancellation.abort("unload")
        result = self._dispatch(CancelRequested(reason="unload"))
        for command in result.commands:
            if isinstance(command, CancelRemoteSessionCommand):
                schedule_remote_cancel(command, self.gateway, self._background_tasks)
            elif isinstance(command, TrackUsageMetricCommand):
                record_usage_metric(command)

    async def remote_snapshot(self) -> RemoteSessionSnapshot:
        """Server-side view of the current session (diagnostics only)."""
        if self._state.lecture_id is None:
            raise InvalidTransitionError("No session has been started")
        return await self.gateway.session(self._state.lecture_id)

    def install_unload_hook(self) -> None:
        """Call `unload()` at interpreter exit and on SIGINT/SIGTERM where the loop supports it."""
        self.cancellation.install_unload_hook(self.unload)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self.cancellation.install_signal_handlers(loop, self.unload)

    async def aclose(self) -> None:
        """Owner teardown: cancel, let pending remote cancels finish briefly, close the gateway."""
        await self.cancel("teardown")
        self.cancellation.remove_unload_hook()
        if self._background_tasks:
            await asyncio.wait(set(self._background_tasks), timeout=REMOTE_CANCEL_GRACE_SECONDS)
        await self.gateway.close()

    async def __aenter__(self) -> "SessionController":
        self.install_unload_hook()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _dispatch(self, event: SessionEventType) -> LogicResult:
        """Apply one event. Raises (without changing state) on invalid input."""
        result = reduce_session_event(self._state, event)
        previous = self._state.status
        self._state = result.new_state

        if result.new_state.status != previous:
            logger.info(
                f"Lecture {self._state.lecture_id}: {previous} -> {self._state.status} "
                f"({event.event_type})"
            )
            self._notify_status_change(previous, self._state.status)
        return result

    async def _run(self, commands: Iterable[Command]) -> None:
        """Execute commands until no follow-up work is left.

        Results from a superseded session (after switch or restart) are
        dropped instead of being applied to the new session.
        """
        generation = self._generation
        queue = deque(commands)
        failure: Optional[TutorSessionError] = None

        while queue:
            command = queue.popleft()
            outcome = await execute_command(command, self._context())

            if generation != self._generation:
                logger.info(f"Dropping {command.command_name} result from a superseded session")
                self._release_superseded_session(command, outcome)
                return

            event, error = self._translate(command, outcome)
            if event is None:
                continue
            result = self._dispatch(event)
            queue.extend(result.commands)
            if error is not None:
                failure = error

        if failure is not None:
            raise failure

    def _release_superseded_session(self, command: Command, outcome: Dict[str, Any]) -> None:
        """Tear down a remote session whose initialize reply arrived after it was replaced.

        The cancel issued at switch time may have reached the backend before
        the session existed. A restart on the same lecture reuses the remote
        session, so it is left alone while the new session is live.
        """
        if not isinstance(command, InitializeSessionCommand) or outcome.get('status') != 'success':
            return
        if command.lecture_id == self._state.lecture_id and self.is_active:
            return
        logger.info(f"Cancelling remote session for lecture {command.lecture_id} initialized after it was replaced")
        schedule_remote_cancel(
            CancelRemoteSessionCommand(lecture_id=command.lecture_id, reason="lecture_switch"),
            self.gateway,
            self._background_tasks,
        )

    def _context(self) -> ExecutionContext:
        return ExecutionContext(
            gateway=self.gateway,
            fetcher=self.fetcher,
            signal=self.cancellation.signal,
            callbacks=self.callbacks,
            advance_delay_seconds=self.settings.advance_delay_seconds,
            background_tasks=self._background_tasks,
        )

    def _translate(
        self,
        command: Command,
        outcome: Dict[str, Any],
    ) -> Tuple[Optional[SessionEventType], Optional[TutorSessionError]]:
        """Map a command result to the event it produces and the error to raise."""
        status = outcome.get('status')
        lecture_id = self._state.lecture_id

        if isinstance(command, InitializeSessionCommand):
            if status == 'success':
                self._manifest = outcome['manifest']
                return SessionInitialized(manifest=outcome['manifest']), None
            error = _as_error(outcome.get('error'), InitializationError, "Session initialization failed", lecture_id)
            return InitializationFailed(error=_session_error(error)), error

        if isinstance(command, FetchNextSegmentCommand):
            if status == 'success':
                self._last_segment = outcome['segment']
                return SegmentResolved(segment=outcome['segment']), None
            if status == 'cancelled':
                return FetchCancelled(), None
            error = _as_error(outcome.get('error'), FetchFailure, "Failed to receive the next segment", lecture_id)
            return FetchFailed(error=_session_error(error)), error

        if isinstance(command, SubmitAnswerCommand):
            if self._state.status != "waiting_for_answer":
                logger.info(f"Discarding late answer reply for lecture {lecture_id}: session is {self._state.status}")
                return None, None
            if status == 'success':
                self._last_supplementary = outcome['result']
                return AnswerAccepted(result=outcome['result']), None
            error = _as_error(outcome.get('error'), AnswerSubmissionFailure, "Failed to submit the answer", lecture_id)
            return AnswerFailed(error=_session_error(error)), error

        return None, None

    def _notify_status_change(self, previous: SessionStatus, current: SessionStatus) -> None:
        if self.on_status_change is None:
            return
        try:
            result = self.on_status_change(previous, current)
        except Exception as e:
            logger.error(f"Status change callback raised: {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            self._schedule_status_callback(result)

    def _schedule_status_callback(self, awaitable: Any) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            logger.warning("Skipped async status change callback: no running event loop")
            return

        task = asyncio.ensure_future(awaitable)
        self._background_tasks.add(task)
        task.add_done_callback(self._status_callback_done)

    def _status_callback_done(self, task: asyncio.Future) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Status change callback raised: {error}", exc_info=error)


def _as_error(
    raised: Optional[BaseException],
    error_cls: type,
    prefix: str,
    lecture_id: Optional[int],
) -> TutorSessionError:
    """Wrap whatever the executor caught in the error kind of the failed step."""
    if isinstance(raised, error_cls):
        return raised
    detail = getattr(raised, 'message', None) or str(raised or "unknown error")
    error = error_cls(f"{prefix}: {detail}", lecture_id=lecture_id)
    error.__cause__ = raised
    return error


def _session_error(error: TutorSessionError) -> SessionError:
    return SessionError(
        message=error.message,
        code=error.code,
        retryable=error.retryable,
        details={"lecture_id": error.lecture_id} if error.lecture_id is not None else {},
    )
