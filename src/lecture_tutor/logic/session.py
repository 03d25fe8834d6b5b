"""Tutoring session logic layer - pure functions for the session state machine.

    idle -> initializing -> active <-> waiting_for_answer -> completed
    any non-terminal status -> cancelled | errored

Every transition goes through `reduce_session_event`. Handlers never perform
I/O; they return the next state plus the commands the controller must run.
Precondition violations caused by the caller raise; late results arriving
after the session was cancelled are dropped.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from lecture_tutor.core.commands import (
    CancelRemoteSessionCommand,
    DeliverSegmentCommand,
    DeliverSupplementaryCommand,
    FetchNextSegmentCommand,
    InitializeSessionCommand,
    ShowErrorToastCommand,
    SubmitAnswerCommand,
    TrackUsageMetricCommand,
)
from lecture_tutor.core.errors import InitializationError, InvalidTransitionError
from lecture_tutor.core.session_events import (
    AnswerAccepted,
    AnswerFailed,
    AnswerSubmitted,
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
from lecture_tutor.core.session_models import SegmentView, SessionState
from lecture_tutor.core.state import LogicResult
from lecture_tutor.logic.answer_gate import build_answer_request, close_question, open_question
from lecture_tutor.logic.auto_advance import decide_advance

logger = logging.getLogger(__name__)

SESSION_STOPPED_MESSAGE = "Learning session stopped."
SESSION_COMPLETE_MESSAGE = "All lecture content has been delivered."
ANSWER_PROMPT_MESSAGE = "Please enter your answer to the question."


def create_initial_session_state() -> SessionState:
    """Return the canonical empty session state."""

    return SessionState()


def reduce_session_event(state: SessionState, event: SessionEventType) -> LogicResult:
    """Main reducer that routes incoming events to pure handlers."""

    if isinstance(event, StartRequested):
        return start_session(state, event)

    if isinstance(event, SessionInitialized):
        return handle_session_initialized(state, event)

    if isinstance(event, InitializationFailed):
        return handle_initialization_failed(state, event)

    if isinstance(event, NextRequested):
        return request_next_segment(state)

    if isinstance(event, SegmentResolved):
        return handle_segment_resolved(state, event)

    if isinstance(event, FetchCancelled):
        return handle_fetch_cancelled(state)

    if isinstance(event, FetchFailed):
        return handle_fetch_failed(state, event)

    if isinstance(event, AnswerSubmitted):
        return submit_answer(state, event)

    if isinstance(event, AnswerAccepted):
        return handle_answer_accepted(state, event)

    if isinstance(event, AnswerFailed):
        return handle_answer_failed(state, event)

    if isinstance(event, CancelRequested):
        return cancel_session(state, event)

    raise ValueError(f"Unhandled session event: {event}")


def start_session(state: SessionState, event: StartRequested) -> LogicResult:
    """Begin a new session. Only allowed when no session is in progress."""

    if not (state.status == "idle" or state.is_terminal):
        if state.lecture_id != event.lecture_id:
            raise InitializationError(
                f"Session for lecture {state.lecture_id} is still {state.status}; "
                f"cancel it before starting lecture {event.lecture_id}",
                lecture_id=event.lecture_id,
            )
        raise InitializationError(
            f"Session for lecture {event.lecture_id} is already {state.status}",
            lecture_id=event.lecture_id,
        )

    new_state = SessionState(lecture_id=event.lecture_id, status="initializing")

    commands = [
        InitializeSessionCommand(lecture_id=event.lecture_id),
        TrackUsageMetricCommand(
            metric="session.start_requested",
            data={"lecture_id": event.lecture_id},
        ),
    ]

    return LogicResult(new_state=new_state, commands=commands)


def handle_session_initialized(state: SessionState, event: SessionInitialized) -> LogicResult:
    """Activate the session once the backend accepted it."""

    if state.status == "cancelled":
        # Cancelled while the initialize call was in flight: tear the new remote session down
        return LogicResult(
            new_state=state,
            commands=[CancelRemoteSessionCommand(lecture_id=state.lecture_id, reason="user")],
        )

    _require_status(state, "initializing", "complete initialization")

    manifest = event.manifest
    ui_message = f"Tutoring session ready ({manifest.total_chapters} chapters)."
    new_state = _evolve(
        state,
        status="active",
        chapters=list(manifest.chapters),
        error=None,
        ui_message=ui_message,
    )

    commands = [
        TrackUsageMetricCommand(
            metric="session.initialized",
            data={"lecture_id": state.lecture_id, "total_chapters": manifest.total_chapters},
        )
    ]

    return LogicResult(new_state=new_state, commands=commands, ui_message=ui_message)


def handle_initialization_failed(state: SessionState, event: InitializationFailed) -> LogicResult:
    if state.status != "initializing":
        return _ignored(state, event)

    new_state = _evolve(state, status="errored", error=event.error, ui_message=None)

    commands = [
        ShowErrorToastCommand(message=event.error.message, error_code=event.error.code),
        TrackUsageMetricCommand(
            metric="session.initialization_failed",
            data={"lecture_id": state.lecture_id, "code": event.error.code},
        ),
    ]

    return LogicResult(new_state=new_state, commands=commands, ui_message=event.error.message)


def request_next_segment(state: SessionState) -> LogicResult:
    """Explicitly ask for the next segment. Only one fetch may be outstanding."""

    _require_status(state, "active", "request the next segment")
    if state.fetch_pending:
        raise InvalidTransitionError(
            f"A fetch is already in progress for lecture {state.lecture_id}",
            lecture_id=state.lecture_id,
        )

    new_state = _evolve(state, fetch_pending=True, error=None, ui_message=None)

    return LogicResult(
        new_state=new_state,
        commands=[FetchNextSegmentCommand(lecture_id=state.lecture_id)],
    )


def handle_segment_resolved(state: SessionState, event: SegmentResolved) -> LogicResult:
    """Deliver a segment and decide whether to continue, wait, or finish."""

    if state.status != "active" or not state.fetch_pending:
        return _ignored(state, event)

    segment = event.segment
    decision = decide_advance(segment)
    answer_required = decision == "wait_for_answer"
    segments_received = state.segments_received + 1

    commands = [
        DeliverSegmentCommand(view=SegmentView.from_segment(segment, answer_required=answer_required))
    ]

    if answer_required:
        new_state = _evolve(
            state,
            segments_received=segments_received,
            ui_message=ANSWER_PROMPT_MESSAGE,
            **open_question(segment.question_id),
        )
        return LogicResult(new_state=new_state, commands=commands, ui_message=ANSWER_PROMPT_MESSAGE)

    if decision == "hold":
        new_state = _evolve(
            state,
            segments_received=segments_received,
            fetch_pending=False,
            ui_message=None,
        )
        return LogicResult(new_state=new_state, commands=commands)

    if decision == "continue":
        new_state = _evolve(
            state,
            segments_received=segments_received,
            fetch_pending=True,
            ui_message=None,
        )
        commands.append(FetchNextSegmentCommand(lecture_id=state.lecture_id, follow_up=True))
        return LogicResult(new_state=new_state, commands=commands)

    new_state = _evolve(
        state,
        status="completed",
        segments_received=segments_received,
        fetch_pending=False,
        ui_message=SESSION_COMPLETE_MESSAGE,
    )
    commands.append(
        TrackUsageMetricCommand(
            metric="session.completed",
            data={
                "lecture_id": state.lecture_id,
                "segments": segments_received,
                "questions_answered": state.questions_answered,
            },
        )
    )
    return LogicResult(new_state=new_state, commands=commands, ui_message=SESSION_COMPLETE_MESSAGE)


def handle_fetch_cancelled(state: SessionState) -> LogicResult:
    """Polling stopped because the abort signal was raised."""

    if state.is_terminal:
        return LogicResult(new_state=state)

    # Abort raised without a cancel event reaching the reducer first
    new_state = _evolve(
        state,
        status="cancelled",
        fetch_pending=False,
        answer_pending=False,
        current_question_id=None,
        ui_message=SESSION_STOPPED_MESSAGE,
    )
    return LogicResult(new_state=new_state, ui_message=SESSION_STOPPED_MESSAGE)


def handle_fetch_failed(state: SessionState, event: FetchFailed) -> LogicResult:
    if state.is_terminal:
        return _ignored(state, event)

    new_state = _evolve(
        state,
        status="errored",
        fetch_pending=False,
        answer_pending=False,
        current_question_id=None,
        error=event.error,
        ui_message=None,
    )

    commands = [
        ShowErrorToastCommand(message=event.error.message, error_code=event.error.code),
        TrackUsageMetricCommand(
            metric="session.fetch_failed",
            data={"lecture_id": state.lecture_id, "code": event.error.code},
        ),
    ]

    return LogicResult(new_state=new_state, commands=commands, ui_message=event.error.message)


def submit_answer(state: SessionState, event: AnswerSubmitted) -> LogicResult:
    """Send the learner's answer. The question stays open until the backend replies."""

    request = build_answer_request(state, event.question_id, event.text)
    new_state = _evolve(state, answer_pending=True, error=None, ui_message=None)

    return LogicResult(
        new_state=new_state,
        commands=[SubmitAnswerCommand(lecture_id=state.lecture_id, request=request)],
    )


def handle_answer_accepted(state: SessionState, event: AnswerAccepted) -> LogicResult:
    """Release the gate and resume delivery if the backend has more content."""

    if state.status != "waiting_for_answer" or not state.answer_pending:
        return _ignored(state, event)

    result = event.result
    questions_answered = state.questions_answered + 1
    commands = [
        DeliverSupplementaryCommand(result=result),
        TrackUsageMetricCommand(
            metric="session.answer_accepted",
            data={"lecture_id": state.lecture_id, "question_id": state.current_question_id},
        ),
    ]

    if result.can_continue:
        new_state = _evolve(
            state,
            status="active",
            fetch_pending=True,
            questions_answered=questions_answered,
            ui_message=None,
            **close_question(),
        )
        commands.append(FetchNextSegmentCommand(lecture_id=state.lecture_id))
        return LogicResult(new_state=new_state, commands=commands)

    new_state = _evolve(
        state,
        status="completed",
        questions_answered=questions_answered,
        ui_message=SESSION_COMPLETE_MESSAGE,
        **close_question(),
    )
    return LogicResult(new_state=new_state, commands=commands, ui_message=SESSION_COMPLETE_MESSAGE)


def handle_answer_failed(state: SessionState, event: AnswerFailed) -> LogicResult:
    """Keep the question open so the same answer can be resubmitted."""

    if state.status != "waiting_for_answer":
        return _ignored(state, event)

    new_state = _evolve(state, answer_pending=False, error=event.error, ui_message=None)

    return LogicResult(
        new_state=new_state,
        commands=[ShowErrorToastCommand(message=event.error.message, error_code=event.error.code)],
        ui_message=event.error.message,
    )


def cancel_session(state: SessionState, event: CancelRequested) -> LogicResult:
    """Stop the session locally and request remote teardown."""

    if state.status == "idle" or state.is_terminal:
        return LogicResult(new_state=state)

    new_state = _evolve(
        state,
        status="cancelled",
        fetch_pending=False,
        answer_pending=False,
        current_question_id=None,
        ui_message=SESSION_STOPPED_MESSAGE,
    )

    commands = [
        CancelRemoteSessionCommand(lecture_id=state.lecture_id, reason=event.reason),
        TrackUsageMetricCommand(
            metric="session.cancelled",
            data={
                "lecture_id": state.lecture_id,
                "reason": event.reason,
                "previous_status": state.status,
            },
        ),
    ]

    return LogicResult(new_state=new_state, commands=commands, ui_message=SESSION_STOPPED_MESSAGE)


def _evolve(state: SessionState, **updates: Any) -> SessionState:
    """Copy `state` with updates and re-check the model invariants."""

    new_state = state.model_copy(update={**updates, "updated_at": datetime.utcnow()})
    new_state.check_invariants()
    return new_state


def _require_status(state: SessionState, expected: str, action: str) -> None:
    if state.status != expected:
        raise InvalidTransitionError(
            f"Cannot {action} while session is {state.status}",
            lecture_id=state.lecture_id,
        )


def _ignored(state: SessionState, event: SessionEventType) -> LogicResult:
    logger.debug(f"Ignoring {event.event_type} for session in status {state.status}")
    return LogicResult(new_state=state)
