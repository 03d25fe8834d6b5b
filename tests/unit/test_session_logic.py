"""
Unit tests for the session reducer.

Pure functions only: each test feeds an event and inspects the new state and
emitted commands.
"""

import pytest

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
from lecture_tutor.core.errors import InitializationError, InvalidTransitionError, StaleAnswerError
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
    SessionInitialized,
    StartRequested,
)
from lecture_tutor.core.session_models import (
    ChapterManifest,
    Segment,
    SessionError,
    SessionState,
    SupplementaryResult,
)
from lecture_tutor.logic.session import (
    ANSWER_PROMPT_MESSAGE,
    SESSION_COMPLETE_MESSAGE,
    SESSION_STOPPED_MESSAGE,
    create_initial_session_state,
    reduce_session_event,
)

from fakes import concept, manifest_payload, question, supplementary

pytestmark = pytest.mark.unit


def command_types(result):
    return [type(command) for command in result.commands]


def active_state(**overrides):
    values = {"lecture_id": 42, "status": "active"}
    values.update(overrides)
    return SessionState(**values)


def waiting_state(question_id="q1", **overrides):
    values = {"lecture_id": 42, "status": "waiting_for_answer", "current_question_id": question_id}
    values.update(overrides)
    return SessionState(**values)


class TestStartAndInitialize:
    """Test session start and initialization events."""

    def test_start_from_idle(self):
        result = reduce_session_event(create_initial_session_state(), StartRequested(lecture_id=42))

        assert result.new_state.status == "initializing"
        assert result.new_state.lecture_id == 42
        assert command_types(result) == [InitializeSessionCommand, TrackUsageMetricCommand]
        assert result.commands[0].lecture_id == 42

    def test_start_from_terminal_resets_state(self):
        finished = SessionState(lecture_id=7, status="errored", segments_received=5,
                                error=SessionError(message="boom"))

        result = reduce_session_event(finished, StartRequested(lecture_id=42))

        assert result.new_state.status == "initializing"
        assert result.new_state.segments_received == 0
        assert result.new_state.error is None

    @pytest.mark.parametrize("status", ["initializing", "active"])
    def test_start_rejected_while_in_progress(self, status):
        with pytest.raises(InitializationError):
            reduce_session_event(SessionState(lecture_id=42, status=status), StartRequested(lecture_id=43))

    def test_initialized_activates_session(self):
        state = SessionState(lecture_id=42, status="initializing")
        manifest = ChapterManifest.model_validate(manifest_payload(42, chapters=3))

        result = reduce_session_event(state, SessionInitialized(manifest=manifest))

        assert result.new_state.status == "active"
        assert len(result.new_state.chapters) == 3
        assert result.ui_message == "Tutoring session ready (3 chapters)."
        assert command_types(result) == [TrackUsageMetricCommand]

    def test_initialized_after_cancel_requests_remote_cancel(self):
        state = SessionState(lecture_id=42, status="cancelled")
        manifest = ChapterManifest.model_validate(manifest_payload(42))

        result = reduce_session_event(state, SessionInitialized(manifest=manifest))

        assert result.new_state is state
        assert command_types(result) == [CancelRemoteSessionCommand]

    def test_initialization_failed(self):
        state = SessionState(lecture_id=42, status="initializing")
        error = SessionError(message="Login required", code="initialization_failed")

        result = reduce_session_event(state, InitializationFailed(error=error))

        assert result.new_state.status == "errored"
        assert result.new_state.error == error
        assert command_types(result) == [ShowErrorToastCommand, TrackUsageMetricCommand]
        assert result.commands[0].message == "Login required"

    def test_initialization_failed_after_cancel_is_ignored(self):
        state = SessionState(lecture_id=42, status="cancelled")
        error = SessionError(message="Login required")

        result = reduce_session_event(state, InitializationFailed(error=error))

        assert result.new_state is state
        assert result.commands == []


class TestFetching:
    """Test next-segment requests and resolution."""

    def test_request_next(self):
        result = reduce_session_event(active_state(), NextRequested())

        assert result.new_state.fetch_pending is True
        assert result.commands == [FetchNextSegmentCommand(lecture_id=42)]

    def test_request_next_before_initialize(self):
        with pytest.raises(InvalidTransitionError):
            reduce_session_event(create_initial_session_state(), NextRequested())

    def test_only_one_fetch_outstanding(self):
        with pytest.raises(InvalidTransitionError):
            reduce_session_event(active_state(fetch_pending=True), NextRequested())

    def test_segment_with_more_schedules_one_follow_up(self):
        segment = Segment.model_validate(concept(has_more=True))

        result = reduce_session_event(active_state(fetch_pending=True), SegmentResolved(segment=segment))

        assert result.new_state.status == "active"
        assert result.new_state.fetch_pending is True
        assert result.new_state.segments_received == 1
        assert command_types(result) == [DeliverSegmentCommand, FetchNextSegmentCommand]
        assert result.commands[1].follow_up is True

    def test_question_waits_for_answer(self):
        segment = Segment.model_validate(question("q1"))

        result = reduce_session_event(active_state(fetch_pending=True), SegmentResolved(segment=segment))

        assert result.new_state.status == "waiting_for_answer"
        assert result.new_state.current_question_id == "q1"
        assert result.new_state.fetch_pending is False
        assert result.ui_message == ANSWER_PROMPT_MESSAGE
        assert command_types(result) == [DeliverSegmentCommand]
        assert result.commands[0].view.answer_required is True

    def test_unflagged_question_holds_without_follow_up(self):
        payload = question("q1")
        payload.update(waitingForAnswer=False, hasMore=True)
        segment = Segment.model_validate(payload)

        result = reduce_session_event(active_state(fetch_pending=True), SegmentResolved(segment=segment))

        assert result.new_state.status == "active"
        assert result.new_state.fetch_pending is False
        assert result.new_state.current_question_id is None
        assert command_types(result) == [DeliverSegmentCommand]

    def test_last_segment_completes(self):
        segment = Segment.model_validate(concept(has_more=False))

        result = reduce_session_event(active_state(fetch_pending=True), SegmentResolved(segment=segment))

        assert result.new_state.status == "completed"
        assert result.ui_message == SESSION_COMPLETE_MESSAGE
        assert command_types(result) == [DeliverSegmentCommand, TrackUsageMetricCommand]

    def test_segment_without_pending_fetch_is_dropped(self):
        state = SessionState(lecture_id=42, status="cancelled")
        segment = Segment.model_validate(concept())

        result = reduce_session_event(state, SegmentResolved(segment=segment))

        assert result.new_state is state
        assert result.commands == []

    def test_fetch_cancelled_while_active(self):
        result = reduce_session_event(active_state(fetch_pending=True), FetchCancelled())

        assert result.new_state.status == "cancelled"
        assert result.new_state.fetch_pending is False
        assert result.commands == []

    def test_fetch_failed(self):
        error = SessionError(message="Failed to receive the next segment: boom", code="fetch_failed")

        result = reduce_session_event(active_state(fetch_pending=True), FetchFailed(error=error))

        assert result.new_state.status == "errored"
        assert result.new_state.fetch_pending is False
        assert command_types(result) == [ShowErrorToastCommand, TrackUsageMetricCommand]


class TestAnswers:
    """Test answer submission events."""

    def test_submit_answer(self):
        result = reduce_session_event(waiting_state(), AnswerSubmitted(question_id="q1", text=" demand "))

        assert result.new_state.answer_pending is True
        assert result.new_state.current_question_id == "q1"
        assert command_types(result) == [SubmitAnswerCommand]
        assert result.commands[0].request.to_payload() == {"aiQuestionId": "q1", "answer": "demand"}

    def test_submit_stale_answer(self):
        with pytest.raises(StaleAnswerError):
            reduce_session_event(waiting_state(), AnswerSubmitted(question_id="q0", text="demand"))

    def test_answer_accepted_resumes(self):
        result_payload = SupplementaryResult.model_validate(supplementary("q1", can_continue=True))

        result = reduce_session_event(
            waiting_state(answer_pending=True),
            AnswerAccepted(result=result_payload),
        )

        assert result.new_state.status == "active"
        assert result.new_state.current_question_id is None
        assert result.new_state.fetch_pending is True
        assert result.new_state.questions_answered == 1
        assert command_types(result) == [
            DeliverSupplementaryCommand,
            TrackUsageMetricCommand,
            FetchNextSegmentCommand,
        ]
        assert result.commands[2].follow_up is False

    def test_answer_accepted_without_continue_completes(self):
        result_payload = SupplementaryResult.model_validate(supplementary("q1", can_continue=False))

        result = reduce_session_event(
            waiting_state(answer_pending=True),
            AnswerAccepted(result=result_payload),
        )

        assert result.new_state.status == "completed"
        assert FetchNextSegmentCommand not in command_types(result)

    def test_answer_failed_keeps_question(self):
        error = SessionError(message="Failed to submit the answer: busy", code="answer_failed")

        result = reduce_session_event(waiting_state(answer_pending=True), AnswerFailed(error=error))

        assert result.new_state.status == "waiting_for_answer"
        assert result.new_state.current_question_id == "q1"
        assert result.new_state.answer_pending is False
        assert command_types(result) == [ShowErrorToastCommand]


class TestCancel:
    """Test cancellation events."""

    @pytest.mark.parametrize("state", [
        SessionState(lecture_id=42, status="initializing"),
        SessionState(lecture_id=42, status="active", fetch_pending=True),
        SessionState(lecture_id=42, status="waiting_for_answer", current_question_id="q1", answer_pending=True),
    ])
    def test_cancel_from_non_terminal(self, state):
        result = reduce_session_event(state, CancelRequested(reason="lecture_switch"))

        assert result.new_state.status == "cancelled"
        assert result.new_state.fetch_pending is False
        assert result.new_state.answer_pending is False
        assert result.new_state.current_question_id is None
        assert result.ui_message == SESSION_STOPPED_MESSAGE
        assert result.commands[0] == CancelRemoteSessionCommand(lecture_id=42, reason="lecture_switch")

    @pytest.mark.parametrize("status", ["idle", "completed", "cancelled", "errored"])
    def test_cancel_is_noop(self, status):
        state = SessionState(lecture_id=None if status == "idle" else 42, status=status)

        result = reduce_session_event(state, CancelRequested())

        assert result.new_state is state
        assert result.commands == []

    def test_no_transition_leaves_terminal_state(self):
        state = SessionState(lecture_id=42, status="completed")
        segment = Segment.model_validate(concept())

        for event in [SegmentResolved(segment=segment), FetchCancelled(),
                      FetchFailed(error=SessionError(message="late"))]:
            assert reduce_session_event(state, event).new_state.status == "completed"
