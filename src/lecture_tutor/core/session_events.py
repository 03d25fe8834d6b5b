from __future__ import annotations

from typing import Literal, Union

from pydantic import BaseModel, ConfigDict

from lecture_tutor.core.session_models import (
    ChapterManifest,
    Segment,
    SessionError,
    SupplementaryResult,
)


CancelReason = Literal["user", "lecture_switch", "teardown", "unload"]


class SessionEvent(BaseModel):
    """Base class for controller -> logic events in the tutoring flow."""

    model_config = ConfigDict(frozen=True)

    event_type: str


class StartRequested(SessionEvent):
    event_type: Literal["start_requested"] = "start_requested"
    lecture_id: int


class SessionInitialized(SessionEvent):
    event_type: Literal["session_initialized"] = "session_initialized"
    manifest: ChapterManifest


class InitializationFailed(SessionEvent):
    event_type: Literal["initialization_failed"] = "initialization_failed"
    error: SessionError


class NextRequested(SessionEvent):
    event_type: Literal["next_requested"] = "next_requested"


class SegmentResolved(SessionEvent):
    event_type: Literal["segment_resolved"] = "segment_resolved"
    segment: Segment


class FetchCancelled(SessionEvent):
    event_type: Literal["fetch_cancelled"] = "fetch_cancelled"


class FetchFailed(SessionEvent):
    event_type: Literal["fetch_failed"] = "fetch_failed"
    error: SessionError


class AnswerSubmitted(SessionEvent):
    event_type: Literal["answer_submitted"] = "answer_submitted"
    question_id: str
    text: str


class AnswerAccepted(SessionEvent):
    event_type: Literal["answer_accepted"] = "answer_accepted"
    result: SupplementaryResult


class AnswerFailed(SessionEvent):
    event_type: Literal["answer_failed"] = "answer_failed"
    error: SessionError


class CancelRequested(SessionEvent):
    event_type: Literal["cancel_requested"] = "cancel_requested"
    reason: CancelReason = "user"


SessionEventType = Union[
    StartRequested,
    SessionInitialized,
    InitializationFailed,
    NextRequested,
    SegmentResolved,
    FetchCancelled,
    FetchFailed,
    AnswerSubmitted,
    AnswerAccepted,
    AnswerFailed,
    CancelRequested,
]
