from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from lecture_tutor.core.session_events import CancelReason
from lecture_tutor.core.session_models import AnswerRequest, SegmentView, SupplementaryResult


class Command(BaseModel):
    """Marker base class for commands emitted by the logic layer."""

    model_config = ConfigDict(frozen=True)

    @property
    def command_name(self) -> str:
        return self.__class__.__name__


class InitializeSessionCommand(Command):
    """Start a remote content-generation session for a lecture."""

    lecture_id: int


class FetchNextSegmentCommand(Command):
    """Poll `next` until the backend resolves a segment."""

    lecture_id: int
    follow_up: bool = False  # Auto-advance: wait the display delay first


class SubmitAnswerCommand(Command):
    """Send the learner's answer to the pending question."""

    lecture_id: int
    request: AnswerRequest


class CancelRemoteSessionCommand(Command):
    """Best-effort remote teardown. Never awaited by the session loop."""

    lecture_id: int
    reason: CancelReason = "user"


class DeliverSegmentCommand(Command):
    """Hand a resolved segment to the surrounding UI."""

    view: SegmentView


class DeliverSupplementaryCommand(Command):
    """Hand the backend's reply to an answer to the surrounding UI."""

    result: SupplementaryResult


class ShowErrorToastCommand(Command):
    """Display a user-visible error via the error callback."""

    message: str
    error_code: Optional[str] = None


class TrackUsageMetricCommand(Command):
    """Record a session lifecycle metric."""

    metric: str
    data: Dict[str, Any] = Field(default_factory=dict)
