from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


SessionStatus = Literal[
    "idle",
    "initializing",
    "active",
    "waiting_for_answer",
    "completed",
    "cancelled",
    "errored",
]
ContentType = Literal["CONCEPT", "QUESTION", "SUPPLEMENTARY", "SCRIPT"]

TERMINAL_STATUSES = frozenset({"completed", "cancelled", "errored"})
KNOWN_CONTENT_TYPES = ("CONCEPT", "QUESTION", "SUPPLEMENTARY", "SCRIPT")
PROCESSING_STATUS = "PROCESSING"
MISSING_SUPPLEMENTARY_TEXT = "No supplementary explanation was provided."


def is_terminal(status: SessionStatus) -> bool:
    return status in TERMINAL_STATUSES


class WireModel(BaseModel):
    """Base for payloads exchanged with the tutoring backend (camelCase on the wire)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class Chapter(WireModel):
    title: str
    start_page: Optional[int] = Field(default=None, alias="startPage")
    end_page: Optional[int] = Field(default=None, alias="endPage")


class ChapterManifest(WireModel):
    """Result of initializing a streaming session. Informational only."""

    status: str = ""
    lecture_id: Optional[int] = Field(default=None, alias="lectureId")
    total_chapters: int = Field(default=0, alias="totalChapters")
    chapters: List[Chapter] = Field(default_factory=list)


class Segment(WireModel):
    """One unit of tutoring content returned by the `next` operation."""

    status: str = ""
    lecture_id: Optional[int] = Field(default=None, alias="lectureId")
    content_type: ContentType = Field(default="CONCEPT", alias="contentType")
    text: str = Field(default="", alias="contentData")
    chapter_title: Optional[str] = Field(default=None, alias="chapterTitle")
    has_more: bool = Field(default=False, alias="hasMore")
    waiting_for_answer: bool = Field(default=False, alias="waitingForAnswer")
    question_id: Optional[str] = Field(default=None, alias="aiQuestionId")

    @field_validator("content_type", mode="before")
    @classmethod
    def _normalize_content_type(cls, value: Any) -> str:
        # Unknown types render as plain concept explanations
        normalized = str(value or "").strip().upper()
        return normalized if normalized in KNOWN_CONTENT_TYPES else "CONCEPT"

    @field_validator("text", mode="before")
    @classmethod
    def _none_text_to_empty(cls, value: Any) -> str:
        return "" if value is None else value

    @field_validator("question_id", mode="before")
    @classmethod
    def _blank_question_id_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @property
    def is_processing(self) -> bool:
        return self.status.strip().upper() == PROCESSING_STATUS


class AnswerRequest(WireModel):
    question_id: str = Field(alias="aiQuestionId")
    answer: str

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SupplementaryResult(WireModel):
    """Backend reply to a learner answer."""

    status: str = ""
    lecture_id: Optional[int] = Field(default=None, alias="lectureId")
    question_id: Optional[str] = Field(default=None, alias="aiQuestionId")
    question: Optional[str] = None
    chapter_title: Optional[str] = Field(default=None, alias="chapterTitle")
    can_continue: bool = Field(default=False, alias="canContinue")
    supplementary: str = MISSING_SUPPLEMENTARY_TEXT

    @field_validator("supplementary", mode="before")
    @classmethod
    def _fallback_supplementary(cls, value: Any) -> str:
        if value is None:
            return MISSING_SUPPLEMENTARY_TEXT
        return str(value).strip() or MISSING_SUPPLEMENTARY_TEXT


class RemoteSessionSnapshot(WireModel):
    """Server-side view of a streaming session, used for diagnostics."""

    status: str = ""
    lecture_id: Optional[int] = Field(default=None, alias="lectureId")
    service_status: Optional[str] = Field(default=None, alias="serviceStatus")
    chapters: Dict[str, Any] = Field(default_factory=dict)
    questions: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    error: Optional[Dict[str, Any]] = None

    @field_validator("chapters", "questions", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Dict[str, Any]:
        return value or {}


class SessionError(BaseModel):
    """Structured error passed through session state."""

    model_config = ConfigDict(frozen=True)

    message: str
    code: Optional[str] = None
    retryable: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)


class SessionState(BaseModel):
    """Client-side state of one tutoring session."""

    model_config = ConfigDict(frozen=False)

    lecture_id: Optional[int] = None
    status: SessionStatus = "idle"
    current_question_id: Optional[str] = None
    fetch_pending: bool = False
    answer_pending: bool = False
    chapters: List[Chapter] = Field(default_factory=list)
    segments_received: int = 0
    questions_answered: int = 0
    error: Optional[SessionError] = None
    ui_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def _check_invariants(self) -> "SessionState":
        self.check_invariants()
        return self

    def check_invariants(self) -> None:
        """Raise ValueError if status, question id and pending work disagree."""
        waiting = self.status == "waiting_for_answer"
        if waiting != (self.current_question_id is not None):
            raise ValueError(
                f"status {self.status!r} inconsistent with question id {self.current_question_id!r}"
            )
        if self.fetch_pending and self.status != "active":
            raise ValueError(f"fetch cannot be pending while {self.status!r}")
        if self.answer_pending and not waiting:
            raise ValueError(f"answer cannot be pending while {self.status!r}")

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)


class SegmentView(BaseModel):
    """What the surrounding UI receives for each resolved segment."""

    model_config = ConfigDict(frozen=True)

    content_type: ContentType
    chapter_title: Optional[str] = None
    text: str
    answer_required: bool = False
    question_id: Optional[str] = None

    @property
    def heading(self) -> str:
        if self.content_type == "QUESTION":
            label = "Question"
        elif self.content_type == "SUPPLEMENTARY":
            label = "Supplementary explanation"
        else:
            label = "Concept explanation"
        return f"[{self.chapter_title}] {label}" if self.chapter_title else label

    @classmethod
    def from_segment(cls, segment: Segment, answer_required: bool) -> "SegmentView":
        return cls(
            content_type=segment.content_type,
            chapter_title=segment.chapter_title,
            text=segment.text,
            answer_required=answer_required,
            question_id=segment.question_id if answer_required else None,
        )
