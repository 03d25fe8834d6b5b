"""
In-memory gateway used by the session tests.

Responses are scripted per operation. A scripted item may be a payload dict
(camelCase, exactly as the backend sends it), a parsed model, or an
exception instance to raise.
"""

import asyncio
from collections import deque
from typing import Any, Callable, Dict, List, Optional

from lecture_tutor.core.session_models import (
    AnswerRequest,
    ChapterManifest,
    RemoteSessionSnapshot,
    Segment,
    SupplementaryResult,
)


def manifest_payload(lecture_id: int = 42, chapters: int = 2) -> Dict[str, Any]:
    return {
        "status": "INITIALIZED",
        "lectureId": lecture_id,
        "totalChapters": chapters,
        "chapters": [
            {"title": f"Chapter {i + 1}", "startPage": i * 10 + 1, "endPage": i * 10 + 10}
            for i in range(chapters)
        ],
    }


def concept(text: str = "Supply meets demand.", has_more: bool = True, chapter: str = "Chapter 1") -> Dict[str, Any]:
    return {
        "status": "SUCCESS",
        "contentType": "CONCEPT",
        "contentData": text,
        "chapterTitle": chapter,
        "hasMore": has_more,
        "waitingForAnswer": False,
    }


def question(question_id: str = "q1", text: str = "What sets the price?", chapter: str = "Chapter 1") -> Dict[str, Any]:
    return {
        "status": "SUCCESS",
        "contentType": "QUESTION",
        "contentData": text,
        "chapterTitle": chapter,
        "hasMore": True,
        "waitingForAnswer": True,
        "aiQuestionId": question_id,
    }


def processing() -> Dict[str, Any]:
    return {"status": "PROCESSING", "hasMore": True, "waitingForAnswer": False}


def supplementary(question_id: str = "q1", can_continue: bool = True, text: str = "Close, but consider costs.") -> Dict[str, Any]:
    return {
        "status": "SUCCESS",
        "aiQuestionId": question_id,
        "question": "What sets the price?",
        "canContinue": can_continue,
        "supplementary": text,
    }


class ScriptedGateway:
    """RemoteSessionGateway double that records every call."""

    def __init__(
        self,
        segments: Optional[List[Any]] = None,
        answers: Optional[List[Any]] = None,
        manifests: Optional[List[Any]] = None,
        repeat_last_segment: bool = False,
    ):
        self.segments = deque(segments or [])
        self.answers = deque(answers or [])
        self.manifests = deque(manifests or [])
        self.repeat_last_segment = repeat_last_segment
        self.snapshot: Any = {"status": "ACTIVE", "lectureId": 42, "serviceStatus": "RUNNING"}
        self.cancel_error: Optional[Exception] = None
        self.before_initialize: Optional[Callable[[int], None]] = None
        self.before_next: Optional[Callable[[int], None]] = None
        self.before_answer: Optional[Callable[[int], None]] = None
        self.initialize_gates: Dict[int, asyncio.Event] = {}
        self.calls: List[tuple] = []
        self.closed = False

    def calls_to(self, operation: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == operation]

    async def initialize(self, lecture_id: int) -> ChapterManifest:
        self.calls.append(("initialize", lecture_id))
        if self.before_initialize is not None:
            self.before_initialize(lecture_id)
        gate = self.initialize_gates.pop(lecture_id, None)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)
        item = self.manifests.popleft() if self.manifests else manifest_payload(lecture_id)
        return self._resolve(item, ChapterManifest)

    async def next(self, lecture_id: int) -> Segment:
        self.calls.append(("next", lecture_id))
        if self.before_next is not None:
            self.before_next(lecture_id)
        await asyncio.sleep(0)
        if not self.segments:
            raise AssertionError(f"Unexpected next() call for lecture {lecture_id}")
        if self.repeat_last_segment and len(self.segments) == 1:
            item = self.segments[0]
        else:
            item = self.segments.popleft()
        return self._resolve(item, Segment)

    async def answer(self, lecture_id: int, request: AnswerRequest) -> SupplementaryResult:
        self.calls.append(("answer", lecture_id, request.to_payload()))
        if self.before_answer is not None:
            self.before_answer(lecture_id)
        await asyncio.sleep(0)
        if not self.answers:
            raise AssertionError(f"Unexpected answer() call for lecture {lecture_id}")
        return self._resolve(self.answers.popleft(), SupplementaryResult)

    async def cancel(self, lecture_id: int) -> None:
        self.calls.append(("cancel", lecture_id))
        await asyncio.sleep(0)
        if self.cancel_error is not None:
            raise self.cancel_error

    async def session(self, lecture_id: int) -> RemoteSessionSnapshot:
        self.calls.append(("session", lecture_id))
        return self._resolve(self.snapshot, RemoteSessionSnapshot)

    async def close(self) -> None:
        self.closed = True

    @staticmethod
    def _resolve(item: Any, model):
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, dict):
            return model.model_validate(item)
        return item
