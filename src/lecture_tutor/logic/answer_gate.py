"""Answer gate: guards the single outstanding question of a session."""

from __future__ import annotations

from typing import Any, Dict

from lecture_tutor.core.errors import InvalidTransitionError, StaleAnswerError
from lecture_tutor.core.session_models import AnswerRequest, SessionState


def open_question(question_id: str) -> Dict[str, Any]:
    """State updates that block the session on `question_id`."""
    return {
        "status": "waiting_for_answer",
        "current_question_id": question_id,
        "fetch_pending": False,
        "answer_pending": False,
    }


def close_question() -> Dict[str, Any]:
    """State updates that release the gate after a successful answer."""
    return {
        "current_question_id": None,
        "answer_pending": False,
    }


def build_answer_request(state: SessionState, question_id: str, text: str) -> AnswerRequest:
    """
    Validate a learner answer against the session and build the request.

    Raises:
        StaleAnswerError: the session is not waiting, or waits on another question
        InvalidTransitionError: an answer for this question is already in flight
        ValueError: the answer is blank
    """
    if state.status != "waiting_for_answer":
        raise StaleAnswerError(
            f"Session is {state.status}, not waiting for an answer",
            lecture_id=state.lecture_id,
        )
    if question_id != state.current_question_id:
        raise StaleAnswerError(
            f"Question {question_id!r} is no longer current "
            f"(waiting on {state.current_question_id!r})",
            lecture_id=state.lecture_id,
        )
    if state.answer_pending:
        raise InvalidTransitionError(
            f"An answer to question {question_id!r} is already being submitted",
            lecture_id=state.lecture_id,
        )

    answer = (text or "").strip()
    if not answer:
        raise ValueError("Answer text must not be empty")

    return AnswerRequest(question_id=question_id, answer=answer)
