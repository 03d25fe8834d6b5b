"""Auto-advance decision: what happens after a segment resolves.

Pure functions only. The session reducer applies the decision; nothing here
touches session state directly.
"""

from __future__ import annotations

from typing import Literal

from lecture_tutor.core.session_models import Segment

AdvanceDecision = Literal["wait_for_answer", "continue", "hold", "complete"]


def requires_answer(segment: Segment) -> bool:
    """True when the learner must answer before content delivery resumes.

    The backend's `waitingForAnswer` flag is authoritative. A segment typed
    QUESTION without the flag has no question id to answer, so it never
    opens the answer gate.
    """
    return segment.waiting_for_answer


def decide_advance(segment: Segment) -> AdvanceDecision:
    """
    Decide how the session proceeds after `segment`.

    - wait_for_answer: stop fetching until the question is answered
    - continue: schedule exactly one follow-up fetch
    - hold: a QUESTION without the waiting flag; stay active but never
      auto-advance past it, the caller resumes with request_next()
    - complete: no content remains
    """
    if requires_answer(segment):
        return "wait_for_answer"
    if not segment.has_more:
        return "complete"
    if segment.content_type == "QUESTION":
        return "hold"
    return "continue"
