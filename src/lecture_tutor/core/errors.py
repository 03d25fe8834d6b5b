"""Exceptions raised by the tutoring session client."""

from typing import Optional


class TutorSessionError(Exception):
    """Base class for every error surfaced by the session client."""

    code = "session_error"
    retryable = False

    def __init__(self, message: str, *, lecture_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.lecture_id = lecture_id


class RemoteSessionError(TutorSessionError):
    """The backend call failed (transport error or non-2xx response)."""

    code = "remote_error"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        lecture_id: Optional[int] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, lecture_id=lecture_id)
        self.status_code = status_code


class RemoteAuthError(RemoteSessionError):
    """The backend redirected to a login flow or rejected the credentials."""

    code = "auth_required"
    retryable = False


class InitializationError(TutorSessionError):
    code = "initialization_failed"
    retryable = True


class FetchFailure(TutorSessionError):
    """A `next` call failed outside of the expected processing status."""

    code = "fetch_failed"
    retryable = True


class PollTimeoutError(FetchFailure):
    code = "poll_timeout"


class AnswerSubmissionFailure(TutorSessionError):
    """The backend rejected or never received an answer. The question stays open."""

    code = "answer_failed"
    retryable = True


class StaleAnswerError(TutorSessionError):
    """Answer submitted for a question the session is no longer waiting on."""

    code = "stale_answer"


class InvalidTransitionError(TutorSessionError):
    """Operation is not allowed in the session's current status."""

    code = "invalid_transition"
