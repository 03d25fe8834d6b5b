"""
Remote session gateway for the lecture streaming API.

The session core only depends on the RemoteSessionGateway protocol. The HTTP
implementation wraps the blocking `requests` calls in the default thread pool
executor so polling never blocks the event loop.

Endpoints (all addressed by lecture id):
    POST /api/lectures/{id}/stream/initialize
    POST /api/lectures/{id}/stream/next
    POST /api/lectures/{id}/stream/answer   body: {"aiQuestionId", "answer"}
    POST /api/lectures/{id}/stream/cancel
    GET  /api/lectures/{id}/stream/session
"""

import asyncio
import logging
from functools import partial
from typing import Any, Dict, Optional, Protocol, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from lecture_tutor.config import TutorSettings
from lecture_tutor.core.errors import RemoteAuthError, RemoteSessionError
from lecture_tutor.core.session_models import (
    AnswerRequest,
    ChapterManifest,
    RemoteSessionSnapshot,
    Segment,
    SupplementaryResult,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

REDIRECT_STATUS_CODES = {301, 302, 303, 307, 308}


class RemoteSessionGateway(Protocol):
    """The remote operations consumed by the session controller."""

    async def initialize(self, lecture_id: int) -> ChapterManifest:
        ...

    async def next(self, lecture_id: int) -> Segment:
        ...

    async def answer(self, lecture_id: int, request: AnswerRequest) -> SupplementaryResult:
        ...

    async def cancel(self, lecture_id: int) -> None:
        ...

    async def session(self, lecture_id: int) -> RemoteSessionSnapshot:
        ...

    async def close(self) -> None:
        ...


class HttpSessionGateway:
    """RemoteSessionGateway over HTTP with bearer-token auth."""

    def __init__(
        self,
        settings: TutorSettings,
        http_session: Optional[requests.Session] = None,
    ):
        self.base_url = settings.base_url.rstrip("/")
        self.timeout = settings.http_timeout_seconds
        self.api_token = settings.api_token
        self.http = http_session or requests.Session()

    async def initialize(self, lecture_id: int) -> ChapterManifest:
        body = await self._call("POST", lecture_id, "initialize")
        return self._parse(ChapterManifest, body, lecture_id, "initialize")

    async def next(self, lecture_id: int) -> Segment:
        body = await self._call("POST", lecture_id, "next")
        return self._parse(Segment, body, lecture_id, "next")

    async def answer(self, lecture_id: int, request: AnswerRequest) -> SupplementaryResult:
        body = await self._call("POST", lecture_id, "answer", payload=request.to_payload())
        return self._parse(SupplementaryResult, body, lecture_id, "answer")

    async def cancel(self, lecture_id: int) -> None:
        await self._call("POST", lecture_id, "cancel")

    async def session(self, lecture_id: int) -> RemoteSessionSnapshot:
        body = await self._call("GET", lecture_id, "session")
        return self._parse(RemoteSessionSnapshot, body, lecture_id, "session")

    async def close(self) -> None:
        self.http.close()

    def endpoint(self, lecture_id: int, operation: str) -> str:
        return f"{self.base_url}/api/lectures/{lecture_id}/stream/{operation}"

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _call(
        self,
        method: str,
        lecture_id: int,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            partial(self.request, method, lecture_id, operation, payload),
        )

    def request(
        self,
        method: str,
        lecture_id: int,
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Perform one blocking request and decode the JSON body."""
        url = self.endpoint(lecture_id, operation)
        logger.debug(f"{method} {url}")

        try:
            response = self.http.request(
                method,
                url,
                json=payload,
                headers=self.headers(),
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.RequestException as e:
            raise RemoteSessionError(
                f"Network connection failed: {url} ({e})",
                lecture_id=lecture_id,
            ) from e

        return self._decode(response, lecture_id, operation)

    def _decode(self, response: requests.Response, lecture_id: int, operation: str) -> Dict[str, Any]:
        status = response.status_code

        if status in REDIRECT_STATUS_CODES:
            # The backend redirects unauthenticated calls to its OAuth login page
            location = response.headers.get("location", "")
            raise RemoteAuthError(
                f"Login required for stream/{operation} (redirected to {location or 'unknown'})",
                lecture_id=lecture_id,
                status_code=status,
            )

        if status >= 400:
            message = _error_message(response)
            error_cls = RemoteAuthError if status == 401 else RemoteSessionError
            raise error_cls(
                f"API Error ({status} {response.reason}): {message}",
                lecture_id=lecture_id,
                status_code=status,
            )

        if status == 204 or not response.content:
            return {}

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteSessionError(
                f"stream/{operation} returned a non-JSON body",
                lecture_id=lecture_id,
                status_code=status,
            ) from e

        if not isinstance(body, dict):
            raise RemoteSessionError(
                f"stream/{operation} returned {type(body).__name__}, expected an object",
                lecture_id=lecture_id,
                status_code=status,
            )
        return body

    @staticmethod
    def _parse(model: Type[ModelT], body: Dict[str, Any], lecture_id: int, operation: str) -> ModelT:
        try:
            return model.model_validate(body)
        except ValidationError as e:
            logger.error(f"Malformed stream/{operation} response for lecture {lecture_id}: {e}")
            raise RemoteSessionError(
                f"Malformed stream/{operation} response: {e.error_count()} invalid field(s)",
                lecture_id=lecture_id,
            ) from e


def _error_message(response: requests.Response) -> str:
    """Prefer the backend's `message`/`title` field, fall back to the raw body."""
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("title")
            if message:
                return str(message)
    text = (response.text or "").strip()
    return text or "Unable to read the response body"
