#!/usr/bin/env python3
import json
from typing import Iterable, Optional

import requests


SNIPPET_LIMIT = 512
DEFAULT_ERROR_MESSAGE = "API error"


class RelayError(Exception):
    pass


class InvalidConfiguration(RelayError):
    """Configuration that can never work (unknown endpoint, malformed retry policy)."""

    def __init__(self, reasoning: str, subject: str = "configuration"):
        self.reasoning = reasoning
        super().__init__(
            f"Invalid {subject}.\n\n"
            f"Reasoning:\n{reasoning}\n\n"
            f"Conclusion: Please correct the {subject} before creating the client."
        )


class RoutingConflict(RelayError):
    """Two enabled endpoints could claim the same request."""

    def __init__(self, endpoints: Iterable[str], reasoning: str):
        self.endpoints = list(endpoints)
        self.reasoning = reasoning
        super().__init__(
            "Conflicting endpoint configuration detected.\n\n"
            f"Reasoning:\n{reasoning}\n\n"
            f"Conflicting endpoints: {', '.join(self.endpoints)}\n\n"
            "Conclusion: Please resolve the conflict by disabling conflicting endpoints "
            "or adjusting the routing priority configuration."
        )


class MalformedResponseError(RelayError):
    pass


class Canceled(RelayError):
    def __init__(self, message: str = "Operation was canceled by the caller."):
        super().__init__(message)


class TransportError(RelayError):
    """
    Failed remote call, raised after retries are exhausted or on a non-transient status.

    Attributes:
        http_code: HTTP status of the last attempt (None for network failures)
        request_id: Server request id from x-request-id / request-id, if any
        response_snippet: First 512 characters of the last response body
    """

    def __init__(
        self,
        message: str,
        http_code: Optional[int] = None,
        request_id: Optional[str] = None,
        response_snippet: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.http_code = http_code
        self.request_id = request_id
        self.response_snippet = response_snippet
        self.retry_after = retry_after

    @property
    def is_transient(self) -> bool:
        if self.http_code is None:
            return True
        return self.http_code == 429 or 500 <= self.http_code <= 599

    @classmethod
    def from_response(cls, response: requests.Response) -> "TransportError":
        body = response.text or ''
        message = _extract_error_message(body)
        request_id = (
            response.headers.get('x-request-id')
            or response.headers.get('request-id')
            or None
        )
        return cls(
            message,
            http_code=response.status_code,
            request_id=request_id,
            response_snippet=body[:SNIPPET_LIMIT],
            retry_after=_parse_retry_after(response.headers.get('Retry-After')),
        )

    @classmethod
    def from_exception(cls, error: Exception) -> "TransportError":
        response = getattr(error, 'response', None)
        if isinstance(response, requests.Response):
            transport_error = cls.from_response(response)
            transport_error.__cause__ = error
            return transport_error

        message = str(error) or f"Transport error during API request ({type(error).__name__})"
        transport_error = cls(message)
        transport_error.__cause__ = error
        return transport_error

    def __repr__(self):
        return (f"TransportError(http_code={self.http_code}, "
                f"request_id={self.request_id!r}, message={str(self)!r})")


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _extract_error_message(body: str) -> str:
    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = None

    if not isinstance(payload, dict):
        return body or DEFAULT_ERROR_MESSAGE

    message = DEFAULT_ERROR_MESSAGE
    details = []

    error = payload.get('error')
    if isinstance(error, dict):
        if isinstance(error.get('message'), str):
            message = error['message']
        if isinstance(error.get('type'), str):
            details.append(f"type={error['type']}")
        code = error.get('code')
        if isinstance(code, (str, int)) and not isinstance(code, bool):
            details.append(f"code={code}")
        if isinstance(error.get('param'), str):
            details.append(f"param={error['param']}")

    if message == DEFAULT_ERROR_MESSAGE:
        errors = payload.get('errors')
        if isinstance(payload.get('message'), str):
            message = payload['message']
        elif isinstance(error, str):
            message = error
        elif isinstance(errors, list) and errors and isinstance(errors[0], dict) \
                and isinstance(errors[0].get('message'), str):
            message = errors[0]['message']
        elif body:
            message = body

    if details:
        message = f"{message} [{' '.join(details)}]"

    return message
