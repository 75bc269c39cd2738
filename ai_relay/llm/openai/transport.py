#!/usr/bin/env python3
import json
from contextlib import ExitStack
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple, TypeVar

import requests

from ai_relay.config.schemas import ClientConfig
from ai_relay.logger import as_relay_logger
from ..cancellation import CancellationToken, check_canceled
from ..errors import InvalidConfiguration, MalformedResponseError, TransportError
from .http_session import ThreadLocalSessionManager
from .idempotency import IDEMPOTENCY_HEADER, PAYLOAD_KEY_FIELD, IdempotencyKeyBuilder, generate_idempotency_key
from .retry_policy import RetryPolicy

T = TypeVar('T')

# Failures that never reached a usable response; retried like 5xx
NETWORK_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
)

# Multipart fields whose string values are treated as local file paths
FILE_FIELDS = frozenset({'file', 'image', 'mask'})

BINARY_CONTENT_PREFIXES = ('audio/', 'image/', 'application/octet-stream')


class CallKind(str, Enum):
    SYNC = "sync"
    STREAM = "stream"


@dataclass(frozen=True)
class AttemptContext:
    """What one HTTP attempt must send: identical headers and timeout on every retry."""
    attempt: int
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: float = 120.0
    call_kind: CallKind = CallKind.SYNC


class OpenAITransport:
    """
    Resilient HTTP transport for the generative-AI API.

    Every call goes through execute(), which:
    - generates one Idempotency-Key before the first attempt of a create
      call and sends it on every attempt
    - picks the per-attempt timeout by call kind (base for sync, SSE for stream)
    - retries transient failures through RetryPolicy

    Streaming calls retry only the initial connection. Once the response
    headers arrive the caller pulls lines lazily and nothing is retried.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        session_manager: Optional[ThreadLocalSessionManager] = None,
        retry_policy: Optional[RetryPolicy] = None,
        logger=None,
        api_key: Optional[str] = None,
    ):
        self.config = config or ClientConfig()
        self.logger = as_relay_logger(logger, __name__)
        self.session_manager = session_manager or ThreadLocalSessionManager(self.config.connection_pool)
        self.retry_policy = retry_policy or RetryPolicy(self.config.responses.retry, logger=self.logger)
        self.api_key = api_key if api_key is not None else self.config.resolve_api_key()
        self.base_url = self.config.base_url
        self.base_path = '/' + self.config.base_path.strip('/') if self.config.base_path.strip('/') else ''
        self.key_builder = IdempotencyKeyBuilder()

    def timeout_for(self, call_kind: CallKind) -> float:
        if call_kind == CallKind.STREAM:
            return self.config.sse_timeout
        return self.config.base_timeout

    def deterministic_key(self, payload: Mapping[str, Any]) -> str:
        """Stable key for `payload` within the configured idempotency bucket (pass as `_idempotency_key`)."""
        return self.key_builder.build_key(payload, self.config.responses.idempotency_bucket)

    def build_url(self, path: str) -> str:
        if path.startswith('/'):
            return f"{self.base_url}{path}"
        return f"{self.base_url}{self.base_path}/{path}"

    def execute(
        self,
        operation: Callable[[AttemptContext], T],
        idempotent_create: bool = False,
        call_kind: CallKind = CallKind.SYNC,
        cancel_token: Optional[CancellationToken] = None,
        idempotency_key: Optional[str] = None,
        **log_context
    ) -> T:
        """
        Run one logical operation with retries.

        Args:
            operation: Performs one HTTP attempt using the given AttemptContext;
                       raises TransportError (or a requests network error) on failure
            idempotent_create: Attach an Idempotency-Key shared by all attempts
            call_kind: SYNC or STREAM (selects the timeout)
            cancel_token: Caller cancellation signal
            idempotency_key: Caller-supplied key (otherwise one is generated)

        Returns:
            Whatever the first successful attempt returned

        Raises:
            TransportError: Non-transient failure or retries exhausted
            Canceled: Cancellation fired before an attempt or during backoff
        """
        key = idempotency_key
        if key is None and idempotent_create and self.config.responses.idempotency_enabled:
            key = generate_idempotency_key()

        base = AttemptContext(
            attempt=1,
            headers=self._build_headers(key),
            timeout=self.timeout_for(call_kind),
            call_kind=call_kind,
        )

        def attempt_fn(attempt: int) -> T:
            try:
                return operation(replace(base, attempt=attempt, headers=dict(base.headers)))
            except NETWORK_ERRORS as e:
                raise TransportError.from_exception(e) from e

        return self.retry_policy.execute_with_retry(
            attempt_fn,
            cancel_token=cancel_token,
            call_kind=call_kind.value,
            timeout=base.timeout,
            **log_context
        )

    def post_json(
        self,
        path: str,
        payload: Optional[Mapping[str, Any]] = None,
        idempotent_create: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        body, key = _split_idempotency_key(payload)
        return self._request_json('POST', path, json_body=body, idempotent_create=idempotent_create,
                                  idempotency_key=key, cancel_token=cancel_token)

    def get_json(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        return self._request_json('GET', path, params=params, cancel_token=cancel_token)

    def delete(self, path: str, cancel_token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        return self._request_json('DELETE', path, cancel_token=cancel_token)

    def post_multipart(
        self,
        path: str,
        fields: Mapping[str, Any],
        idempotent_create: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        POST multipart/form-data.

        File fields (Path objects, open binary handles, or existing paths under
        file/image/mask) become file parts and are reopened or rewound for each
        attempt. Booleans are sent as true/false, other non-scalars as JSON.
        """
        body, key = _split_idempotency_key(fields)
        url = self.build_url(path)

        def operation(ctx: AttemptContext) -> Dict[str, Any]:
            with ExitStack() as stack:
                data, files = _multipart_parts(body or {}, stack)
                response = self._send('POST', url, ctx, data=data, files=files)
            return self._decode(response)

        return self.execute(operation, idempotent_create, CallKind.SYNC, cancel_token, key,
                            method='POST', path=path)

    def stream_sse(
        self,
        path: str,
        payload: Optional[Mapping[str, Any]] = None,
        idempotent_create: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> "SseLineStream":
        """
        Open an SSE stream and return its lines lazily.

        The connection is established (with retries) before this returns, so
        connection failures raise here. Iterating the result pulls one line at
        a time and checks cancellation on every line. Exhausting the stream or
        calling close() on it releases the connection.
        """
        body, key = _split_idempotency_key(payload)
        body = dict(body or {})
        body.setdefault('stream', True)
        url = self.build_url(path)

        def operation(ctx: AttemptContext) -> requests.Response:
            ctx.headers['Accept'] = 'text/event-stream'
            return self._send('POST', url, ctx, json=body, stream=True)

        response = self.execute(operation, idempotent_create, CallKind.STREAM, cancel_token, key,
                                method='POST', path=path)
        return SseLineStream(response, cancel_token)

    def _request_json(
        self,
        method: str,
        path: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Mapping[str, Any]] = None,
        idempotent_create: bool = False,
        idempotency_key: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        url = self.build_url(path)

        def operation(ctx: AttemptContext) -> Dict[str, Any]:
            kwargs: Dict[str, Any] = {}
            if json_body is not None:
                kwargs['json'] = json_body
            if params:
                kwargs['params'] = dict(params)
            return self._decode(self._send(method, url, ctx, **kwargs))

        return self.execute(operation, idempotent_create, CallKind.SYNC, cancel_token, idempotency_key,
                            method=method, path=path)

    def _build_headers(self, idempotency_key: Optional[str]) -> Dict[str, str]:
        if not self.api_key:
            raise InvalidConfiguration(
                "No API key configured. Set AI_API_KEY or api_key in config.yaml.",
                subject="credentials",
            )

        headers = dict(self.config.default_headers)
        headers["Authorization"] = f"Bearer {self.api_key}"
        headers.setdefault("Accept", "application/json")
        if idempotency_key:
            headers[IDEMPOTENCY_HEADER] = idempotency_key
        return headers

    def _send(self, method: str, url: str, ctx: AttemptContext, **kwargs) -> requests.Response:
        session = self.session_manager.get_session()

        self.logger.debug(
            f"API request {method} {url}",
            method=method,
            path=url,
            attempt=ctx.attempt,
            timeout=ctx.timeout,
            call_kind=ctx.call_kind.value
        )

        try:
            response = session.request(method, url, headers=ctx.headers, timeout=ctx.timeout, **kwargs)
        except NETWORK_ERRORS as e:
            raise TransportError.from_exception(e) from e

        self.logger.debug(
            f"API response {response.status_code}",
            method=method,
            path=url,
            attempt=ctx.attempt,
            status_code=response.status_code
        )

        if not response.ok:
            error = TransportError.from_response(response)
            response.close()
            raise error

        return response

    def _decode(self, response: requests.Response) -> Dict[str, Any]:
        content_type = response.headers.get('Content-Type', '').lower()

        if not response.content:
            return {}

        if content_type.startswith('text/plain'):
            return {'text': response.content.decode('utf-8', errors='replace')}

        if content_type.startswith(BINARY_CONTENT_PREFIXES):
            return {'content': response.content, 'content_type': content_type}

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Response body is not valid JSON (status {response.status_code}): {response.text[:200]}"
            ) from e

        if not isinstance(data, dict):
            raise MalformedResponseError(f"Expected a JSON object, got {type(data).__name__}")

        return data


class SseLineStream:
    """
    Lines of an open streaming response, decoded as UTF-8.

    Usable as an iterator or a context manager. The response is closed when
    the lines run out, on a mid-stream failure, or on close().
    """

    def __init__(self, response: requests.Response, cancel_token: Optional[CancellationToken] = None):
        self.response = response
        self.cancel_token = cancel_token
        self._lines = self._iter_lines()

    def __iter__(self) -> "SseLineStream":
        return self

    def __next__(self) -> str:
        return next(self._lines)

    def __enter__(self) -> "SseLineStream":
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self._lines.close()
        self.response.close()

    def _iter_lines(self) -> Iterator[str]:
        # requests falls back to ISO-8859-1 for text/* without a charset
        try:
            for line in self.response.iter_lines():
                check_canceled(self.cancel_token)
                yield line.decode('utf-8', errors='replace') if isinstance(line, bytes) else line
        except NETWORK_ERRORS as e:
            # Mid-stream failures are not retried
            raise TransportError.from_exception(e) from e
        finally:
            self.response.close()


def _split_idempotency_key(payload: Optional[Mapping[str, Any]]) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    if payload is None:
        return None, None
    body = dict(payload)
    key = body.pop(PAYLOAD_KEY_FIELD, None)
    return body, (str(key) if key else None)


def _multipart_parts(fields: Mapping[str, Any], stack: ExitStack) -> Tuple[Dict[str, str], Dict[str, Any]]:
    data: Dict[str, str] = {}
    files: Dict[str, Any] = {}

    for name, value in fields.items():
        if value is None:
            continue

        if hasattr(value, 'read'):
            if hasattr(value, 'seek'):
                value.seek(0)
            files[name] = (Path(getattr(value, 'name', name)).name, value)
        elif isinstance(value, Path) or (name in FILE_FIELDS and isinstance(value, str) and Path(value).is_file()):
            path = Path(value)
            handle = stack.enter_context(open(path, 'rb'))
            files[name] = (path.name, handle)
        elif isinstance(value, bool):
            data[name] = 'true' if value else 'false'
        elif isinstance(value, (str, int, float)):
            data[name] = str(value)
        else:
            data[name] = json.dumps(value)

    return data, files
