"""
OpenAI-compatible API client components.

Clean separation of concerns:
- transport.py: HTTP requests, idempotency keys, per-call-kind timeouts
- retry_policy.py: Exponential backoff for transient failures
- idempotency.py: Idempotency key generation
- http_session.py: Thread-local requests sessions
- sse_parser.py: Server-Sent Events decoding and accumulation
- stream_reader.py: Consumer-facing views over streamed events
"""

from .transport import OpenAITransport, AttemptContext, CallKind, SseLineStream
from .retry_policy import RetryPolicy
from .idempotency import IdempotencyKeyBuilder, generate_idempotency_key, IDEMPOTENCY_HEADER
from .http_session import ThreadLocalSessionManager
from .sse_parser import ResponsesSseParser
from .stream_reader import StreamReader

__all__ = [
    'OpenAITransport',
    'AttemptContext',
    'CallKind',
    'SseLineStream',
    'RetryPolicy',
    'IdempotencyKeyBuilder',
    'generate_idempotency_key',
    'IDEMPOTENCY_HEADER',
    'ThreadLocalSessionManager',
    'ResponsesSseParser',
    'StreamReader',
]
