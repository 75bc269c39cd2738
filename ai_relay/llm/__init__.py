"""
Routing and streaming core for the generative-AI API.

Provides:
- Endpoint: Catalog of capability endpoints and their API paths
- EndpointRouter: First-match-wins endpoint selection with conflict validation
- RequestDescription / SseEvent: Typed request view and streamed event
- CancellationToken: Caller-owned cancellation signal
- Error taxonomy rooted at RelayError

Transport components live in ai_relay.llm.openai and the orchestrating
client in ai_relay.llm.client; both depend on ai_relay.config and are
imported from there rather than here.
"""

from ai_relay.llm.endpoints import (
    Endpoint,
    AudioAction,
    ImageAction,
    DEFAULT_ENDPOINT_PRIORITY,
)
from ai_relay.llm.errors import (
    RelayError,
    InvalidConfiguration,
    RoutingConflict,
    TransportError,
    MalformedResponseError,
    Canceled,
)
from ai_relay.llm.models import (
    RequestDescription,
    AudioRequest,
    ImageRequest,
    AudioInputRequest,
    SseEvent,
)
from ai_relay.llm.cancellation import CancellationToken
from ai_relay.llm.router import EndpointRouter, EndpointRule, DEFAULT_RULES

__all__ = [
    "Endpoint",
    "AudioAction",
    "ImageAction",
    "DEFAULT_ENDPOINT_PRIORITY",
    "RelayError",
    "InvalidConfiguration",
    "RoutingConflict",
    "TransportError",
    "MalformedResponseError",
    "Canceled",
    "RequestDescription",
    "AudioRequest",
    "ImageRequest",
    "AudioInputRequest",
    "SseEvent",
    "CancellationToken",
    "EndpointRouter",
    "EndpointRule",
    "DEFAULT_RULES",
]
