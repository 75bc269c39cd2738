"""
ai_relay: routing, resilient transport and SSE streaming for generative-AI APIs.

Usage:
    from ai_relay import AiClient, load_config_from_env

    client = AiClient(load_config_from_env())
    endpoint = client.route({"image": {"image": "photo.png"}})
"""

# Config first: its schemas import the llm catalog, and the transport
# layer imports the schemas.
from ai_relay.config import (
    ClientConfig,
    ClientConfigManager,
    load_client_config,
    load_config_from_env,
)
from ai_relay.llm import (
    Endpoint,
    EndpointRouter,
    RequestDescription,
    SseEvent,
    CancellationToken,
    RelayError,
    InvalidConfiguration,
    RoutingConflict,
    TransportError,
    MalformedResponseError,
    Canceled,
)
from ai_relay.llm.openai import OpenAITransport, RetryPolicy, ResponsesSseParser, StreamReader
from ai_relay.llm.client import AiClient
from ai_relay.logger import configure_logging, get_logger

__version__ = "0.1.0"

__all__ = [
    "AiClient",
    "ClientConfig",
    "ClientConfigManager",
    "load_client_config",
    "load_config_from_env",
    "Endpoint",
    "EndpointRouter",
    "RequestDescription",
    "SseEvent",
    "CancellationToken",
    "RelayError",
    "InvalidConfiguration",
    "RoutingConflict",
    "TransportError",
    "MalformedResponseError",
    "Canceled",
    "OpenAITransport",
    "RetryPolicy",
    "ResponsesSseParser",
    "StreamReader",
    "configure_logging",
    "get_logger",
]
