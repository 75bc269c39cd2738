#!/usr/bin/env python3
"""
Unified client for the generative-AI API.

Orchestrates the routing, transport and streaming layers:
- EndpointRouter: picks the capability endpoint for a request
- OpenAITransport: HTTP with retries, idempotency keys and timeouts
- ResponsesSseParser: SSE decoding with text accumulation

Payloads are sent as given; no per-endpoint request shaping happens here.
"""

from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple, Union

from ai_relay.config import ClientConfig, load_client_config, load_config_from_env
from ai_relay.logger import as_relay_logger
from .cancellation import CancellationToken
from .endpoints import Endpoint
from .models import RequestDescription, SseEvent
from .openai import OpenAITransport, ResponsesSseParser, SseLineStream, StreamReader
from .router import EndpointRouter


class AiClient:
    """
    Routes requests and calls the API with retries and streaming support.

    Components:
    - EndpointRouter: first-match-wins endpoint selection (validated at construction)
    - OpenAITransport: resilient HTTP (shared Idempotency-Key across retries)
    - ResponsesSseParser: streaming event decoding and accumulation
    - StreamReader: text-only view over streamed events

    Example:
        client = AiClient(ClientConfig(api_key="sk-..."))
        endpoint = client.route({"audio": {"file": "a.mp3", "action": "transcribe"}})
        result = client.send(endpoint, {"model": "whisper-1", "file": "a.mp3"})

        for event in client.stream({"model": "gpt-4o-mini", "input": "Hello"}):
            print(event.data.get("accumulated", ""))
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        router: Optional[EndpointRouter] = None,
        transport: Optional[OpenAITransport] = None,
        parser: Optional[ResponsesSseParser] = None,
        logger=None,
    ):
        """
        Initialize client.

        Args:
            config: Client configuration (default: ClientConfig() defaults)
            router: Endpoint router (default: built from config.routing)
            transport: HTTP transport (default: built from config)
            parser: SSE parser (default: ResponsesSseParser())
            logger: Logger shared by the default components

        Raises:
            InvalidConfiguration: Routing configuration names unknown/duplicate endpoints
            RoutingConflict: Routing conflict with conflict_behavior "error"
        """
        self.config = config or ClientConfig()
        self.logger = as_relay_logger(logger, __name__)
        self.router = router or EndpointRouter.from_config(self.config.routing, logger=self.logger)
        self.transport = transport or OpenAITransport(self.config, logger=self.logger)
        self.parser = parser or ResponsesSseParser()
        self.stream_reader = StreamReader()

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, **kwargs) -> "AiClient":
        return cls(load_config_from_env(dotenv_path), **kwargs)

    @classmethod
    def from_config_dir(cls, config_dir: Path, **kwargs) -> "AiClient":
        return cls(load_client_config(config_dir), **kwargs)

    def route(self, request: Union[RequestDescription, Mapping[str, Any], None]) -> Endpoint:
        return self.router.determine_endpoint(request)

    def send(
        self,
        endpoint: Union[Endpoint, str],
        payload: Optional[Mapping[str, Any]] = None,
        files: Optional[Mapping[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """
        Call an endpoint once (with transport retries).

        Multipart endpoints (transcription, translation, image edit/variation)
        and calls with `files` go out as multipart/form-data, everything else
        as JSON. All endpoint calls are creates, so each carries an
        Idempotency-Key shared across its retries.
        """
        endpoint = Endpoint(endpoint)
        body = dict(payload or {})

        if files or endpoint.requires_multipart:
            body.update(files or {})
            return self.transport.post_multipart(endpoint.url, body, cancel_token=cancel_token)

        return self.transport.post_json(endpoint.url, body, cancel_token=cancel_token)

    def dispatch(
        self,
        request: Union[RequestDescription, Mapping[str, Any], None],
        payload: Optional[Mapping[str, Any]] = None,
        files: Optional[Mapping[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Tuple[Endpoint, Dict[str, Any]]:
        """Route `request` and send `payload` to the chosen endpoint."""
        endpoint = self.route(request)
        self.logger.debug(f"Dispatching to {endpoint.value}", endpoint=endpoint.value)
        return endpoint, self.send(endpoint, payload, files=files, cancel_token=cancel_token)

    def stream(
        self,
        payload: Mapping[str, Any],
        endpoint: Union[Endpoint, str] = Endpoint.RESPONSE_API,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[SseEvent]:
        """
        Stream accumulated SSE events.

        Connection failures raise here (after retries); events are then pulled
        lazily and cancellation is checked on every line. Closing the returned
        iterator early releases the connection.
        """
        endpoint = Endpoint(endpoint)
        lines = self.transport.stream_sse(endpoint.url, payload, cancel_token=cancel_token)
        return self._accumulated_events(lines, cancel_token)

    def _accumulated_events(self, lines: SseLineStream, cancel_token: Optional[CancellationToken]) -> Iterator[SseEvent]:
        with lines:
            yield from self.parser.parse_with_accumulation(lines, cancel_token)

    def stream_text(
        self,
        payload: Mapping[str, Any],
        on_text_chunk: Optional[Callable[[str], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[str]:
        return self.stream_reader.text_chunks(self.stream(payload, cancel_token=cancel_token), on_text_chunk)

    # Responses API lifecycle

    def create_response(self, payload: Mapping[str, Any], cancel_token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        return self.transport.post_json(Endpoint.RESPONSE_API.url, payload, cancel_token=cancel_token)

    def get_response(self, response_id: str, cancel_token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        return self.transport.get_json(self._response_path(response_id), cancel_token=cancel_token)

    def list_responses(
        self,
        response_id: str,
        params: Optional[Mapping[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        """List the input items of a stored response (supports `limit`, `order`, `after`, `before`)."""
        path = f"{self._response_path(response_id)}/input_items"
        return self.transport.get_json(path, params=params, cancel_token=cancel_token)

    def cancel_response(self, response_id: str, cancel_token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        path = f"{self._response_path(response_id)}/cancel"
        return self.transport.post_json(path, {}, idempotent_create=False, cancel_token=cancel_token)

    def delete_response(self, response_id: str, cancel_token: Optional[CancellationToken] = None) -> Dict[str, Any]:
        return self.transport.delete(self._response_path(response_id), cancel_token=cancel_token)

    def _response_path(self, response_id: str) -> str:
        response_id = (response_id or '').strip()
        if not response_id:
            raise ValueError("response_id must be a non-empty string")
        return f"{Endpoint.RESPONSE_API.url}/{response_id}"
