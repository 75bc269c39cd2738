"""
Tests for ai_relay/llm/openai/transport.py

Key behaviors to verify:
1. One Idempotency-Key per logical create call, identical on every retry
2. Timeout chosen by call kind and identical on every attempt
3. Transient failures (network, 429, 5xx) retried; other 4xx surfaced at once
4. Streaming retries the connection only, then yields lines lazily
5. Cancellation stops further attempts and stream iteration
"""

import pytest
import requests
from unittest.mock import MagicMock

from ai_relay.config import ClientConfig
from ai_relay.llm.cancellation import CancellationToken
from ai_relay.llm.errors import Canceled, InvalidConfiguration, MalformedResponseError, TransportError
from ai_relay.llm.openai import IDEMPOTENCY_HEADER, OpenAITransport, ResponsesSseParser, RetryPolicy
from ai_relay.llm.openai.transport import AttemptContext, CallKind


def request_kwargs(mock_session, index):
    return mock_session.request.call_args_list[index].kwargs


def request_args(mock_session, index):
    return mock_session.request.call_args_list[index].args


class TestIdempotencyKey:

    def test_same_key_across_retries(self, transport, mock_session, make_response):
        mock_session.request.side_effect = [
            make_response(503, {"error": {"message": "overloaded"}}),
            make_response(200, {"id": "resp_1"}),
        ]

        result = transport.post_json("/v1/responses", {"model": "m", "input": "hi"})

        assert result == {"id": "resp_1"}
        assert mock_session.request.call_count == 2
        first = request_kwargs(mock_session, 0)["headers"][IDEMPOTENCY_HEADER]
        second = request_kwargs(mock_session, 1)["headers"][IDEMPOTENCY_HEADER]
        assert first == second
        assert len(first) == 32

    def test_connection_error_then_success(self, transport, mock_session, make_response):
        mock_session.request.side_effect = [
            requests.exceptions.ConnectionError("connection reset"),
            make_response(200, {"ok": True}),
        ]

        assert transport.post_json("/v1/responses", {"input": "hi"}) == {"ok": True}
        keys = {request_kwargs(mock_session, i)["headers"][IDEMPOTENCY_HEADER] for i in range(2)}
        assert len(keys) == 1

    def test_new_key_per_logical_call(self, transport, mock_session, make_response):
        mock_session.request.side_effect = [make_response(200, {}), make_response(200, {})]

        transport.post_json("/v1/responses", {"input": "a"})
        transport.post_json("/v1/responses", {"input": "a"})

        first = request_kwargs(mock_session, 0)["headers"][IDEMPOTENCY_HEADER]
        second = request_kwargs(mock_session, 1)["headers"][IDEMPOTENCY_HEADER]
        assert first != second

    def test_payload_key_used_and_stripped(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, {"ok": True})

        transport.post_json("/v1/responses", {"input": "hi", "_idempotency_key": "caller-key"})

        kwargs = request_kwargs(mock_session, 0)
        assert kwargs["headers"][IDEMPOTENCY_HEADER] == "caller-key"
        assert kwargs["json"] == {"input": "hi"}

    def test_deterministic_key_as_payload_key(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, {"ok": True})
        payload = {"model": "m", "input": "hi"}

        key = transport.deterministic_key(payload)
        transport.post_json("/v1/responses", {**payload, "_idempotency_key": key})

        assert key.startswith("resp_")
        assert request_kwargs(mock_session, 0)["headers"][IDEMPOTENCY_HEADER] == key

    def test_no_key_on_reads(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, {"id": "resp_1"})

        transport.get_json("/v1/responses/resp_1")

        assert IDEMPOTENCY_HEADER not in request_kwargs(mock_session, 0)["headers"]

    def test_no_key_when_disabled(self, session_manager, mock_session, make_response):
        config = ClientConfig(api_key="k", responses={"idempotency_enabled": False})
        transport = OpenAITransport(config, session_manager=session_manager)
        mock_session.request.return_value = make_response(200, {})

        transport.post_json("/v1/responses", {"input": "hi"})

        assert IDEMPOTENCY_HEADER not in request_kwargs(mock_session, 0)["headers"]

    def test_execute_hands_same_context_values_to_each_attempt(self, transport):
        seen = []

        def operation(ctx: AttemptContext):
            seen.append(ctx)
            if ctx.attempt == 1:
                raise TransportError("reset")
            return "done"

        assert transport.execute(operation, idempotent_create=True) == "done"
        assert [c.attempt for c in seen] == [1, 2]
        assert seen[0].headers == seen[1].headers
        assert seen[0].timeout == seen[1].timeout == 30

    def test_execute_retries_network_error_from_operation(self, transport):
        seen = []

        def operation(ctx: AttemptContext):
            seen.append(ctx)
            if ctx.attempt == 1:
                raise requests.exceptions.ConnectionError("reset")
            return {"ok": True}

        assert transport.execute(operation, idempotent_create=True) == {"ok": True}
        assert len(seen) == 2
        assert seen[0].headers[IDEMPOTENCY_HEADER] == seen[1].headers[IDEMPOTENCY_HEADER]

    def test_execute_wraps_network_error_on_exhaustion(self, transport):
        def operation(ctx: AttemptContext):
            raise requests.exceptions.Timeout("read timed out")

        with pytest.raises(TransportError, match="read timed out") as exc_info:
            transport.execute(operation)
        assert exc_info.value.http_code is None


class TestTimeouts:

    def test_sync_uses_base_timeout(self, transport, mock_session, make_response):
        mock_session.request.side_effect = [make_response(500, "boom", content_type="text/plain"),
                                            make_response(200, {})]

        transport.post_json("/v1/responses", {})

        assert [request_kwargs(mock_session, i)["timeout"] for i in range(2)] == [30, 30]

    def test_stream_uses_sse_timeout_on_every_attempt(self, transport, mock_session, make_response):
        mock_session.request.side_effect = [
            requests.exceptions.Timeout("read timed out"),
            make_response(502, "bad gateway", content_type="text/plain"),
            make_response(200, content_type="text/event-stream", lines=["event: x", "data: {}", ""]),
        ]

        list(transport.stream_sse("/v1/responses", {"input": "hi"}))

        assert mock_session.request.call_count == 3
        assert [request_kwargs(mock_session, i)["timeout"] for i in range(3)] == [300, 300, 300]

    def test_sse_timeout_falls_back_to_base(self):
        config = ClientConfig(api_key="k", responses={"timeout": 45}, streaming={"sse_timeout": None})
        transport = OpenAITransport(config, session_manager=MagicMock())
        assert transport.timeout_for(CallKind.STREAM) == 45
        assert transport.timeout_for(CallKind.SYNC) == 45


class TestErrors:

    def test_4xx_not_retried(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(
            400,
            {"error": {"message": "Unsupported parameter", "type": "invalid_request_error", "param": "foo"}},
            headers={"x-request-id": "req_abc"},
        )

        with pytest.raises(TransportError) as exc_info:
            transport.post_json("/v1/responses", {"foo": 1})

        error = exc_info.value
        assert mock_session.request.call_count == 1
        assert error.http_code == 400
        assert error.request_id == "req_abc"
        assert "Unsupported parameter" in str(error)
        assert "type=invalid_request_error" in str(error)
        assert "param=foo" in str(error)
        assert not error.is_transient

    def test_429_is_retried(self, transport, mock_session, make_response):
        mock_session.request.side_effect = [make_response(429, {"error": {"message": "slow down"}}),
                                            make_response(200, {"ok": True})]
        assert transport.post_json("/v1/responses", {}) == {"ok": True}

    def test_exhaustion_surfaces_last_attempt(self, transport, mock_session, make_response):
        mock_session.request.side_effect = [
            make_response(500, {"error": {"message": "first"}}),
            make_response(502, {"error": {"message": "second"}}),
            make_response(503, "x" * 2000, content_type="text/plain", headers={"request-id": "req_last"}),
        ]

        with pytest.raises(TransportError) as exc_info:
            transport.post_json("/v1/responses", {})

        error = exc_info.value
        assert error.http_code == 503
        assert error.request_id == "req_last"
        assert len(error.response_snippet) == 512

    def test_network_error_exhaustion(self, transport, mock_session):
        mock_session.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(TransportError) as exc_info:
            transport.get_json("/v1/responses/r1")

        assert exc_info.value.http_code is None
        assert "refused" in str(exc_info.value)
        assert mock_session.request.call_count == 3

    def test_non_object_json_is_malformed(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, [1, 2, 3])
        with pytest.raises(MalformedResponseError):
            transport.get_json("/v1/responses/r1")

    def test_invalid_json_is_malformed(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, "{not json")
        with pytest.raises(MalformedResponseError):
            transport.get_json("/v1/responses/r1")

    def test_missing_api_key(self, session_manager, monkeypatch):
        monkeypatch.delenv("AI_API_KEY", raising=False)
        transport = OpenAITransport(ClientConfig(), session_manager=session_manager)
        with pytest.raises(InvalidConfiguration, match="API key"):
            transport.post_json("/v1/responses", {})


class TestRequests:

    def test_auth_and_url(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, {})

        transport.post_json("/v1/responses", {"input": "hi"})

        method, url = request_args(mock_session, 0)
        assert method == "POST"
        assert url == "https://api.test.local/v1/responses"
        assert request_kwargs(mock_session, 0)["headers"]["Authorization"] == "Bearer test-key"

    def test_relative_path_gets_base_path(self, transport):
        assert transport.build_url("responses") == "https://api.test.local/v1/responses"
        assert transport.build_url("/custom/path") == "https://api.test.local/custom/path"

    def test_default_headers_are_sent(self, session_manager, mock_session, make_response):
        config = ClientConfig(api_key="k", default_headers={"OpenAI-Beta": "responses=v1"})
        transport = OpenAITransport(config, session_manager=session_manager)
        mock_session.request.return_value = make_response(200, {})

        transport.get_json("/v1/models")

        assert request_kwargs(mock_session, 0)["headers"]["OpenAI-Beta"] == "responses=v1"

    def test_get_params_and_delete(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, {"deleted": True})

        transport.get_json("/v1/responses/r1/input_items", params={"limit": 5})
        transport.delete("/v1/responses/r1")

        assert request_kwargs(mock_session, 0)["params"] == {"limit": 5}
        assert request_args(mock_session, 1)[0] == "DELETE"

    def test_text_plain_body(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, "hello there", content_type="text/plain; charset=utf-8")
        assert transport.post_json("/v1/audio/transcriptions", {}) == {"text": "hello there"}

    def test_text_plain_without_charset_is_utf8(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, "café ☕", content_type="text/plain")
        assert transport.post_json("/v1/audio/transcriptions", {}) == {"text": "café ☕"}

    def test_binary_body(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, b"ID3\x00\x01", content_type="audio/mpeg")
        result = transport.post_json("/v1/audio/speech", {"input": "hi"})
        assert result == {"content": b"ID3\x00\x01", "content_type": "audio/mpeg"}

    def test_empty_body(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, None)
        assert transport.delete("/v1/responses/r1") == {}


class TestMultipart:

    def test_file_path_and_scalars(self, transport, mock_session, make_response, tmp_path):
        audio = tmp_path / "clip.mp3"
        audio.write_bytes(b"fake-audio")
        seen = {}

        def capture(method, url, **kwargs):
            name, handle = kwargs["files"]["file"]
            seen["file"] = (name, handle.read())
            seen["data"] = kwargs["data"]
            return make_response(200, {"text": "hi"})

        mock_session.request.side_effect = capture

        result = transport.post_multipart("/v1/audio/transcriptions", {
            "file": str(audio),
            "model": "whisper-1",
            "temperature": 0.2,
            "verbose": True,
            "timestamp_granularities": ["word"],
            "prompt": None,
        })

        assert result == {"text": "hi"}
        assert seen["file"] == ("clip.mp3", b"fake-audio")
        assert seen["data"] == {
            "model": "whisper-1",
            "temperature": "0.2",
            "verbose": "true",
            "timestamp_granularities": '["word"]',
        }

    def test_file_reopened_on_retry(self, transport, mock_session, make_response, tmp_path):
        image = tmp_path / "p.png"
        image.write_bytes(b"png-bytes")
        reads = []

        def capture(method, url, **kwargs):
            reads.append(kwargs["files"]["image"][1].read())
            if len(reads) == 1:
                return make_response(503, "busy", content_type="text/plain")
            return make_response(200, {"data": []})

        mock_session.request.side_effect = capture

        transport.post_multipart("/v1/images/variations", {"image": image})

        assert reads == [b"png-bytes", b"png-bytes"]
        keys = {request_kwargs(mock_session, i)["headers"][IDEMPOTENCY_HEADER] for i in range(2)}
        assert len(keys) == 1

    def test_plain_string_outside_file_fields_is_data(self, transport, mock_session, make_response, tmp_path):
        existing = tmp_path / "prompt.txt"
        existing.write_text("x")
        mock_session.request.return_value = make_response(200, {})

        transport.post_multipart("/v1/images/edits", {"prompt": str(existing)})

        kwargs = request_kwargs(mock_session, 0)
        assert kwargs["data"] == {"prompt": str(existing)}
        assert kwargs["files"] == {}


class TestStreaming:

    SSE_LINES = [
        "event: response.output_text.delta",
        'data: {"delta": "Hel"}',
        "",
        "event: response.completed",
        'data: {"id": "resp_1"}',
        "",
    ]

    def test_yields_lines(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, content_type="text/event-stream", lines=self.SSE_LINES)

        lines = list(transport.stream_sse("/v1/responses", {"input": "hi"}))

        assert lines == self.SSE_LINES
        kwargs = request_kwargs(mock_session, 0)
        assert kwargs["stream"] is True
        assert kwargs["json"] == {"input": "hi", "stream": True}
        assert kwargs["headers"]["Accept"] == "text/event-stream"
        assert IDEMPOTENCY_HEADER in kwargs["headers"]

    def test_connection_retried_with_same_key(self, transport, mock_session, make_response):
        mock_session.request.side_effect = [
            requests.exceptions.ConnectionError("dropped"),
            make_response(200, content_type="text/event-stream", lines=self.SSE_LINES),
        ]

        list(transport.stream_sse("/v1/responses", {"input": "hi"}))

        keys = {request_kwargs(mock_session, i)["headers"][IDEMPOTENCY_HEADER] for i in range(2)}
        assert len(keys) == 1

    def test_connection_failure_raises_at_call_time(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(401, {"error": {"message": "bad key"}})

        with pytest.raises(TransportError, match="bad key"):
            transport.stream_sse("/v1/responses", {})

    def test_mid_stream_failure_not_retried(self, transport, mock_session):
        response = MagicMock()
        response.ok = True
        response.status_code = 200

        def broken_lines():
            yield b"event: response.output_text.delta"
            raise requests.exceptions.ChunkedEncodingError("connection broken")

        response.iter_lines.side_effect = broken_lines
        mock_session.request.return_value = response

        lines = transport.stream_sse("/v1/responses", {})
        assert next(lines) == "event: response.output_text.delta"
        with pytest.raises(TransportError, match="connection broken"):
            next(lines)

        assert mock_session.request.call_count == 1
        response.close.assert_called_once()

    def test_non_ascii_lines_decoded_as_utf8(self, transport, mock_session, make_response):
        lines = ["event: response.output_text.delta", 'data: {"delta": "café ☕"}', ""]
        response = make_response(200, content_type="text/event-stream", lines=lines)
        assert response.encoding == "ISO-8859-1"
        mock_session.request.return_value = response

        events = list(ResponsesSseParser().parse_with_accumulation(transport.stream_sse("/v1/responses", {})))

        assert events[0].data["accumulated"] == "café ☕"

    def test_close_before_iteration_releases_connection(self, transport, mock_session):
        response = MagicMock()
        response.ok = True
        response.status_code = 200
        mock_session.request.return_value = response

        lines = transport.stream_sse("/v1/responses", {})
        lines.close()

        response.close.assert_called()
        response.iter_lines.assert_not_called()
        with pytest.raises(StopIteration):
            next(lines)

    def test_context_manager_closes(self, transport, mock_session, make_response):
        response = make_response(200, content_type="text/event-stream", lines=self.SSE_LINES)
        response.close = MagicMock()
        mock_session.request.return_value = response

        with transport.stream_sse("/v1/responses", {}) as lines:
            assert next(lines) == self.SSE_LINES[0]

        response.close.assert_called()

    def test_cancel_during_iteration(self, transport, mock_session, make_response):
        mock_session.request.return_value = make_response(200, content_type="text/event-stream", lines=self.SSE_LINES)
        token = CancellationToken()

        lines = transport.stream_sse("/v1/responses", {}, cancel_token=token)
        assert next(lines) == self.SSE_LINES[0]
        token.cancel()

        with pytest.raises(Canceled):
            next(lines)


class TestCancellation:

    def test_canceled_before_any_attempt(self, transport, mock_session):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(Canceled):
            transport.post_json("/v1/responses", {}, cancel_token=token)
        mock_session.request.assert_not_called()

    def test_cancel_during_backoff_surfaces_canceled(self, client_config, session_manager, mock_session, make_response):
        transport = OpenAITransport(
            client_config,
            session_manager=session_manager,
            retry_policy=RetryPolicy(client_config.responses.retry.model_copy(update={"initial_delay": 5.0})),
        )
        token = CancellationToken()

        def fail_and_cancel(method, url, **kwargs):
            token.cancel()
            return make_response(503, "busy", content_type="text/plain")

        mock_session.request.side_effect = fail_and_cancel

        with pytest.raises(Canceled):
            transport.post_json("/v1/responses", {}, cancel_token=token)
        assert mock_session.request.call_count == 1
