"""
Shared fixtures for llm tests.

HTTP is faked at the session level: tests hand the transport a session
manager whose session is a MagicMock returning real requests.Response
objects. No network.
"""

import io
import json
import pytest
import requests
from unittest.mock import MagicMock

from ai_relay.config import ClientConfig
from ai_relay.llm.openai import OpenAITransport, RetryPolicy


def _make_response(status_code=200, body=None, headers=None, content_type="application/json", lines=None):
    """Build a real requests.Response with a canned body or SSE lines."""
    response = requests.Response()
    response.status_code = status_code
    response.headers["Content-Type"] = content_type
    response.headers.update(headers or {})
    # Same encoding guess HTTPAdapter.build_response makes
    response.encoding = requests.utils.get_encoding_from_headers(response.headers)

    if lines is not None:
        response.raw = io.BytesIO(("\n".join(lines) + "\n").encode("utf-8"))
        return response

    if isinstance(body, (dict, list)):
        raw = json.dumps(body).encode("utf-8")
    elif isinstance(body, str):
        raw = body.encode("utf-8")
    elif body is None:
        raw = b""
    else:
        raw = body

    response._content = raw
    response._content_consumed = True
    response.raw = io.BytesIO(b"")
    return response


@pytest.fixture
def client_config():
    """Config with a literal key and deterministic, instant backoff."""
    return ClientConfig(
        api_key="test-key",
        base_url="https://api.test.local",
        responses={
            "timeout": 30,
            "retry": {"max_attempts": 3, "initial_delay": 0.0, "jitter": False},
        },
        streaming={"sse_timeout": 300},
    )


@pytest.fixture
def mock_session():
    return MagicMock()


@pytest.fixture
def session_manager(mock_session):
    manager = MagicMock()
    manager.get_session.return_value = mock_session
    return manager


@pytest.fixture
def transport(client_config, session_manager):
    return OpenAITransport(
        client_config,
        session_manager=session_manager,
        retry_policy=RetryPolicy(client_config.responses.retry, random_fn=lambda: 1.0),
    )


@pytest.fixture
def make_response():
    """Factory fixture: make_response(status_code, body, headers, content_type, lines)."""
    return _make_response
