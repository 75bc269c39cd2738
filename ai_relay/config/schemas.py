"""
Configuration schemas for the relay client.

All models are frozen: configuration is built once at startup and shared
read-only by every concurrent call.
"""

import os
import re
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from ai_relay.llm.endpoints import DEFAULT_ENDPOINT_PRIORITY
from ai_relay.llm.errors import InvalidConfiguration


ConflictBehavior = Literal["error", "warn", "silent"]

_ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')

M = TypeVar('M', bound=BaseModel)


def resolve_env_vars(value: str) -> str:
    """Expand ${VAR} references; unset variables become empty strings."""
    return _ENV_VAR_PATTERN.sub(lambda m: os.getenv(m.group(1), ''), value)


class ConfigModel(BaseModel):
    """Frozen base model whose direct construction also fails with InvalidConfiguration."""

    model_config = {"frozen": True}

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise _invalid_configuration(type(self), e) from e


class RetryConfig(ConfigModel):
    """Retry/backoff policy for transient failures (network, 429, 5xx)."""
    enabled: bool = Field(True, description="Whether transient failures are retried")
    max_attempts: int = Field(3, ge=1, description="Total attempts including the first")
    initial_delay: float = Field(0.5, ge=0, description="Delay before the first retry (seconds)")
    backoff_multiplier: float = Field(2.0, ge=1.0, description="Growth factor per attempt")
    max_delay: float = Field(8.0, ge=0, description="Upper bound for any single delay (seconds)")
    jitter: bool = Field(True, description="Randomize delays into [delay/2, delay]")


class RoutingConfig(ConfigModel):
    """Endpoint routing priority and conflict validation."""
    endpoint_priority: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ENDPOINT_PRIORITY),
        description="Endpoints in first-match-wins order"
    )
    validate_conflicts: bool = Field(True, description="Scan the priority list for ambiguity at startup")
    conflict_behavior: ConflictBehavior = Field("error", description="error | warn | silent")
    validate_endpoint_names: bool = Field(True, description="Reject names missing from the catalog")

    @field_validator('endpoint_priority', mode='before')
    @classmethod
    def default_when_empty(cls, v: Any) -> Any:
        if v is None or v == [] or v == '':
            return list(DEFAULT_ENDPOINT_PRIORITY)
        if isinstance(v, str):
            return [name.strip() for name in v.split(',') if name.strip()]
        return v

    @field_validator('endpoint_priority')
    @classmethod
    def no_duplicates(cls, v: List[str]) -> List[str]:
        seen = set()
        duplicates = [name for name in v if name in seen or seen.add(name)]
        if duplicates:
            raise ValueError(f"duplicate endpoints in priority list: {', '.join(duplicates)}")
        return v


class ResponsesConfig(ConfigModel):
    """Non-streaming call settings."""
    timeout: float = Field(120.0, gt=0, description="Per-attempt timeout for non-streaming calls (seconds)")
    idempotency_enabled: bool = Field(True, description="Attach Idempotency-Key to create calls")
    idempotency_bucket: int = Field(60, ge=1, description="Time bucket for deterministic keys (seconds)")
    retry: RetryConfig = Field(default_factory=RetryConfig)


class StreamingConfig(ConfigModel):
    sse_timeout: Optional[float] = Field(
        120.0,
        gt=0,
        description="Per-attempt timeout for streaming calls; falls back to responses.timeout"
    )


class ConnectionPoolConfig(ConfigModel):
    pool_connections: int = Field(1, ge=1)
    pool_maxsize: int = Field(1, ge=1)


class ClientConfig(ConfigModel):
    """
    Top-level client configuration.

    Stored at: config.yaml (see ClientConfigManager)
    """
    api_key: str = Field("${AI_API_KEY}", description="Bearer token (can use ${ENV_VAR} syntax)")
    base_url: str = Field("https://api.openai.com", description="API origin")
    base_path: str = Field("/v1", description="Prefix for relative paths")
    default_headers: Dict[str, str] = Field(default_factory=dict)
    responses: ResponsesConfig = Field(default_factory=ResponsesConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    connection_pool: ConnectionPoolConfig = Field(default_factory=ConnectionPoolConfig)

    @field_validator('base_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip('/')

    def resolve_api_key(self) -> str:
        return resolve_env_vars(self.api_key).strip()

    @property
    def base_timeout(self) -> float:
        return self.responses.timeout

    @property
    def sse_timeout(self) -> float:
        if self.streaming.sse_timeout is not None:
            return self.streaming.sse_timeout
        return self.responses.timeout


def _invalid_configuration(model: Type[BaseModel], error: ValidationError) -> InvalidConfiguration:
    problems = "\n".join(
        f"- {'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}"
        for err in error.errors()
    )
    return InvalidConfiguration(problems, subject=f"{model.__name__} configuration")


def parse_config(model: Type[M], data: Optional[Dict[str, Any]]) -> M:
    """Validate a mapping into `model`, surfacing failures as InvalidConfiguration."""
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        raise _invalid_configuration(model, e) from e
