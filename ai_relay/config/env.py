"""
Environment-based configuration.

Reads `.env` (via python-dotenv) and AI_* variables into a ClientConfig.
Only variables that are set override the defaults.
"""

import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .schemas import ClientConfig, parse_config


# env var -> (section, key); section None means top level
ENV_MAPPING = {
    'AI_API_KEY': (None, 'api_key'),
    'AI_BASE_URL': (None, 'base_url'),
    'AI_RESPONSES_TIMEOUT': ('responses', 'timeout'),
    'AI_RESPONSES_IDEMPOTENCY': ('responses', 'idempotency_enabled'),
    'AI_RESPONSES_IDEMPOTENCY_BUCKET': ('responses', 'idempotency_bucket'),
    'AI_STREAMING_SSE_TIMEOUT': ('streaming', 'sse_timeout'),
    'AI_ROUTING_ENDPOINT_PRIORITY': ('routing', 'endpoint_priority'),
    'AI_ROUTING_VALIDATE_CONFLICTS': ('routing', 'validate_conflicts'),
    'AI_ROUTING_CONFLICT_BEHAVIOR': ('routing', 'conflict_behavior'),
    'AI_ROUTING_VALIDATE_ENDPOINT_NAMES': ('routing', 'validate_endpoint_names'),
}

RETRY_ENV_MAPPING = {
    'AI_RESPONSES_RETRY_ENABLED': 'enabled',
    'AI_RESPONSES_RETRY_MAX_ATTEMPTS': 'max_attempts',
    'AI_RESPONSES_RETRY_INITIAL_DELAY': 'initial_delay',
    'AI_RESPONSES_RETRY_BACKOFF_MULTIPLIER': 'backoff_multiplier',
    'AI_RESPONSES_RETRY_MAX_DELAY': 'max_delay',
    'AI_RESPONSES_RETRY_JITTER': 'jitter',
}


def _env_overrides(environ) -> Dict[str, Any]:
    data: Dict[str, Any] = {}

    for env_name, (section, key) in ENV_MAPPING.items():
        value = environ.get(env_name)
        if value is None or value == '':
            continue
        if section is None:
            data[key] = value
        else:
            data.setdefault(section, {})[key] = value

    retry = {
        key: environ[env_name]
        for env_name, key in RETRY_ENV_MAPPING.items()
        if environ.get(env_name) not in (None, '')
    }
    if retry:
        data.setdefault('responses', {})['retry'] = retry

    return data


def load_config_from_env(dotenv_path: Optional[str] = None, environ=None) -> ClientConfig:
    """
    Build a ClientConfig from the process environment.

    Args:
        dotenv_path: Explicit .env file (default: search from cwd)
        environ: Mapping to read instead of os.environ (tests)

    Raises:
        InvalidConfiguration: If any value fails validation
    """
    if environ is None:
        load_dotenv(dotenv_path)
        environ = os.environ

    return parse_config(ClientConfig, _env_overrides(environ))
