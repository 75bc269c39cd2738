#!/usr/bin/env python3
"""Thread-local HTTP session management."""

import threading
from typing import Optional

import requests

from ai_relay.config.schemas import ConnectionPoolConfig


class ThreadLocalSessionManager:
    """
    One requests.Session per thread.

    Sessions are not shared across threads, so concurrent logical operations
    never contend on a connection pool. Adapter-level retries are disabled;
    RetryPolicy is the only place attempts are repeated.
    """

    def __init__(self, pool_config: Optional[ConnectionPoolConfig] = None):
        self.pool_config = pool_config or ConnectionPoolConfig()
        self._thread_local = threading.local()

    def get_session(self) -> requests.Session:
        if not hasattr(self._thread_local, 'session'):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def close(self):
        session = getattr(self._thread_local, 'session', None)
        if session is not None:
            session.close()
            del self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()

        adapter = requests.adapters.HTTPAdapter(
            pool_connections=self.pool_config.pool_connections,
            pool_maxsize=self.pool_config.pool_maxsize,
            max_retries=0
        )
        session.mount('https://', adapter)
        session.mount('http://', adapter)

        return session
