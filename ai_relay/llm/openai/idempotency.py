#!/usr/bin/env python3
import hashlib
import json
import secrets
import time
from typing import Any, Mapping, Optional


IDEMPOTENCY_HEADER = "Idempotency-Key"

# Payload key callers may use to supply their own key; never sent in the body
PAYLOAD_KEY_FIELD = "_idempotency_key"


def generate_idempotency_key() -> str:
    return secrets.token_hex(16)


class IdempotencyKeyBuilder:
    """
    Deterministic keys for callers that want retries across process restarts
    to collapse onto one operation.

    The same payload inside the same time bucket always yields the same key:
        resp_<bucket>_<first 32 hex chars of sha256(sorted JSON | bucket)>
    """

    def build_key(self, payload: Mapping[str, Any], bucket_seconds: int = 60, now: Optional[float] = None) -> str:
        if bucket_seconds < 1:
            raise ValueError("bucket_seconds must be >= 1")

        timestamp = time.time() if now is None else now
        bucket = int(timestamp // bucket_seconds)

        canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'), default=str)
        digest = hashlib.sha256(f"{canonical}|{bucket}".encode('utf-8')).hexdigest()

        return f"resp_{bucket}_{digest[:32]}"
