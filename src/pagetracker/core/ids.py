from __future__ import annotations

import random
import secrets
import string
import uuid

_BASE36 = string.digits + string.ascii_lowercase


def short_random_token(length: int = 9) -> str:
    """
    Non-cryptographic token, like Math.random().toString(36).substr(2, 9).
    """
    return "".join(random.choice(_BASE36) for _ in range(length))


def strong_uuid4(randbytes=secrets.token_bytes) -> str:
    """
    RFC 4122 version-4 identifier from a cryptographically strong source.
    """
    return str(uuid.UUID(bytes=randbytes(16), version=4))


def fallback_visitor_id() -> str:
    # "v_" marks ids minted without a strong random source
    return "v_" + short_random_token()


def new_session_id() -> str:
    return "sess_" + short_random_token()
