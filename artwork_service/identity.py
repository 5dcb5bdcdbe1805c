"""
Session key derivation for admission control.

A session key identifies one client for the purposes of the admission
controller.  It combines the connection's remote address with the
``User-Agent`` header, then strips every character outside
``[A-Za-z0-9-]`` so the key is safe to log and to use as a map key.
"""

import re

import fastapi

UNKNOWN_CLIENT_PART = "unknown"

_DISALLOWED_SESSION_KEY_CHARACTERS = re.compile(r"[^a-zA-Z0-9-]")


def derive_session_key(client_address: str | None, user_agent: str | None) -> str:
    """
    Combine the client address and user agent into a session key.

    Missing parts are replaced by ``"unknown"``.

    >>> derive_session_key("10.0.0.1", "Mozilla/5.0")
    '10001-Mozilla50'
    """
    raw_session_key = f"{client_address or UNKNOWN_CLIENT_PART}-{user_agent or UNKNOWN_CLIENT_PART}"
    return _DISALLOWED_SESSION_KEY_CHARACTERS.sub("", raw_session_key)


def resolve_session_key(request: fastapi.Request) -> str:
    """FastAPI dependency returning the session key of the current request."""
    client_address = request.client.host if request.client is not None else None
    return derive_session_key(client_address, request.headers.get("user-agent"))
