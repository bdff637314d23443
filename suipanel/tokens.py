"""API tokens kept in memory for request authentication."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass

from . import logger


@dataclass
class TokenInMemory:
    token: str = ""
    expiry: int = 0
    username: str = ""


def _field(item: dict, name: str, default):
    for key, value in item.items():
        if key.lower() == name:
            return value
    return default


def _parse_tokens(data) -> list:
    raw = json.loads(data) if isinstance(data, (str, bytes, bytearray)) else data
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("tokens must be a JSON array")
    tokens = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError("each token must be a JSON object")
        token = _field(item, "token", "")
        expiry = _field(item, "expiry", 0)
        username = _field(item, "username", "")
        if not isinstance(token, str) or not isinstance(username, str):
            raise ValueError("token and username must be strings")
        if isinstance(expiry, bool) or not isinstance(expiry, (int, float)):
            raise ValueError("expiry must be a number")
        tokens.append(TokenInMemory(token=token, expiry=int(expiry), username=username))
    return tokens


class TokenStore:
    """Known API tokens; expired ones are dropped as they are met."""

    def __init__(self, tokens=None):
        self._lock = threading.Lock()
        self._tokens: list[TokenInMemory] = list(tokens or [])

    def load(self, data):
        """Replace the tokens with those in a JSON array.

        On invalid data the store is emptied and ValueError is raised.
        """
        try:
            tokens = _parse_tokens(data)
        except ValueError as exc:
            logger.error("unable to load tokens: ", exc)
            with self._lock:
                self._tokens = []
            raise ValueError(f"unable to load tokens: {exc}") from exc
        with self._lock:
            self._tokens = tokens

    def find_username(self, token, now=None) -> str:
        """Return the user owning ``token``, or an empty string."""
        current = int(time.time()) if now is None else now
        with self._lock:
            self._tokens = [t for t in self._tokens if not (0 < t.expiry < current)]
            for entry in self._tokens:
                if entry.token == token:
                    return entry.username
        return ""

    def __len__(self):
        with self._lock:
            return len(self._tokens)