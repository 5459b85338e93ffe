"""Bearer key checks for the review endpoint."""
from __future__ import annotations

import hmac
from typing import Iterable, List


class AuthError(RuntimeError):
    pass


class AuthManager:
    """Accepts any of the configured keys; with no keys configured every caller is accepted."""

    def __init__(self, api_keys: Iterable[str]):
        self._keys: List[str] = list(api_keys)

    @property
    def enabled(self) -> bool:
        return bool(self._keys)

    def authenticate(self, api_key: str | None) -> None:
        if not self._keys:
            return
        if not api_key:
            raise AuthError("Missing API key")
        # Compare against every key so timing does not reveal which one matched.
        matched = False
        for key in self._keys:
            if hmac.compare_digest(key.encode("utf-8"), api_key.encode("utf-8")):
                matched = True
        if not matched:
            raise AuthError("Unknown API key")


def mask_api_key(api_key: str) -> str:
    """Mask an API key for safe logging."""
    if len(api_key) <= 8:
        return "***"
    return f"{api_key[:4]}...{api_key[-4:]}"


__all__ = ["AuthError", "AuthManager", "mask_api_key"]
