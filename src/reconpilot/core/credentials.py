"""Credential lookup for API-backed tools."""

from __future__ import annotations

import os
from typing import Mapping, Optional, Protocol, runtime_checkable


@runtime_checkable
class CredentialStore(Protocol):
    """Per-user secret lookup. Returns None when the user has no key."""

    def get(self, user_id: str, service: str) -> Optional[str]: ...


class InMemoryCredentialStore:
    def __init__(self, keys: Optional[Mapping[tuple[str, str], str]] = None):
        self._keys: dict[tuple[str, str], str] = dict(keys or {})

    def put(self, user_id: str, service: str, secret: str) -> None:
        self._keys[(user_id, service.lower())] = secret

    def delete(self, user_id: str, service: str) -> bool:
        return self._keys.pop((user_id, service.lower()), None) is not None

    def get(self, user_id: str, service: str) -> Optional[str]:
        return self._keys.get((user_id, service.lower()))


class DeveloperKeys:
    """Shared keys read from the environment, used as a paid-plan fallback."""

    def __init__(self, env_vars: Mapping[str, str]):
        self._env_vars = {service.lower(): var for service, var in env_vars.items()}

    def get(self, service: str) -> Optional[str]:
        var = self._env_vars.get(service.lower())
        if not var:
            return None
        return os.environ.get(var) or None


def resolve_credential(
    service: str,
    supplied: Optional[Mapping[str, str]] = None,
    user_id: Optional[str] = None,
    store: Optional[CredentialStore] = None,
    developer_keys: Optional[DeveloperKeys] = None,
    allow_fallback: bool = False,
) -> tuple[Optional[str], Optional[str]]:
    """Find the key to use for ``service``.

    Returns ``(secret, source)`` where source is "user" for a requester key
    (supplied with the request or stored for the user) and "developer" for the
    shared fallback key. ``(None, None)`` when nothing is usable.
    """
    if supplied and supplied.get(service):
        return supplied[service], "user"
    if store is not None and user_id:
        stored = store.get(user_id, service)
        if stored:
            return stored, "user"
    if allow_fallback and developer_keys is not None:
        shared = developer_keys.get(service)
        if shared:
            return shared, "developer"
    return None, None
