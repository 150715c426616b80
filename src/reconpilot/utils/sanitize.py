"""Error message sanitization to prevent credential leakage."""

from __future__ import annotations

import os
import re
from typing import Iterable, Optional


def sanitize_error(message: str, secrets: Optional[Iterable[str]] = None) -> str:
    """Sanitize error messages to prevent API key and path leakage.

    ``secrets`` are literal values (for example the credential that was just
    used for a tool call) that must never appear in the returned text.
    """
    if not message:
        return message

    sanitized = message
    for secret in secrets or ():
        if secret and len(secret) >= 4:
            sanitized = sanitized.replace(secret, "[REDACTED_KEY]")

    # Redact API key patterns
    sanitized = re.sub(r"sk-ant-[a-zA-Z0-9_-]+", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"sk-[a-zA-Z0-9_-]{20,}", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"Bearer\s+\S+", "Bearer [REDACTED]", sanitized)
    sanitized = re.sub(r"Basic\s+[A-Za-z0-9+/=]+", "Basic [REDACTED]", sanitized)
    sanitized = re.sub(r"(?i)apikey:\s*\S+", "APIKEY: [REDACTED]", sanitized)
    sanitized = re.sub(r"x-api-key:\s*\S+", "x-api-key: [REDACTED]", sanitized)
    sanitized = re.sub(r"([?&]key=)[^&\s]+", r"\1[REDACTED]", sanitized)

    # Redact user home paths
    home = os.environ.get("USERPROFILE") or os.environ.get("HOME") or ""
    if home and home != "/":
        sanitized = sanitized.replace(home, "[USER_HOME]")

    return sanitized
