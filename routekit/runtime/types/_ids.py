"""ID generation for the types package.

Provides execution ID generation plus the ExecutionId alias.
"""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone

# Type aliases
ExecutionId = str

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def generate_execution_id() -> ExecutionId:
    """Generate a unique execution ID.

    Creates IDs in the format: exec-YYYYMMDD-HHMMSS-xxxxxxxx
    where xxxxxxxx is a random 8-character alphanumeric suffix.

    Returns:
        A unique execution identifier string.

    Example:
        >>> execution_id = generate_execution_id()
        >>> execution_id  # e.g., "exec-20251208-143022-abc123de"
    """
    now = datetime.now(timezone.utc)
    timestamp = now.strftime("%Y%m%d-%H%M%S")
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(8))
    return f"exec-{timestamp}-{suffix}"
