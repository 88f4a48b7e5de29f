"""Protocol version compatibility checks.

Versions are single integers: MAJOR in the hundreds, MINOR in the tens,
PATCH in the units (210 == 2.1.0). A client can run a command when the
majors match and the client's minor is at least the server's minor; the
patch digit never affects compatibility.
"""

from __future__ import annotations

from typing import Tuple


def split_version(version: int) -> Tuple[int, int, int]:
    """Split an integer version into (major, minor, patch)."""
    return version // 100, (version % 100) // 10, version % 10


def is_compatible(server_version: int, client_version: int) -> bool:
    """Return True if a client at client_version can run server_version commands.

    Pure and total: any integer input goes through the same arithmetic, so
    out-of-range values simply come out incompatible when their majors differ.

    Example:
        >>> is_compatible(210, 220)
        True
        >>> is_compatible(220, 210)
        False
        >>> is_compatible(300, 200)
        False
    """
    server_major, server_minor, _ = split_version(server_version)
    client_major, client_minor, _ = split_version(client_version)
    if server_major != client_major:
        return False
    return client_minor >= server_minor
