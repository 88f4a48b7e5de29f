"""Error taxonomy for route command execution.

Every failure the engine surfaces to callers is a RouteCommandError subclass:

- ProtocolError: malformed command tree, unknown tag, depth or fallback caps exceeded
- VersionError: incompatible version with no usable fallback
- CommandTimeoutError: metadata timeout_ms elapsed before the command finished
- CapabilityError: a navigate/dialog/mutate/payment call failed
- ConditionError: a Conditional expression could not be evaluated (never
  propagates past the Conditional handler)
- CompositeCommandError: several members of a Sequence or Parallel failed
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class RouteCommandError(Exception):
    """Base exception for route command failures.

    Attributes:
        user_notified: True once a user-visible notice has been shown for this
            error, so the top-level boundary does not show a second one.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.user_notified = False


class ProtocolError(RouteCommandError):
    """Raised when a command tree violates the wire contract."""

    def __init__(self, message: str, *, location: Optional[str] = None) -> None:
        self.location = location
        self.detail = message
        if location:
            message = f"{location}: {message}"
        super().__init__(message)


class VersionError(RouteCommandError):
    """Raised when no envelope in a fallback chain is compatible with the client."""

    def __init__(self, server_version: int, client_version: int) -> None:
        self.server_version = server_version
        self.client_version = client_version
        super().__init__(
            f"Unsupported route command version: {server_version} "
            f"(client supports {client_version})"
        )


class CommandTimeoutError(RouteCommandError):
    """Raised when a versioned command exceeds its metadata timeout."""

    def __init__(self, timeout_ms: int, command_type: str = "unknown") -> None:
        self.timeout_ms = timeout_ms
        self.command_type = command_type
        super().__init__(f"{command_type} did not complete within {timeout_ms}ms")


class CapabilityError(RouteCommandError):
    """Raised when an underlying capability call fails."""

    def __init__(self, capability: str, detail: str) -> None:
        self.capability = capability
        super().__init__(f"{capability} failed: {detail}")


class ConditionError(RouteCommandError):
    """Raised internally when a condition expression cannot be evaluated."""

    def __init__(self, expression: str, detail: str) -> None:
        self.expression = expression
        self.detail = detail
        super().__init__(f"Cannot evaluate condition {expression!r}: {detail}")


class CompositeCommandError(RouteCommandError):
    """Raised when one or more members of a composite command failed."""

    def __init__(self, command_type: str, errors: Sequence[BaseException]) -> None:
        self.command_type = command_type
        self.errors: List[BaseException] = list(errors)
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{command_type}: {len(self.errors)} member(s) failed: {details}")
