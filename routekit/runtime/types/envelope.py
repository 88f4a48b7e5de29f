"""Versioned command envelope and API response envelope.

A VersionedCommand wraps a command tree with a protocol version, an optional
fallback envelope (used when the client cannot run the primary version) and
execution metadata:

    {
        "version": 210,
        "command": {"type": "NavigateTo", "payload": {"path": "/advanced"}},
        "fallback": {"version": 200, "command": {...}, "fallback": null},
        "metadata": {"timeout_ms": 5000, "priority": 5, "tags": ["login"]}
    }

Versions are single integers read as MAJOR (hundreds), MINOR (tens) and
PATCH (units): 210 == 2.1.0.

ApiResponse is the generic server response that carries a route command next
to the business payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from routekit.runtime.errors import ProtocolError

from .commands import (
    MAX_DECODE_DEPTH,
    Command,
    command_from_dict,
    command_to_dict,
    is_command,
)


class CommandMetadata(BaseModel):
    """Execution hints attached to a versioned command."""

    timeout_ms: Optional[int] = Field(
        default=None,
        ge=0,
        description="Fail the execution if the command has not completed in this many ms",
    )
    priority: Optional[int] = Field(default=None, ge=1, le=10)
    tags: List[str] = Field(default_factory=list)


@dataclass
class VersionedCommand:
    """A command tree tagged with the protocol version it was built for.

    Attributes:
        version: Protocol version the command targets (e.g. 210 == 2.1.0).
        command: The command tree to run when the version is compatible.
        fallback: Envelope to run instead when this one is incompatible.
        metadata: Optional timeout / priority / tags.
    """

    version: int
    command: Command
    fallback: Optional["VersionedCommand"] = None
    metadata: Optional[CommandMetadata] = None

    def fallback_chain(self) -> Iterator["VersionedCommand"]:
        """Yield this envelope followed by each fallback in order."""
        current: Optional[VersionedCommand] = self
        while current is not None:
            yield current
            current = current.fallback

    @property
    def timeout_ms(self) -> Optional[int]:
        return self.metadata.timeout_ms if self.metadata is not None else None


RouteCommand = Union[Command, VersionedCommand]


def format_version(version: int) -> str:
    """Render an integer protocol version as MAJOR.MINOR.PATCH."""
    return f"{version // 100}.{(version % 100) // 10}.{version % 10}"


def is_versioned_payload(data: Any) -> bool:
    """Return True if a raw wire object is a versioned envelope."""
    return isinstance(data, Mapping) and "version" in data and "command" in data


def command_type_name(value: Any) -> str:
    """Best-effort wire tag of a command, envelope or raw wire object."""
    if isinstance(value, VersionedCommand):
        return command_type_name(value.command)
    if is_command(value):
        return value.TYPE
    if isinstance(value, Mapping):
        if is_versioned_payload(value):
            return command_type_name(value.get("command"))
        tag = value.get("type")
        if isinstance(tag, str):
            return tag
    return "unknown"


def _decode_metadata(raw: Any, location: str) -> Optional[CommandMetadata]:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ProtocolError("'metadata' must be an object", location=location)
    try:
        return CommandMetadata.model_validate(dict(raw))
    except ValidationError as err:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in err.errors()
        )
        raise ProtocolError(f"invalid metadata ({problems})", location=location) from None


def _decode_single_envelope(
    data: Any, location: str, max_depth: int
) -> VersionedCommand:
    if not isinstance(data, Mapping):
        raise ProtocolError("versioned command must be an object", location=location)

    version = data.get("version")
    if isinstance(version, bool) or not isinstance(version, int):
        raise ProtocolError("'version' must be an integer", location=location)

    if data.get("command") is None:
        raise ProtocolError("missing required field 'command'", location=location)

    return VersionedCommand(
        version=version,
        command=command_from_dict(
            data["command"], max_depth=max_depth, location=f"{location}.command"
        ),
        metadata=_decode_metadata(data.get("metadata"), f"{location}.metadata"),
    )


def versioned_command_from_dict(
    data: Any, *, max_depth: int = MAX_DECODE_DEPTH
) -> VersionedCommand:
    """Decode a versioned envelope and its whole fallback chain.

    The chain is walked iteratively so an arbitrarily long (finite) chain
    cannot exhaust the interpreter stack; the execution engine enforces its
    own fallback-depth cap.

    Raises:
        ProtocolError: If any envelope in the chain is malformed.
    """
    envelopes: List[VersionedCommand] = []
    raw: Any = data
    location = "route_command"
    while raw is not None:
        envelopes.append(_decode_single_envelope(raw, location, max_depth))
        raw = raw.get("fallback")
        location = f"{location}.fallback"

    for current, following in zip(envelopes, envelopes[1:]):
        current.fallback = following
    return envelopes[0]


def versioned_command_to_dict(envelope: VersionedCommand) -> Dict[str, Any]:
    """Encode a versioned envelope (and its fallback chain) to its wire shape."""
    chain = list(envelope.fallback_chain())
    encoded: Optional[Dict[str, Any]] = None
    for current in reversed(chain):
        entry: Dict[str, Any] = {
            "version": current.version,
            "command": command_to_dict(current.command),
            "fallback": encoded,
        }
        if current.metadata is not None:
            entry["metadata"] = current.metadata.model_dump(exclude_none=True)
        encoded = entry
    assert encoded is not None
    return encoded


def route_command_from_dict(
    data: Any, *, max_depth: int = MAX_DECODE_DEPTH
) -> RouteCommand:
    """Decode either a bare command or a versioned envelope."""
    if is_versioned_payload(data):
        return versioned_command_from_dict(data, max_depth=max_depth)
    return command_from_dict(data, max_depth=max_depth)


def route_command_to_dict(value: RouteCommand) -> Dict[str, Any]:
    if isinstance(value, VersionedCommand):
        return versioned_command_to_dict(value)
    return command_to_dict(value)


# =============================================================================
# API Response Envelope
# =============================================================================


class ApiResponse(BaseModel):
    """Generic server response carrying an optional route command.

    The route command is kept in its raw wire form; use
    parsed_route_command() to decode it.
    """

    code: int = 200
    message: str = "success"
    data: Optional[Any] = None
    route_command: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: Any = None, route_command: Optional[RouteCommand] = None) -> "ApiResponse":
        return cls(
            code=200,
            message="success",
            data=data,
            route_command=route_command_to_dict(route_command) if route_command is not None else None,
        )

    @classmethod
    def ok(cls, route_command: Optional[RouteCommand] = None) -> "ApiResponse":
        return cls(
            code=200,
            message="ok",
            route_command=route_command_to_dict(route_command) if route_command is not None else None,
        )

    @classmethod
    def error(cls, message: str, code: int = 500) -> "ApiResponse":
        return cls(code=code, message=message)

    def parsed_route_command(self, *, max_depth: int = MAX_DECODE_DEPTH) -> Optional[RouteCommand]:
        """Decode the attached route command, if any.

        Raises:
            ProtocolError: If the attached command is malformed.
        """
        if self.route_command is None:
            return None
        return route_command_from_dict(self.route_command, max_depth=max_depth)
