"""
Tests for the versioned envelope, ApiResponse and version compatibility.
"""

from __future__ import annotations

import pytest

from conftest import wire

from routekit.runtime.compat import is_compatible, split_version
from routekit.runtime.errors import ProtocolError
from routekit.runtime.types import (
    ApiResponse,
    CommandMetadata,
    NavigateTo,
    VersionedCommand,
    command_type_name,
    format_version,
    is_versioned_payload,
    route_command_from_dict,
    route_command_to_dict,
    versioned_command_from_dict,
    versioned_command_to_dict,
)

ADVANCED_WITH_FALLBACK = {
    "version": 300,
    "command": wire("NavigateTo", path="/advanced"),
    "fallback": {
        "version": 200,
        "command": wire("NavigateTo", path="/basic"),
        "fallback": None,
    },
    "metadata": {"timeout_ms": 5000, "priority": 5, "tags": ["login"]},
}


class TestCompatibility:
    """Tests for is_compatible()."""

    @pytest.mark.parametrize(
        "server,client,expected",
        [
            (200, 200, True),
            (200, 210, True),
            (210, 220, True),
            (210, 200, False),
            (220, 210, False),
            (300, 200, False),
            (200, 300, False),
            (201, 200, True),
            (209, 200, True),
            (100, 199, True),
        ],
    )
    def test_table(self, server, client, expected):
        assert is_compatible(server, client) is expected

    def test_major_mismatch_always_incompatible(self):
        for server in range(0, 1000, 7):
            for client in range(0, 1000, 11):
                if server // 100 != client // 100:
                    assert not is_compatible(server, client)

    def test_split_version(self):
        assert split_version(215) == (2, 1, 5)
        assert format_version(215) == "2.1.5"


class TestVersionedDecoding:
    """Tests for versioned_command_from_dict()."""

    def test_chain_and_metadata(self):
        envelope = versioned_command_from_dict(ADVANCED_WITH_FALLBACK)

        assert envelope.version == 300
        assert envelope.command == NavigateTo(path="/advanced")
        assert envelope.timeout_ms == 5000
        assert envelope.metadata.priority == 5
        assert envelope.metadata.tags == ["login"]
        assert envelope.fallback is not None
        assert envelope.fallback.version == 200
        assert envelope.fallback.metadata is None
        assert envelope.fallback.timeout_ms is None
        assert [e.version for e in envelope.fallback_chain()] == [300, 200]

    def test_route_command_dispatches_on_shape(self):
        assert isinstance(route_command_from_dict(ADVANCED_WITH_FALLBACK), VersionedCommand)
        assert route_command_from_dict(wire("NavigateTo", path="/x")) == NavigateTo(path="/x")

    @pytest.mark.parametrize(
        "mutate,fragment",
        [
            (lambda d: d.update(version="3.0"), "'version' must be an integer"),
            (lambda d: d.update(version=True), "'version' must be an integer"),
            (lambda d: d["metadata"].update(priority=11), "priority"),
            (lambda d: d["metadata"].update(timeout_ms=-5), "timeout_ms"),
            (lambda d: d.update(metadata="fast"), "'metadata' must be an object"),
            (lambda d: d["fallback"].update(command=None), "missing required field 'command'"),
        ],
    )
    def test_rejected(self, mutate, fragment):
        data = {
            **ADVANCED_WITH_FALLBACK,
            "metadata": dict(ADVANCED_WITH_FALLBACK["metadata"]),
            "fallback": dict(ADVANCED_WITH_FALLBACK["fallback"]),
        }
        mutate(data)

        with pytest.raises(ProtocolError) as exc_info:
            versioned_command_from_dict(data)

        assert fragment in str(exc_info.value)

    def test_fallback_error_location(self):
        data = {**ADVANCED_WITH_FALLBACK, "fallback": {"version": 200, "command": wire("Teleport")}}

        with pytest.raises(ProtocolError) as exc_info:
            versioned_command_from_dict(data)

        assert exc_info.value.location == "route_command.fallback.command"

    def test_long_chain_decodes_iteratively(self):
        data = None
        for version in range(200, 200 + 2000):
            data = {"version": version, "command": wire("NavigateTo", path="/"), "fallback": data}

        envelope = versioned_command_from_dict(data)

        assert len(list(envelope.fallback_chain())) == 2000


class TestVersionedEncoding:
    """Tests for versioned_command_to_dict()."""

    def test_wire_shape(self):
        envelope = VersionedCommand(
            version=210,
            command=NavigateTo(path="/new"),
            fallback=VersionedCommand(version=200, command=NavigateTo(path="/old")),
            metadata=CommandMetadata(timeout_ms=100),
        )

        encoded = versioned_command_to_dict(envelope)

        assert encoded == {
            "version": 210,
            "command": wire("NavigateTo", path="/new"),
            "fallback": {
                "version": 200,
                "command": wire("NavigateTo", path="/old"),
                "fallback": None,
            },
            "metadata": {"timeout_ms": 100, "tags": []},
        }

    def test_route_command_to_dict(self):
        assert route_command_to_dict(NavigateTo(path="/x")) == wire("NavigateTo", path="/x")


class TestHelpers:
    """Tests for payload inspection helpers."""

    def test_is_versioned_payload(self):
        assert is_versioned_payload(ADVANCED_WITH_FALLBACK)
        assert not is_versioned_payload(wire("NavigateTo", path="/"))
        assert not is_versioned_payload(None)

    def test_command_type_name(self):
        assert command_type_name(NavigateTo(path="/")) == "NavigateTo"
        assert command_type_name(ADVANCED_WITH_FALLBACK) == "NavigateTo"
        assert command_type_name(wire("Teleport")) == "Teleport"
        assert command_type_name(versioned_command_from_dict(ADVANCED_WITH_FALLBACK)) == "NavigateTo"
        assert command_type_name(42) == "unknown"


class TestApiResponse:
    """Tests for the response envelope."""

    def test_success_with_route_command(self):
        envelope = VersionedCommand(version=200, command=NavigateTo(path="/home"))
        response = ApiResponse.success(data={"id": 1}, route_command=envelope)

        assert response.code == 200
        assert response.message == "success"
        assert response.route_command["version"] == 200
        assert response.parsed_route_command() == envelope

    def test_ok_without_command(self):
        response = ApiResponse.ok()

        assert response.message == "ok"
        assert response.route_command is None
        assert response.parsed_route_command() is None

    def test_error(self):
        response = ApiResponse.error("not found", code=404)

        assert response.code == 404
        assert response.message == "not found"
        assert response.data is None

    def test_from_wire(self):
        response = ApiResponse.model_validate(
            {"code": 200, "message": "success", "data": None, "route_command": ADVANCED_WITH_FALLBACK}
        )

        parsed = response.parsed_route_command()
        assert isinstance(parsed, VersionedCommand)
        assert parsed.fallback.command == NavigateTo(path="/basic")

    def test_malformed_route_command(self):
        response = ApiResponse(route_command=wire("Teleport"))

        with pytest.raises(ProtocolError):
            response.parsed_route_command()
