# routekit/runtime package
# Client-side execution of server-driven route commands.
#
# Core components:
#   - types: Command model, versioned envelope, ApiResponse
#   - compat: Protocol version compatibility
#   - conditions: Sandboxed condition expressions for Conditional commands
#   - capabilities: Abstract host surface (navigate, dialogs, state, payment)
#   - engine: ExecutionEngine, the command interpreter
#   - telemetry: Execution records, stats and sinks
#   - builders: Server-side construction helpers
#
# Usage:
#     from routekit.runtime import ExecutionEngine, route_command_from_dict
#     engine = ExecutionEngine(capabilities)
#     await engine.execute(route_command_from_dict(payload))
#     stats = engine.telemetry.get_stats()

from .capabilities import CapabilitySurface, InMemoryStateStore, UserChoice
from .compat import is_compatible, split_version
from .conditions import ConditionContext, ConditionEvaluator
from .engine import ExecutionEngine, build_navigation_url
from .errors import (
    CapabilityError,
    CommandTimeoutError,
    CompositeCommandError,
    ConditionError,
    ProtocolError,
    RouteCommandError,
    VersionError,
)
from .telemetry import (
    ExecutionRecord,
    ExecutionStats,
    ExecutionTelemetry,
    FallbackEvent,
    JsonlTelemetrySink,
    LoggingTelemetrySink,
    TelemetrySink,
)
from .types import (
    ApiResponse,
    Command,
    CommandMetadata,
    RouteCommand,
    VersionedCommand,
    command_from_dict,
    command_to_dict,
    route_command_from_dict,
    route_command_to_dict,
)

__all__ = [
    # Types
    "ApiResponse",
    "Command",
    "CommandMetadata",
    "RouteCommand",
    "VersionedCommand",
    "command_from_dict",
    "command_to_dict",
    "route_command_from_dict",
    "route_command_to_dict",
    # Compatibility and conditions
    "is_compatible",
    "split_version",
    "ConditionContext",
    "ConditionEvaluator",
    # Capabilities
    "CapabilitySurface",
    "InMemoryStateStore",
    "UserChoice",
    # Engine
    "ExecutionEngine",
    "build_navigation_url",
    # Telemetry
    "ExecutionRecord",
    "ExecutionStats",
    "ExecutionTelemetry",
    "FallbackEvent",
    "JsonlTelemetrySink",
    "LoggingTelemetrySink",
    "TelemetrySink",
    # Errors
    "RouteCommandError",
    "ProtocolError",
    "VersionError",
    "CommandTimeoutError",
    "CapabilityError",
    "ConditionError",
    "CompositeCommandError",
]
