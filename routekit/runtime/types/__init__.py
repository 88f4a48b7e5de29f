"""Route command types package.

Pure data: the command model, the versioned and API response envelopes, and
the id/time helpers shared by the runtime.
"""

from ._ids import ExecutionId, generate_execution_id
from ._time import utc_now
from .commands import (
    COMMAND_TYPES,
    MAX_DECODE_DEPTH,
    Command,
    Conditional,
    Delay,
    DialogAction,
    DialogType,
    NavigateTo,
    Parallel,
    PaymentInfo,
    PaymentMethod,
    ProcessData,
    RequestPayment,
    Scalar,
    Retry,
    Sequence,
    ShowDialog,
    command_from_dict,
    command_to_dict,
    is_command,
    iter_subcommands,
    tree_depth,
)
from .envelope import (
    ApiResponse,
    CommandMetadata,
    RouteCommand,
    VersionedCommand,
    command_type_name,
    format_version,
    is_versioned_payload,
    route_command_from_dict,
    route_command_to_dict,
    versioned_command_from_dict,
    versioned_command_to_dict,
)

__all__ = [
    "ApiResponse",
    "COMMAND_TYPES",
    "Command",
    "CommandMetadata",
    "Conditional",
    "Delay",
    "DialogAction",
    "DialogType",
    "ExecutionId",
    "MAX_DECODE_DEPTH",
    "NavigateTo",
    "Parallel",
    "PaymentInfo",
    "PaymentMethod",
    "ProcessData",
    "RequestPayment",
    "Retry",
    "RouteCommand",
    "Scalar",
    "Sequence",
    "ShowDialog",
    "VersionedCommand",
    "command_from_dict",
    "command_to_dict",
    "command_type_name",
    "format_version",
    "generate_execution_id",
    "is_command",
    "is_versioned_payload",
    "iter_subcommands",
    "route_command_from_dict",
    "route_command_to_dict",
    "tree_depth",
    "utc_now",
    "versioned_command_from_dict",
    "versioned_command_to_dict",
]
