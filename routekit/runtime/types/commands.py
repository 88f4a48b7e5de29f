"""Route command data model.

A route command is a small declarative program the server returns alongside
ordinary response data. This module defines the closed set of command kinds
as dataclasses and the wire codec for them.

Wire shape of every command:

    {"type": "<tag>", "payload": {...tag-specific fields...}}

Tags: NavigateTo, ShowDialog, ProcessData, Sequence, Parallel, Retry, Delay,
Conditional, RequestPayment.

The model is pure data with no behaviour; interpretation lives in
routekit.runtime.engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Type,
    Union,
)

from routekit.runtime.errors import ProtocolError

# Hard ceiling on nesting accepted by the decoder. The engine applies its own
# (lower) configured cap at execution time.
MAX_DECODE_DEPTH = 64

Scalar = Union[str, int, float, bool, None]


class DialogType(str, Enum):
    """Kinds of dialog a ShowDialog command can present."""

    ALERT = "Alert"
    CONFIRM = "Confirm"
    TOAST = "Toast"


class PaymentMethod(str, Enum):
    """Payment rails a RequestPayment command can target."""

    WECHAT = "wechat"
    ALIPAY = "alipay"
    CARD = "card"


# =============================================================================
# Command Variants
# =============================================================================


@dataclass
class NavigateTo:
    """Navigate to a path, optionally replacing the current page.

    Attributes:
        path: Target path.
        params: Query parameters, serialized in insertion order.
        replace: Replace the current page instead of pushing a new one.
        fallback_path: Path tried once if navigating to `path` fails.
    """

    TYPE: ClassVar[str] = "NavigateTo"

    path: str
    params: Optional[Dict[str, Scalar]] = None
    replace: bool = False
    fallback_path: Optional[str] = None


@dataclass
class DialogAction:
    """A dialog button with an optional command to run when chosen."""

    text: str
    action: Optional["Command"] = None


@dataclass
class ShowDialog:
    """Present an alert, a confirm dialog or a toast."""

    TYPE: ClassVar[str] = "ShowDialog"

    dialog_type: DialogType
    title: str = ""
    content: str = ""
    actions: List[DialogAction] = field(default_factory=list)


@dataclass
class ProcessData:
    """Mutate client state for a data kind.

    `data is None` clears the kind; otherwise `merge` selects a shallow merge
    over a full replace.
    """

    TYPE: ClassVar[str] = "ProcessData"

    data_type: str
    data: Any = None
    merge: bool = False


@dataclass
class Sequence:
    """Run commands strictly in order."""

    TYPE: ClassVar[str] = "Sequence"

    commands: List["Command"] = field(default_factory=list)
    stop_on_error: bool = True


@dataclass
class Parallel:
    """Run commands concurrently, joined or fire-and-forget."""

    TYPE: ClassVar[str] = "Parallel"

    commands: List["Command"] = field(default_factory=list)
    wait_for_all: bool = True


@dataclass
class Retry:
    """Attempt a command up to max_attempts times with exponential backoff."""

    TYPE: ClassVar[str] = "Retry"

    command: "Command"
    max_attempts: int = 3
    delay_ms: int = 0


@dataclass
class Delay:
    """Wait duration_ms, then run the embedded command."""

    TYPE: ClassVar[str] = "Delay"

    duration_ms: int
    command: "Command"


@dataclass
class Conditional:
    """Branch on a boolean expression evaluated against client state."""

    TYPE: ClassVar[str] = "Conditional"

    condition: str
    if_true: Optional["Command"] = None
    if_false: Optional["Command"] = None


@dataclass
class PaymentInfo:
    """Order details handed to the payment capability."""

    order_id: str
    amount: int  # minor currency units
    currency: str
    description: str
    payment_method: PaymentMethod


@dataclass
class RequestPayment:
    """Ask the host to start a payment flow."""

    TYPE: ClassVar[str] = "RequestPayment"

    payment_info: PaymentInfo
    callback_url: str


Command = Union[
    NavigateTo,
    ShowDialog,
    ProcessData,
    Sequence,
    Parallel,
    Retry,
    Delay,
    Conditional,
    RequestPayment,
]

COMMAND_TYPES: Dict[str, Type[Any]] = {
    cls.TYPE: cls
    for cls in (
        NavigateTo,
        ShowDialog,
        ProcessData,
        Sequence,
        Parallel,
        Retry,
        Delay,
        Conditional,
        RequestPayment,
    )
}


def is_command(value: Any) -> bool:
    """Return True if value is an instance of one of the command variants."""
    return type(value) in COMMAND_TYPES.values()


def iter_subcommands(command: Command) -> Iterator[Command]:
    """Yield the direct children of a command, in declaration order."""
    if isinstance(command, (Sequence, Parallel)):
        yield from command.commands
    elif isinstance(command, (Retry, Delay)):
        yield command.command
    elif isinstance(command, Conditional):
        if command.if_true is not None:
            yield command.if_true
        if command.if_false is not None:
            yield command.if_false
    elif isinstance(command, ShowDialog):
        for action in command.actions:
            if action.action is not None:
                yield action.action


def tree_depth(command: Command) -> int:
    """Depth of a command tree; a leaf has depth 1."""
    children = list(iter_subcommands(command))
    if not children:
        return 1
    return 1 + max(tree_depth(child) for child in children)


# =============================================================================
# Decoding
# =============================================================================


def _field(payload: Mapping[str, Any], key: str, location: str) -> Any:
    if key not in payload or payload[key] is None:
        raise ProtocolError(f"missing required field '{key}'", location=location)
    return payload[key]


def _as_str(value: Any, key: str, location: str) -> str:
    if not isinstance(value, str):
        raise ProtocolError(f"'{key}' must be a string", location=location)
    return value


def _as_int(value: Any, key: str, location: str, minimum: Optional[int] = None) -> int:
    # bool is an int subclass; the wire contract does not treat it as one
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolError(f"'{key}' must be an integer", location=location)
    if minimum is not None and value < minimum:
        raise ProtocolError(f"'{key}' must be >= {minimum}, got {value}", location=location)
    return value


def _as_bool(payload: Mapping[str, Any], key: str, location: str, default: bool) -> bool:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ProtocolError(f"'{key}' must be a boolean", location=location)
    return value


def _optional_str(payload: Mapping[str, Any], key: str, location: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    return _as_str(value, key, location)


def _decode(data: Any, location: str, depth: int, max_depth: int) -> Command:
    if depth > max_depth:
        raise ProtocolError(f"command nesting exceeds {max_depth} levels", location=location)
    if not isinstance(data, Mapping):
        raise ProtocolError("command must be an object", location=location)

    tag = data.get("type")
    if not isinstance(tag, str):
        raise ProtocolError("command is missing its 'type' tag", location=location)

    decoder = _DECODERS.get(tag)
    if decoder is None:
        raise ProtocolError(f"unknown command type {tag!r}", location=location)

    payload = data.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ProtocolError("'payload' must be an object", location=location)

    return decoder(payload, f"{location}.payload", depth, max_depth)


def _decode_child(data: Any, location: str, depth: int, max_depth: int) -> Command:
    return _decode(data, location, depth + 1, max_depth)


def _decode_optional_child(
    payload: Mapping[str, Any], key: str, location: str, depth: int, max_depth: int
) -> Optional[Command]:
    value = payload.get(key)
    if value is None:
        return None
    return _decode_child(value, f"{location}.{key}", depth, max_depth)


def _decode_command_list(
    payload: Mapping[str, Any], location: str, depth: int, max_depth: int
) -> List[Command]:
    commands = payload.get("commands")
    if commands is None:
        commands = []
    if not isinstance(commands, list):
        raise ProtocolError("'commands' must be a list", location=location)
    return [
        _decode_child(item, f"{location}.commands[{index}]", depth, max_depth)
        for index, item in enumerate(commands)
    ]


def _decode_navigate_to(payload: Mapping[str, Any], location: str, depth: int, max_depth: int) -> NavigateTo:
    params = payload.get("params")
    if params is not None:
        if not isinstance(params, Mapping):
            raise ProtocolError("'params' must be an object", location=location)
        for key, value in params.items():
            if not isinstance(value, (str, int, float, bool)) and value is not None:
                raise ProtocolError(
                    f"param '{key}' must be a scalar, got {type(value).__name__}",
                    location=location,
                )
        params = dict(params)

    return NavigateTo(
        path=_as_str(_field(payload, "path", location), "path", location),
        params=params,
        replace=_as_bool(payload, "replace", location, False),
        fallback_path=_optional_str(payload, "fallback_path", location),
    )


def _decode_show_dialog(payload: Mapping[str, Any], location: str, depth: int, max_depth: int) -> ShowDialog:
    raw_type = _as_str(_field(payload, "dialog_type", location), "dialog_type", location)
    try:
        dialog_type = DialogType(raw_type)
    except ValueError:
        raise ProtocolError(f"unknown dialog type {raw_type!r}", location=location) from None

    raw_actions = payload.get("actions")
    if raw_actions is None:
        raw_actions = []
    if not isinstance(raw_actions, list):
        raise ProtocolError("'actions' must be a list", location=location)

    actions: List[DialogAction] = []
    for index, raw in enumerate(raw_actions):
        action_loc = f"{location}.actions[{index}]"
        if not isinstance(raw, Mapping):
            raise ProtocolError("dialog action must be an object", location=action_loc)
        actions.append(
            DialogAction(
                text=_as_str(raw.get("text", ""), "text", action_loc),
                action=_decode_optional_child(raw, "action", action_loc, depth, max_depth),
            )
        )

    return ShowDialog(
        dialog_type=dialog_type,
        title=_optional_str(payload, "title", location) or "",
        content=_optional_str(payload, "content", location) or "",
        actions=actions,
    )


def _decode_process_data(payload: Mapping[str, Any], location: str, depth: int, max_depth: int) -> ProcessData:
    return ProcessData(
        data_type=_as_str(_field(payload, "data_type", location), "data_type", location),
        data=payload.get("data"),
        merge=_as_bool(payload, "merge", location, False),
    )


def _decode_sequence(payload: Mapping[str, Any], location: str, depth: int, max_depth: int) -> Sequence:
    return Sequence(
        commands=_decode_command_list(payload, location, depth, max_depth),
        stop_on_error=_as_bool(payload, "stop_on_error", location, True),
    )


def _decode_parallel(payload: Mapping[str, Any], location: str, depth: int, max_depth: int) -> Parallel:
    return Parallel(
        commands=_decode_command_list(payload, location, depth, max_depth),
        wait_for_all=_as_bool(payload, "wait_for_all", location, True),
    )


def _decode_retry(payload: Mapping[str, Any], location: str, depth: int, max_depth: int) -> Retry:
    return Retry(
        command=_decode_child(_field(payload, "command", location), f"{location}.command", depth, max_depth),
        max_attempts=_as_int(_field(payload, "max_attempts", location), "max_attempts", location, 1),
        delay_ms=_as_int(payload.get("delay_ms", 0), "delay_ms", location, 0),
    )


def _decode_delay(payload: Mapping[str, Any], location: str, depth: int, max_depth: int) -> Delay:
    return Delay(
        duration_ms=_as_int(_field(payload, "duration_ms", location), "duration_ms", location, 0),
        command=_decode_child(_field(payload, "command", location), f"{location}.command", depth, max_depth),
    )


def _decode_conditional(payload: Mapping[str, Any], location: str, depth: int, max_depth: int) -> Conditional:
    return Conditional(
        condition=_as_str(_field(payload, "condition", location), "condition", location),
        if_true=_decode_optional_child(payload, "if_true", location, depth, max_depth),
        if_false=_decode_optional_child(payload, "if_false", location, depth, max_depth),
    )


def _decode_request_payment(
    payload: Mapping[str, Any], location: str, depth: int, max_depth: int
) -> RequestPayment:
    info_loc = f"{location}.payment_info"
    info = _field(payload, "payment_info", location)
    if not isinstance(info, Mapping):
        raise ProtocolError("'payment_info' must be an object", location=location)

    raw_method = _as_str(_field(info, "payment_method", info_loc), "payment_method", info_loc)
    try:
        method = PaymentMethod(raw_method)
    except ValueError:
        raise ProtocolError(f"unsupported payment method {raw_method!r}", location=info_loc) from None

    return RequestPayment(
        payment_info=PaymentInfo(
            order_id=_as_str(_field(info, "order_id", info_loc), "order_id", info_loc),
            amount=_as_int(_field(info, "amount", info_loc), "amount", info_loc, 0),
            currency=_as_str(_field(info, "currency", info_loc), "currency", info_loc),
            description=_as_str(info.get("description", ""), "description", info_loc),
            payment_method=method,
        ),
        callback_url=_as_str(_field(payload, "callback_url", location), "callback_url", location),
    )


_DECODERS: Dict[str, Callable[[Mapping[str, Any], str, int, int], Command]] = {
    NavigateTo.TYPE: _decode_navigate_to,
    ShowDialog.TYPE: _decode_show_dialog,
    ProcessData.TYPE: _decode_process_data,
    Sequence.TYPE: _decode_sequence,
    Parallel.TYPE: _decode_parallel,
    Retry.TYPE: _decode_retry,
    Delay.TYPE: _decode_delay,
    Conditional.TYPE: _decode_conditional,
    RequestPayment.TYPE: _decode_request_payment,
}


def command_from_dict(
    data: Any,
    *,
    max_depth: int = MAX_DECODE_DEPTH,
    location: str = "command",
) -> Command:
    """Decode a command tree from its wire shape.

    Args:
        data: Parsed JSON object of the form {"type": ..., "payload": ...}.
        max_depth: Maximum nesting accepted before the tree is rejected.
        location: Path prefix used in error messages.

    Returns:
        The decoded command.

    Raises:
        ProtocolError: If the tree is malformed, uses an unknown tag, or nests
            deeper than max_depth.
    """
    return _decode(data, location, 0, max_depth)


# =============================================================================
# Encoding
# =============================================================================


def _encode_navigate_to(command: NavigateTo) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"path": command.path}
    if command.params is not None:
        payload["params"] = dict(command.params)
    if command.replace:
        payload["replace"] = True
    if command.fallback_path is not None:
        payload["fallback_path"] = command.fallback_path
    return payload


def _encode_show_dialog(command: ShowDialog) -> Dict[str, Any]:
    actions = []
    for action in command.actions:
        entry: Dict[str, Any] = {"text": action.text}
        if action.action is not None:
            entry["action"] = command_to_dict(action.action)
        actions.append(entry)
    return {
        "dialog_type": command.dialog_type.value,
        "title": command.title,
        "content": command.content,
        "actions": actions,
    }


def _encode_process_data(command: ProcessData) -> Dict[str, Any]:
    return {"data_type": command.data_type, "data": command.data, "merge": command.merge}


def _encode_sequence(command: Sequence) -> Dict[str, Any]:
    return {
        "commands": [command_to_dict(c) for c in command.commands],
        "stop_on_error": command.stop_on_error,
    }


def _encode_parallel(command: Parallel) -> Dict[str, Any]:
    return {
        "commands": [command_to_dict(c) for c in command.commands],
        "wait_for_all": command.wait_for_all,
    }


def _encode_retry(command: Retry) -> Dict[str, Any]:
    return {
        "command": command_to_dict(command.command),
        "max_attempts": command.max_attempts,
        "delay_ms": command.delay_ms,
    }


def _encode_delay(command: Delay) -> Dict[str, Any]:
    return {"duration_ms": command.duration_ms, "command": command_to_dict(command.command)}


def _encode_conditional(command: Conditional) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"condition": command.condition}
    if command.if_true is not None:
        payload["if_true"] = command_to_dict(command.if_true)
    if command.if_false is not None:
        payload["if_false"] = command_to_dict(command.if_false)
    return payload


def _encode_request_payment(command: RequestPayment) -> Dict[str, Any]:
    info = command.payment_info
    return {
        "payment_info": {
            "order_id": info.order_id,
            "amount": info.amount,
            "currency": info.currency,
            "description": info.description,
            "payment_method": info.payment_method.value,
        },
        "callback_url": command.callback_url,
    }


_ENCODERS: Dict[Type[Any], Callable[[Any], Dict[str, Any]]] = {
    NavigateTo: _encode_navigate_to,
    ShowDialog: _encode_show_dialog,
    ProcessData: _encode_process_data,
    Sequence: _encode_sequence,
    Parallel: _encode_parallel,
    Retry: _encode_retry,
    Delay: _encode_delay,
    Conditional: _encode_conditional,
    RequestPayment: _encode_request_payment,
}


def command_to_dict(command: Command) -> Dict[str, Any]:
    """Encode a command tree to its wire shape."""
    encoder = _ENCODERS.get(type(command))
    if encoder is None:
        raise ProtocolError(f"cannot encode {type(command).__name__} as a route command")
    return {"type": command.TYPE, "payload": encoder(command)}
