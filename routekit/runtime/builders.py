"""Construction helpers for building route commands on the server side.

Usage:
    from routekit.runtime import builders as rc

    command = rc.sequence([
        rc.process_data("user", {"id": 1, "nickname": "amy"}),
        rc.toast("Welcome back"),
        rc.redirect_to("/pages/home/home"),
    ])
    envelope = rc.versioned(command, fallback=rc.versioned(rc.navigate_to("/home"), 200))
    response = ApiResponse.success(data=user, route_command=envelope)
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from routekit.config.runtime_config import get_supported_version
from routekit.runtime.types import (
    Command,
    CommandMetadata,
    Conditional,
    Delay,
    DialogAction,
    DialogType,
    NavigateTo,
    Parallel,
    PaymentInfo,
    ProcessData,
    RequestPayment,
    Retry,
    Scalar,
    Sequence,
    ShowDialog,
    VersionedCommand,
)


def navigate_to(
    path: str,
    params: Optional[Dict[str, Scalar]] = None,
    *,
    fallback_path: Optional[str] = None,
) -> NavigateTo:
    """Push a new page."""
    return NavigateTo(path=path, params=params, replace=False, fallback_path=fallback_path)


def redirect_to(path: str) -> NavigateTo:
    """Replace the current page."""
    return NavigateTo(path=path, replace=True)


def alert(title: str, content: str) -> ShowDialog:
    return ShowDialog(dialog_type=DialogType.ALERT, title=title, content=content)


def toast(message: str) -> ShowDialog:
    return ShowDialog(dialog_type=DialogType.TOAST, content=message)


def confirm(
    title: str,
    content: str,
    confirm_action: Optional[Command] = None,
    cancel_action: Optional[Command] = None,
    *,
    confirm_text: str = "OK",
    cancel_text: str = "Cancel",
) -> ShowDialog:
    """Two-button dialog; actions are laid out as [cancel, confirm]."""
    return ShowDialog(
        dialog_type=DialogType.CONFIRM,
        title=title,
        content=content,
        actions=[
            DialogAction(text=cancel_text, action=cancel_action),
            DialogAction(text=confirm_text, action=confirm_action),
        ],
    )


def process_data(data_type: str, data: Any) -> ProcessData:
    """Replace the client state for data_type."""
    return ProcessData(data_type=data_type, data=data, merge=False)


def merge_data(data_type: str, data: Dict[str, Any]) -> ProcessData:
    """Shallow-merge data into the client state for data_type."""
    return ProcessData(data_type=data_type, data=data, merge=True)


def clear_data(data_type: str) -> ProcessData:
    return ProcessData(data_type=data_type, data=None)


def sequence(commands: Iterable[Command], *, stop_on_error: bool = True) -> Sequence:
    return Sequence(commands=list(commands), stop_on_error=stop_on_error)


def parallel(commands: Iterable[Command], *, wait_for_all: bool = True) -> Parallel:
    return Parallel(commands=list(commands), wait_for_all=wait_for_all)


def retry(command: Command, max_attempts: int = 3, delay_ms: int = 1000) -> Retry:
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
    if delay_ms < 0:
        raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
    return Retry(command=command, max_attempts=max_attempts, delay_ms=delay_ms)


def delay(duration_ms: int, command: Command) -> Delay:
    if duration_ms < 0:
        raise ValueError(f"duration_ms must be >= 0, got {duration_ms}")
    return Delay(duration_ms=duration_ms, command=command)


def conditional(
    condition: str,
    if_true: Optional[Command] = None,
    if_false: Optional[Command] = None,
) -> Conditional:
    return Conditional(condition=condition, if_true=if_true, if_false=if_false)


def request_payment(payment_info: PaymentInfo, callback_url: str) -> RequestPayment:
    return RequestPayment(payment_info=payment_info, callback_url=callback_url)


def versioned(
    command: Command,
    version: Optional[int] = None,
    *,
    fallback: Optional[VersionedCommand] = None,
    timeout_ms: Optional[int] = None,
    priority: Optional[int] = None,
    tags: Optional[List[str]] = None,
) -> VersionedCommand:
    """Wrap a command in a versioned envelope.

    Args:
        command: Command tree to run on compatible clients.
        version: Protocol version; defaults to the configured supported version.
        fallback: Envelope for clients that cannot run this version.
        timeout_ms: Optional execution timeout.
        priority: Optional priority, 1-10.
        tags: Optional free-form tags.

    Raises:
        pydantic.ValidationError: If timeout_ms or priority is out of range.
    """
    metadata = None
    if timeout_ms is not None or priority is not None or tags:
        metadata = CommandMetadata(timeout_ms=timeout_ms, priority=priority, tags=list(tags or []))

    return VersionedCommand(
        version=get_supported_version() if version is None else version,
        command=command,
        fallback=fallback,
        metadata=metadata,
    )
