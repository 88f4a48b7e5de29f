"""
engine.py - Client-side interpreter for route commands.

ExecutionEngine walks a command tree (optionally wrapped in a versioned
envelope) and drives the host's CapabilitySurface. It is the only place
where route commands acquire behaviour.

Key features:
- Versioned dispatch: compatibility check, fallback chain walk (bounded),
  metadata timeout raced against execution
- Per-kind handlers for every command variant, recursive where a command
  embeds others, with an explicit depth cap
- Failure boundary: one ExecutionRecord per top-level call, a generic
  user-facing notice for unrecovered failures, then re-raise to the caller

Usage:
    from routekit.runtime.engine import ExecutionEngine

    engine = ExecutionEngine(capabilities, context_provider=store.condition_context)

    try:
        await engine.execute(response.route_command)
    except RouteCommandError:
        ...  # business flow reacts; the user already saw a generic notice

    stats = engine.telemetry.get_stats()
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
import time
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Set,
    Type,
)
from urllib.parse import quote

from routekit.config.runtime_config import EngineConfig, load_engine_config
from routekit.runtime.capabilities import CapabilitySurface, UserChoice
from routekit.runtime.compat import is_compatible
from routekit.runtime.conditions import ConditionContext, ConditionEvaluator
from routekit.runtime.errors import (
    CapabilityError,
    CommandTimeoutError,
    CompositeCommandError,
    ProtocolError,
    RouteCommandError,
    VersionError,
)
from routekit.runtime.telemetry import ExecutionTelemetry
from routekit.runtime.types import (
    Command,
    Conditional,
    Delay,
    DialogType,
    NavigateTo,
    Parallel,
    ProcessData,
    RequestPayment,
    Retry,
    RouteCommand,
    Sequence,
    ShowDialog,
    VersionedCommand,
    command_type_name,
    generate_execution_id,
    is_command,
    route_command_from_dict,
    utc_now,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any, int], Awaitable[None]]

# Set while a Retry attempt runs that is not the last one
_retry_pending: contextvars.ContextVar[bool] = contextvars.ContextVar(
    "routekit_retry_pending", default=False
)


def build_navigation_url(path: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Append query parameters to a path, in insertion order.

    Booleans render as true/false, None as an empty value and integral
    floats without a fractional part (1.0 -> "1"), matching how the clients
    stringify numbers. If the path already carries a query string the
    parameters are appended with '&'.

    Example:
        >>> build_navigation_url("/detail", {"id": 7, "tab": "info"})
        '/detail?id=7&tab=info'
    """
    if not params:
        return path

    pairs = []
    for key, value in params.items():
        if value is None:
            rendered = ""
        elif isinstance(value, bool):
            rendered = "true" if value else "false"
        elif isinstance(value, float) and value.is_integer():
            rendered = str(int(value))
        else:
            rendered = str(value)
        pairs.append(f"{quote(str(key), safe='')}={quote(rendered, safe='')}")

    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{'&'.join(pairs)}"


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


class ExecutionEngine:
    """Interprets route commands against an injected CapabilitySurface.

    The engine is single-event-loop: every handler runs on the caller's loop
    and the only shared mutable state is the telemetry buffer and the set of
    detached tasks.
    """

    def __init__(
        self,
        capabilities: CapabilitySurface,
        *,
        telemetry: Optional[ExecutionTelemetry] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        context_provider: Optional[Callable[[], ConditionContext]] = None,
        config: Optional[EngineConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            capabilities: Host implementation of navigation, dialogs, state
                and payment.
            telemetry: Execution history; a fresh one sized from config if omitted.
            evaluator: Condition evaluator for Conditional commands.
            context_provider: Returns the read-only context conditions are
                evaluated against. Called once per Conditional.
            config: Resolved settings; loaded from runtime.yaml and the
                environment if omitted.
            sleep: Coroutine used for Delay and Retry backoff waits
                (seconds). Injectable for tests.
        """
        self._capabilities = capabilities
        self._config = config or load_engine_config()
        self._telemetry = telemetry or ExecutionTelemetry(
            capacity=self._config.history_capacity,
            slow_threshold_ms=self._config.slow_execution_ms,
        )
        self._evaluator = evaluator or ConditionEvaluator()
        self._context_provider = context_provider or ConditionContext
        self._sleep = sleep
        self._detached: Set["asyncio.Task[Any]"] = set()

        self._handlers: Dict[Type[Any], Handler] = {
            NavigateTo: self._handle_navigate_to,
            ShowDialog: self._handle_show_dialog,
            ProcessData: self._handle_process_data,
            Sequence: self._handle_sequence,
            Parallel: self._handle_parallel,
            Retry: self._handle_retry,
            Delay: self._handle_delay,
            Conditional: self._handle_conditional,
            RequestPayment: self._handle_request_payment,
        }

    @property
    def supported_version(self) -> int:
        return self._config.supported_version

    @property
    def telemetry(self) -> ExecutionTelemetry:
        return self._telemetry

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def pending_tasks(self) -> int:
        """Number of detached tasks (fire-and-forget members, timed-out work) still running."""
        return sum(1 for task in self._detached if not task.done())

    async def drain(self) -> None:
        """Wait for every detached task and pending telemetry delivery."""
        while self._detached:
            await asyncio.gather(*list(self._detached), return_exceptions=True)
        await self._telemetry.flush()

    # =========================================================================
    # Top-level boundary
    # =========================================================================

    async def execute(self, command: Any) -> None:
        """Execute a command, a versioned envelope, or either in raw wire form.

        Exactly one ExecutionRecord is written per call. On failure the error
        is recorded, a generic notice is shown to the user (unless a handler
        already showed one) and the error is re-raised.

        Raises:
            RouteCommandError: Any failure, including ProtocolError for
                malformed input and VersionError when no envelope in the
                fallback chain is compatible.
        """
        execution_id = generate_execution_id()
        started_at = utc_now()
        start = time.perf_counter()
        version: Optional[int] = None

        logger.debug("Executing route command %s [%s]", command_type_name(command), execution_id)

        try:
            route = self._coerce(command)
            if isinstance(route, VersionedCommand):
                selected = self._select_envelope(route, execution_id)
                version = selected.version
                await self._run_envelope(selected)
            else:
                await self._dispatch(route, 1)
        except RouteCommandError as err:
            self._telemetry.record_execution(
                execution_id,
                command,
                "error",
                str(err),
                duration_ms=_elapsed_ms(start),
                started_at=started_at,
                version=version,
            )
            logger.error(
                "Route command %s [%s] failed: %s",
                command_type_name(command),
                execution_id,
                err,
            )
            if not err.user_notified:
                await self._notify(self._config.message("generic_failure"))
            raise
        except Exception as err:
            self._telemetry.record_execution(
                execution_id,
                command,
                "error",
                str(err) or type(err).__name__,
                duration_ms=_elapsed_ms(start),
                started_at=started_at,
                version=version,
            )
            logger.exception(
                "Unexpected error executing route command [%s]", execution_id
            )
            await self._notify(self._config.message("generic_failure"))
            raise

        self._telemetry.record_execution(
            execution_id,
            command,
            "success",
            duration_ms=_elapsed_ms(start),
            started_at=started_at,
            version=version,
        )

    def _coerce(self, command: Any) -> RouteCommand:
        if isinstance(command, VersionedCommand) or is_command(command):
            return command
        if isinstance(command, Mapping):
            return route_command_from_dict(command)
        raise ProtocolError(f"unsupported route command input: {type(command).__name__}")

    # =========================================================================
    # Versioned dispatch
    # =========================================================================

    def _select_envelope(
        self, envelope: VersionedCommand, execution_id: str
    ) -> VersionedCommand:
        """Walk the fallback chain to the first envelope this client can run.

        Raises:
            VersionError: An incompatible envelope has no fallback.
            ProtocolError: More than max_fallback_depth hops were needed.
        """
        client_version = self._config.supported_version
        current = envelope
        hops = 0

        while not is_compatible(current.version, client_version):
            fallback = current.fallback
            if fallback is None:
                raise VersionError(current.version, client_version)
            hops += 1
            if hops > self._config.max_fallback_depth:
                raise ProtocolError(
                    f"fallback chain exceeds {self._config.max_fallback_depth} hops"
                )
            self._telemetry.record_fallback(execution_id, current.version, fallback.version)
            current = fallback

        return current

    async def _run_envelope(self, envelope: VersionedCommand) -> None:
        timeout_ms = envelope.timeout_ms
        if not timeout_ms:
            await self._dispatch(envelope.command, 1)
            return

        task = asyncio.ensure_future(self._dispatch(envelope.command, 1))
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        if task in done:
            task.result()
            return

        # Losing the race does not stop the work; keep the task so its outcome
        # is still observed and logged.
        command_type = command_type_name(envelope.command)
        self._track(task)
        task.add_done_callback(
            lambda t: self._log_orphan_outcome(t, command_type, timeout_ms)
        )
        raise CommandTimeoutError(timeout_ms, command_type)

    def _log_orphan_outcome(
        self, task: "asyncio.Task[Any]", command_type: str, timeout_ms: int
    ) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "%s failed after exceeding its %dms timeout: %s", command_type, timeout_ms, exc
            )
        else:
            logger.info("%s completed after exceeding its %dms timeout", command_type, timeout_ms)

    def _track(self, task: "asyncio.Task[Any]") -> None:
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)

    # =========================================================================
    # Unversioned dispatch
    # =========================================================================

    async def _dispatch(self, command: Command, depth: int) -> None:
        if depth > self._config.max_command_depth:
            raise ProtocolError(
                f"command nesting exceeds {self._config.max_command_depth} levels"
            )
        handler = self._handlers.get(type(command))
        if handler is None:
            raise ProtocolError(f"no handler for command {type(command).__name__}")
        logger.debug("Dispatching %s at depth %d", command.TYPE, depth)
        await handler(command, depth)

    async def _notify(self, message: str) -> None:
        """Best-effort toast; failures are logged and dropped."""
        try:
            await self._capabilities.present_dialog(DialogType.TOAST, "", message, [])
        except Exception as err:
            logger.warning("Could not show failure notice %r: %s", message, err)

    async def _notify_failure(self, message: str) -> bool:
        """Show a handler's failure notice unless a Retry attempt may still recover.

        Returns True when the user was told about the failure.
        """
        if _retry_pending.get():
            logger.debug("Suppressing failure notice %r during retry", message)
            return False
        await self._notify(message)
        return True

    async def _handle_navigate_to(self, command: NavigateTo, depth: int) -> None:
        url = build_navigation_url(command.path, command.params)
        logger.debug("Navigating to %s (replace=%s)", url, command.replace)
        try:
            await self._capabilities.navigate(url, command.replace)
            return
        except Exception as err:
            failure: Exception = err
            logger.warning("Navigation to %s failed: %s", url, err)

        if command.fallback_path:
            logger.info("Trying fallback path %s", command.fallback_path)
            try:
                await self._capabilities.navigate(command.fallback_path, command.replace)
                return
            except Exception as err:
                failure = err
                logger.warning(
                    "Fallback navigation to %s also failed: %s", command.fallback_path, err
                )

        notified = await self._notify_failure(self._config.message("navigation_failure"))
        error = CapabilityError("navigate", str(failure))
        error.user_notified = notified
        raise error from failure

    async def _present(
        self, kind: DialogType, title: str, content: str, options: List[str]
    ) -> UserChoice:
        try:
            return await self._capabilities.present_dialog(kind, title, content, options)
        except Exception as err:
            raise CapabilityError("present_dialog", str(err)) from err

    async def _handle_show_dialog(self, command: ShowDialog, depth: int) -> None:
        actions = command.actions

        if command.dialog_type == DialogType.TOAST:
            await self._present(DialogType.TOAST, "", command.content or command.title, [])
            return

        if command.dialog_type == DialogType.CONFIRM and actions:
            cancel_text = actions[0].text or self._config.message("cancel_text")
            confirm_text = (
                actions[1].text if len(actions) > 1 and actions[1].text else
                self._config.message("confirm_text")
            )
            choice = await self._present(
                DialogType.CONFIRM,
                command.title or self._config.message("confirm_title"),
                command.content,
                [cancel_text, confirm_text],
            )
            if choice == UserChoice.CONFIRM:
                chosen = actions[1].action if len(actions) > 1 else None
            elif choice == UserChoice.CANCEL:
                chosen = actions[0].action
            else:
                chosen = None
            logger.debug("Confirm dialog answered %s", getattr(choice, "value", choice))
            if chosen is not None:
                await self._dispatch(chosen, depth + 1)
            return

        # Alert, or a Confirm with no actions to choose between
        default_title = (
            "confirm_title" if command.dialog_type == DialogType.CONFIRM else "alert_title"
        )
        acknowledge = (actions[0].text if actions else "") or self._config.message(
            "acknowledge_text"
        )
        await self._present(
            DialogType.ALERT,
            command.title or self._config.message(default_title),
            command.content,
            [acknowledge],
        )

    async def _handle_process_data(self, command: ProcessData, depth: int) -> None:
        data_type = command.data_type
        if data_type not in self._config.data_types:
            logger.warning("Unknown data type %r; ignoring ProcessData", data_type)
            try:
                self._capabilities.handle_unknown_data(data_type, command.data)
            except Exception as err:
                raise CapabilityError("handle_unknown_data", str(err)) from err
            return

        try:
            if command.data is None:
                self._capabilities.mutate_state(data_type, None, False)
            else:
                self._capabilities.mutate_state(data_type, command.data, command.merge)
        except Exception as err:
            raise CapabilityError("mutate_state", str(err)) from err

    async def _handle_sequence(self, command: Sequence, depth: int) -> None:
        errors: List[RouteCommandError] = []
        for index, child in enumerate(command.commands):
            try:
                await self._dispatch(child, depth + 1)
            except RouteCommandError as err:
                if command.stop_on_error:
                    logger.debug("Sequence stopped at member %d: %s", index, err)
                    raise
                logger.warning("Sequence member %d failed, continuing: %s", index, err)
                errors.append(err)

        if errors:
            raise self._composite(Sequence.TYPE, errors)

    async def _handle_parallel(self, command: Parallel, depth: int) -> None:
        if not command.wait_for_all:
            for child in command.commands:
                task = asyncio.ensure_future(self._run_detached(child, depth + 1))
                self._track(task)
            # Yield once so every member has started before we return.
            await asyncio.sleep(0)
            return

        results = await asyncio.gather(
            *(self._dispatch(child, depth + 1) for child in command.commands),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise self._composite(Parallel.TYPE, errors)

    async def _run_detached(self, command: Command, depth: int) -> None:
        """Run a fire-and-forget member with its own execution record."""
        execution_id = generate_execution_id()
        started_at = utc_now()
        start = time.perf_counter()
        try:
            await self._dispatch(command, depth)
        except Exception as err:
            logger.warning(
                "Detached %s [%s] failed: %s", command_type_name(command), execution_id, err
            )
            self._telemetry.record_execution(
                execution_id,
                command,
                "error",
                str(err),
                duration_ms=_elapsed_ms(start),
                started_at=started_at,
            )
            return

        self._telemetry.record_execution(
            execution_id,
            command,
            "success",
            duration_ms=_elapsed_ms(start),
            started_at=started_at,
        )

    def _composite(self, command_type: str, errors: List[BaseException]) -> CompositeCommandError:
        composite = CompositeCommandError(command_type, errors)
        composite.user_notified = any(getattr(e, "user_notified", False) for e in errors)
        return composite

    async def _handle_retry(self, command: Retry, depth: int) -> None:
        if command.max_attempts < 1:
            raise ProtocolError(f"Retry max_attempts must be >= 1, got {command.max_attempts}")

        last_error: Optional[RouteCommandError] = None
        for attempt in range(1, command.max_attempts + 1):
            # Only the final attempt may notify; earlier failures can still recover.
            token = _retry_pending.set(True) if attempt < command.max_attempts else None
            try:
                try:
                    await self._dispatch(command.command, depth + 1)
                finally:
                    if token is not None:
                        _retry_pending.reset(token)
            except ProtocolError:
                raise
            except RouteCommandError as err:
                last_error = err
                logger.warning(
                    "Attempt %d/%d of %s failed: %s",
                    attempt,
                    command.max_attempts,
                    command.command.TYPE,
                    err,
                )
                if attempt < command.max_attempts:
                    wait_ms = command.delay_ms * 2 ** (attempt - 1)
                    if wait_ms > 0:
                        await self._sleep(wait_ms / 1000)
                continue

            if attempt > 1:
                logger.info("%s succeeded on attempt %d", command.command.TYPE, attempt)
            return

        assert last_error is not None
        raise last_error

    async def _handle_delay(self, command: Delay, depth: int) -> None:
        if command.duration_ms > 0:
            await self._sleep(command.duration_ms / 1000)
        await self._dispatch(command.command, depth + 1)

    async def _handle_conditional(self, command: Conditional, depth: int) -> None:
        try:
            context = self._context_provider()
        except Exception as err:
            logger.warning(
                "Could not build condition context for %r (%s); treating as false",
                command.condition,
                err,
            )
            result = False
        else:
            result, error = self._evaluator.evaluate(command.condition, context)
            if error is not None:
                logger.warning(
                    "Condition %r could not be evaluated (%s); treating as false",
                    command.condition,
                    error,
                )

        branch = command.if_true if result else command.if_false
        logger.debug("Condition %r -> %s", command.condition, result)
        if branch is not None:
            await self._dispatch(branch, depth + 1)

    async def _handle_request_payment(self, command: RequestPayment, depth: int) -> None:
        info = command.payment_info
        logger.info(
            "Requesting %s payment for order %s (%d %s)",
            info.payment_method.value,
            info.order_id,
            info.amount,
            info.currency,
        )
        try:
            await self._capabilities.perform_payment(info, command.callback_url)
        except Exception as err:
            notified = await self._notify_failure(self._config.message("payment_failure"))
            error = CapabilityError("perform_payment", str(err))
            error.user_notified = notified
            raise error from err
