"""
capabilities.py - The side-effecting surface the execution engine drives.

The engine never navigates, renders or stores anything itself. The host
application implements CapabilitySurface and injects it:

- navigate(): move to a page (push or replace)
- present_dialog(): show an alert, confirm dialog or toast
- mutate_state(): set, shallow-merge or clear one kind of client state
- perform_payment(): start a payment flow
- handle_unknown_data(): optional hook for data kinds the engine does not know

InMemoryStateStore is a reference state container with the same per-kind
semantics hosts usually want; it also builds the ConditionContext snapshot so
conditions see exactly the state the engine mutates.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from routekit.runtime.conditions import ConditionContext
from routekit.runtime.types import DialogType, PaymentInfo

logger = logging.getLogger(__name__)


class UserChoice(str, Enum):
    """How the user dismissed a dialog."""

    CONFIRM = "confirm"
    CANCEL = "cancel"
    ACKNOWLEDGED = "acknowledged"


class CapabilitySurface(ABC):
    """Abstract base class for host-side UI and state primitives.

    Implementations own:
    - Actual page navigation
    - Actual dialog rendering and collecting the user's choice
    - Actual state persistence

    Implementations do NOT own:
    - Command interpretation (that's the engine's job)
    - Telemetry (that's ExecutionTelemetry's job)
    """

    @abstractmethod
    async def navigate(self, path: str, replace: bool) -> None:
        """Navigate to a path, replacing the current page when replace is True."""
        ...

    @abstractmethod
    async def present_dialog(
        self,
        kind: DialogType,
        title: str,
        content: str,
        options: List[str],
    ) -> UserChoice:
        """Present a dialog and return the user's choice.

        Args:
            kind: Alert, Confirm or Toast.
            title: Dialog title (empty for toasts).
            content: Body text.
            options: Button labels. Alerts get one, confirms get
                [cancel_text, confirm_text], toasts get none.

        Returns:
            The user's choice. Toasts must return immediately with
            UserChoice.ACKNOWLEDGED without waiting for the user.
        """
        ...

    @abstractmethod
    def mutate_state(self, data_type: str, data: Any, merge: bool) -> None:
        """Replace, shallow-merge or (when data is None) clear one data kind."""
        ...

    @abstractmethod
    async def perform_payment(self, payment_info: PaymentInfo, callback_url: str) -> None:
        """Start a payment flow for the given order."""
        ...

    def handle_unknown_data(self, data_type: str, data: Any) -> None:
        """Called for ProcessData commands with an unrecognized data kind.

        The default does nothing, keeping older clients forward-compatible with
        servers that introduce new data kinds.
        """
        return None


class InMemoryStateStore:
    """Dict-backed client state with per-kind mutation semantics.

    - user: clear on None, shallow merge when merge is set and a user exists,
      replace otherwise
    - userList: always replaced (None becomes an empty list)
    - settings: shallow merge or replace (None becomes an empty mapping)
    - cache: always shallow-merged into the existing cache (None becomes an
      empty mapping)
    - any other kind: clear on None, merge or replace generically
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._state: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, data_type: str, default: Any = None) -> Any:
        return self._state.get(data_type, default)

    def apply(self, data_type: str, data: Any, merge: bool) -> None:
        """Apply one ProcessData mutation."""
        if data_type == "userList":
            self._state["userList"] = list(data) if data is not None else []
            return

        if data is None:
            if data_type in ("settings", "cache"):
                self._state[data_type] = {}
            else:
                self._state.pop(data_type, None)
            return

        if data_type == "cache":
            merge = True

        current = self._state.get(data_type)
        if merge and isinstance(current, dict) and isinstance(data, dict):
            merged = dict(current)
            merged.update(data)
            self._state[data_type] = merged
        else:
            self._state[data_type] = copy.deepcopy(data)

        logger.debug("State '%s' %s", data_type, "merged" if merge else "replaced")

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the current state."""
        return copy.deepcopy(self._state)

    def condition_context(self) -> ConditionContext:
        """Read-only context for condition evaluation."""
        state = self.snapshot()
        user = state.pop("user", None)
        return ConditionContext(user=user, state=state)
