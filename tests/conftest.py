"""
Test fixtures and utilities for routekit tests.

Provides a recording CapabilitySurface fake, a fake sleep that records waits
instead of blocking, and an engine factory wired to both.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

_repo_root = Path(__file__).parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

from routekit.config.runtime_config import EngineConfig, reset_config  # noqa: E402
from routekit.runtime.capabilities import (  # noqa: E402
    CapabilitySurface,
    InMemoryStateStore,
    UserChoice,
)
from routekit.runtime.engine import ExecutionEngine  # noqa: E402
from routekit.runtime.telemetry import ExecutionTelemetry  # noqa: E402
from routekit.runtime.types import DialogType, PaymentInfo  # noqa: E402

ENV_VARS = (
    "ROUTEKIT_SUPPORTED_VERSION",
    "ROUTEKIT_MAX_COMMAND_DEPTH",
    "ROUTEKIT_MAX_FALLBACK_DEPTH",
    "ROUTEKIT_HISTORY_CAPACITY",
    "ROUTEKIT_SLOW_EXECUTION_MS",
)


class FakeCapabilities(CapabilitySurface):
    """Recording capability surface.

    Attributes:
        navigations: (path, replace) for every navigate() call, failed or not.
        dialogs: (kind, title, content, options) for every present_dialog() call.
        mutations: (data_type, data, merge) for every mutate_state() call.
        unknown: (data_type, data) for every handle_unknown_data() call.
        payments: (order_id, callback_url) for every perform_payment() call.
    """

    def __init__(
        self,
        *,
        choice: UserChoice = UserChoice.CONFIRM,
        fail_paths: Optional[Set[str]] = None,
        fail_mutations: Optional[Set[str]] = None,
        payment_error: Optional[Exception] = None,
        dialog_error: Optional[Exception] = None,
        navigate_gate: Optional[asyncio.Event] = None,
        store: Optional[InMemoryStateStore] = None,
    ):
        self.choice = choice
        self.fail_paths = fail_paths or set()
        self.fail_mutations = fail_mutations or set()
        self.payment_error = payment_error
        self.dialog_error = dialog_error
        self.navigate_gate = navigate_gate
        self.store = store or InMemoryStateStore()

        self.navigations: List[Tuple[str, bool]] = []
        self.dialogs: List[Tuple[DialogType, str, str, List[str]]] = []
        self.mutations: List[Tuple[str, Any, bool]] = []
        self.unknown: List[Tuple[str, Any]] = []
        self.payments: List[Tuple[str, str]] = []

    async def navigate(self, path: str, replace: bool) -> None:
        self.navigations.append((path, replace))
        if self.navigate_gate is not None:
            await self.navigate_gate.wait()
        if path in self.fail_paths:
            raise RuntimeError(f"page not found: {path}")

    async def present_dialog(
        self, kind: DialogType, title: str, content: str, options: List[str]
    ) -> UserChoice:
        self.dialogs.append((kind, title, content, list(options)))
        if self.dialog_error is not None and kind != DialogType.TOAST:
            raise self.dialog_error
        if kind == DialogType.CONFIRM:
            return self.choice
        return UserChoice.ACKNOWLEDGED

    def mutate_state(self, data_type: str, data: Any, merge: bool) -> None:
        self.mutations.append((data_type, data, merge))
        if data_type in self.fail_mutations:
            raise RuntimeError(f"storage full for {data_type}")
        self.store.apply(data_type, data, merge)

    async def perform_payment(self, payment_info: PaymentInfo, callback_url: str) -> None:
        self.payments.append((payment_info.order_id, callback_url))
        if self.payment_error is not None:
            raise self.payment_error

    def handle_unknown_data(self, data_type: str, data: Any) -> None:
        self.unknown.append((data_type, data))

    @property
    def toasts(self) -> List[str]:
        """Content of every toast shown, in order."""
        return [content for kind, _, content, _ in self.dialogs if kind == DialogType.TOAST]


class FakeSleep:
    """Records requested waits (seconds) and yields to the loop without blocking."""

    def __init__(self) -> None:
        self.waits: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def clean_routekit_config(monkeypatch):
    """Isolate tests from ROUTEKIT_* environment variables and cached YAML."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def capabilities() -> FakeCapabilities:
    return FakeCapabilities()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def make_engine(fake_sleep):
    """Factory building an engine around a FakeCapabilities instance."""

    def _make(
        caps: Optional[FakeCapabilities] = None,
        *,
        config: Optional[EngineConfig] = None,
        telemetry: Optional[ExecutionTelemetry] = None,
        **overrides: Any,
    ) -> Tuple[ExecutionEngine, FakeCapabilities]:
        caps = caps or FakeCapabilities()
        engine = ExecutionEngine(
            caps,
            config=config or EngineConfig(),
            telemetry=telemetry or ExecutionTelemetry(capacity=100),
            context_provider=caps.store.condition_context,
            sleep=fake_sleep,
            **overrides,
        )
        return engine, caps

    return _make


def statuses(engine: ExecutionEngine) -> List[str]:
    """Status of every record in the engine's history, oldest first."""
    return [r.status for r in engine.telemetry.get_history()]


def wire(tag: str, **payload: Any) -> Dict[str, Any]:
    """Build a raw wire command."""
    return {"type": tag, "payload": payload}
