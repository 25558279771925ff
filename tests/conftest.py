# tests/conftest.py
"""
Shared fixtures for the test suite.

Key design points
─────────────────
1.  Make project-root importable so `from engine.workflow import …` works no
    matter where pytest is launched.
2.  Provide in-memory fakes for the chain, the mint delegate, the on-chain
    registry and the deposit source so no test touches cardano-cli or the
    network.
3.  Let tests stub `aiohttp.ClientSession` with canned responses keyed by URL.
"""

from __future__ import annotations
import json
import pathlib
import sys
import pytest

# ─────────────────────────────────────────────────────────────────────────────
#  Ensure the repo root is on sys.path
# ─────────────────────────────────────────────────────────────────────────────
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))                 # for `import engine`, `import state` …

# Only now import modules that live in the repo
import aiohttp

from errors.exceptions import SourceError
from events.event_bus import Event, EventBus
from models.models import Deposit, FundUnit
from state.state import StateStore

MONITOR = "addr_test1monitor"
SENDER = "addr_test1sender"
PRICE = 27_000_000


# ───────────────────────────── state fixtures ───────────────────────────────
@pytest.fixture
def state_path(tmp_path):
    return str(tmp_path / "mint.state")


@pytest.fixture
def store(state_path):
    return StateStore.load(state_path)


class RecordingBus(EventBus):
    """Keeps emitted events in order instead of delivering them."""

    def __init__(self):
        super().__init__()
        self.events = []

    async def emit(self, event_type, data, source="engine"):
        self.events.append(Event(type=event_type, data=data, source=source))


@pytest.fixture
def bus():
    return RecordingBus()


def drain_events(bus: RecordingBus):
    events, bus.events = bus.events, []
    return events


# ───────────────────────────── chain fakes ──────────────────────────────────
class FakeChain:
    def __init__(self, slot: int = 1000, units=None):
        self.slot = slot
        self.units = list(units or [])
        self.slot_error = None
        self.utxo_error = None

    async def current_slot(self) -> int:
        if self.slot_error:
            raise self.slot_error
        return self.slot

    async def fund_units(self, address: str):
        if self.utxo_error:
            raise self.utxo_error
        return list(self.units)


class FakeDelegate:
    """Records every request; raises queued errors before succeeding."""

    def __init__(self):
        self.requests = []
        self.errors = []

    async def mint(self, request) -> str:
        self.requests.append(request)
        if self.errors:
            raise self.errors.pop(0)
        return f"tx_{request.asset_name_hex}"


class FakeRegistry:
    def __init__(self, highest: int = 0, error: Exception = None):
        self.highest = highest
        self.error = error

    async def max_sequence(self) -> int:
        if self.error:
            raise self.error
        return self.highest


class FakeSource:
    def __init__(self, state: StateStore, deposits=None, error: Exception = None):
        self.state = state
        self.deposits = list(deposits or [])
        self.error = error
        self.calls = 0

    async def fetch_new_deposits(self, target_amount: int):
        self.calls += 1
        if self.error:
            raise self.error
        return [
            d for d in self.deposits
            if d.amount == target_amount and not self.state.is_processed(d.tx_hash)
        ]


@pytest.fixture
def chain():
    return FakeChain(units=[
        FundUnit(id="aa#0", value=20_000_000),
        FundUnit(id="bb#1", value=15_000_000),
        FundUnit(id="cc#0", value=50_000_000, assets={"policy.Token 1": 1}),
    ])


@pytest.fixture
def delegate():
    return FakeDelegate()


@pytest.fixture
def deposit():
    return Deposit(tx_hash="mock_1", sender=SENDER, amount=PRICE)


@pytest.fixture
def source_error():
    return SourceError("indexer unreachable")


# ──────────────────────────── aiohttp stub ──────────────────────────────────
class StubResponse:
    def __init__(self, status: int, body: str):
        self.status = status
        self._body = body

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class StubSession:
    def __init__(self, routes, calls, **kwargs):
        self.routes = routes
        self.calls = calls
        self.kwargs = kwargs

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def _respond(self, key: str):
        handler = self.routes.get(key)
        if isinstance(handler, Exception):
            raise handler
        if handler is None:
            return StubResponse(404, json.dumps({"status_code": 404, "error": "Not Found"}))
        status, payload = handler
        body = payload if isinstance(payload, str) else json.dumps(payload)
        return StubResponse(status, body)

    def get(self, url, params=None):
        self.calls.append(("GET", url, params, self.kwargs.get("headers")))
        if params and "page" in params:
            paged = f"{url}?page={params['page']}"
            if paged in self.routes:
                return self._respond(paged)
        return self._respond(url)

    def post(self, url, json=None):
        self.calls.append(("POST", url, json, self.kwargs.get("headers")))
        return self._respond(url)


class AiohttpStub:
    def __init__(self):
        self.routes = {}
        self.calls = []


@pytest.fixture
def aiohttp_stub(monkeypatch):
    """Route table for a fake aiohttp.ClientSession: url -> (status, json) or exception."""
    stub = AiohttpStub()
    monkeypatch.setattr(
        aiohttp, "ClientSession",
        lambda *a, **kw: StubSession(stub.routes, stub.calls, **kw),
        raising=True,
    )
    return stub
