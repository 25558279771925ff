"""
Mint workflow: reservation, delegation, finalization and crash recovery.
"""

import json

import pytest
from prometheus_client import REGISTRY

from deposits.sources import FixtureDepositSource
from engine.workflow import MintOutcome, MintWorkflow
from errors.exceptions import DelegationError, PersistenceError, SourceError
from events.event_bus import EventTypes
from models.models import Deposit, FundUnit
from state.state import StateStore

from conftest import (
    MONITOR, PRICE, SENDER, FakeChain, FakeRegistry, FakeSource, drain_events
)


def _workflow(store, source, chain, delegate, bus, registry=None):
    return MintWorkflow(
        state=store,
        source=source,
        chain=chain,
        delegate=delegate,
        monitor_address=MONITOR,
        mint_price=PRICE,
        registry=registry,
        bus=bus,
    )


def _failures(stage):
    return REGISTRY.get_sample_value("minter_mint_failures_total", {"stage": stage}) or 0.0


@pytest.mark.asyncio
async def test_end_to_end_fixture_deposit(tmp_path, store, chain, delegate, bus):
    fixture = tmp_path / "mock_deposits.json"
    fixture.write_text(json.dumps([
        {"monitor": MONITOR, "sender": SENDER, "amount": PRICE, "tx": "mock_1"},
    ]))
    source = FixtureDepositSource(MONITOR, store, str(fixture))
    workflow = _workflow(store, source, chain, delegate, bus)

    report = await workflow.run_tick()

    assert report.ok
    assert (report.discovered, report.finalized, report.failed) == (1, 1, 0)
    assert len(delegate.requests) == 1
    request = delegate.requests[0]
    assert request.asset_name == "Token 1"
    assert request.asset_name_hex == "Token 1".encode().hex()
    assert request.recipient == SENDER
    assert request.change_address == MONITOR
    assert request.invalid_hereafter == chain.slot + 10_000
    assert request.quantity == 1
    # 20 + 15 ada covers price + fee buffer; the unit holding a token is never used
    assert request.inputs == ["aa#0", "bb#1"]
    assert store.is_processed("mock_1")
    assert store.pending == {}
    assert store.next_sequence == 2

    # A second tick finds nothing new
    report = await workflow.run_tick()
    assert report.discovered == 0
    assert len(delegate.requests) == 1


@pytest.mark.asyncio
async def test_finalized_mint_emits_events(store, chain, delegate, bus, deposit):
    workflow = _workflow(store, FakeSource(store, [deposit]), chain, delegate, bus)

    await workflow.run_tick()

    events = drain_events(bus)
    assert [e.type for e in events] == [EventTypes.DEPOSIT_DISCOVERED, EventTypes.MINT_FINALIZED]
    finalized = events[-1].data
    assert finalized["asset_name"] == "Token 1"
    assert finalized["sequence"] == 1
    assert finalized["tx_hash"] == "tx_" + "Token 1".encode().hex()


@pytest.mark.asyncio
async def test_delegation_failure_keeps_reservation_for_retry(store, chain, delegate, bus, deposit):
    delegate.errors.append(DelegationError("submit", "node rejected transaction"))
    workflow = _workflow(store, FakeSource(store, [deposit]), chain, delegate, bus)
    before = _failures("delegate")

    first = await workflow.run_tick()

    assert first.failed == 1
    assert store.pending == {"mock_1": 1}
    assert not store.is_processed("mock_1")
    assert _failures("delegate") == before + 1
    assert EventTypes.MINT_FAILED in [e.type for e in drain_events(bus)]

    second = await workflow.run_tick()

    assert second.finalized == 1
    assert [r.asset_name for r in delegate.requests] == ["Token 1", "Token 1"]
    assert store.is_processed("mock_1")
    assert store.next_sequence == 2


@pytest.mark.asyncio
async def test_insufficient_funds_aborts_before_delegation(store, delegate, bus, deposit):
    chain = FakeChain(units=[
        FundUnit(id="aa#0", value=10_000_000),
        FundUnit(id="cc#0", value=90_000_000, assets={"policy.thing": 5}),
    ])
    workflow = _workflow(store, FakeSource(store, [deposit]), chain, delegate, bus)

    outcome = await workflow.process_deposit(deposit)

    assert outcome is MintOutcome.FAILED
    assert delegate.requests == []
    assert store.pending == {"mock_1": 1}


@pytest.mark.asyncio
async def test_chain_query_failure_keeps_reservation(store, chain, delegate, bus, deposit):
    chain.slot_error = SourceError("node socket unavailable")
    workflow = _workflow(store, FakeSource(store, [deposit]), chain, delegate, bus)

    assert await workflow.process_deposit(deposit) is MintOutcome.FAILED
    assert store.pending == {"mock_1": 1}

    chain.slot_error = None
    assert await workflow.process_deposit(deposit) is MintOutcome.FINALIZED
    assert delegate.requests[0].asset_name == "Token 1"


@pytest.mark.asyncio
async def test_unknown_sender_is_deferred_without_reservation(store, chain, delegate, bus):
    unresolved = Deposit(tx_hash="tx_u", sender="unknown", amount=PRICE)
    workflow = _workflow(store, FakeSource(store, [unresolved]), chain, delegate, bus)

    outcome = await workflow.process_deposit(unresolved)

    assert outcome is MintOutcome.FAILED
    assert store.pending == {}
    assert store.next_sequence == 1
    assert delegate.requests == []


@pytest.mark.asyncio
async def test_processed_deposit_is_skipped(store, chain, delegate, bus, deposit):
    store.reserve_sequence("mock_1")
    store.clear_reservation("mock_1")
    workflow = _workflow(store, FakeSource(store), chain, delegate, bus)

    assert await workflow.process_deposit(deposit) is MintOutcome.SKIPPED
    assert delegate.requests == []


@pytest.mark.asyncio
async def test_finalize_failure_leaves_deposit_pending(store, chain, delegate, bus, deposit, monkeypatch):
    def _fail(deposit_id):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "clear_reservation", _fail)
    workflow = _workflow(store, FakeSource(store, [deposit]), chain, delegate, bus)

    assert await workflow.process_deposit(deposit) is MintOutcome.FAILED
    assert len(delegate.requests) == 1
    assert store.pending == {"mock_1": 1}


@pytest.mark.asyncio
async def test_deposits_in_one_tick_get_consecutive_sequences(store, delegate, bus):
    chain = FakeChain(units=[FundUnit(id="aa#0", value=100_000_000)])
    deposits = [
        Deposit(tx_hash="txA", sender=SENDER, amount=PRICE),
        Deposit(tx_hash="txB", sender=SENDER, amount=PRICE),
    ]
    workflow = _workflow(store, FakeSource(store, deposits), chain, delegate, bus)

    report = await workflow.run_tick()

    assert report.finalized == 2
    assert [r.asset_name for r in delegate.requests] == ["Token 1", "Token 2"]


class _FlakyChain(FakeChain):
    """Raises a raw OSError on the first UTxO query only."""

    async def fund_units(self, address: str):
        if self.utxo_error:
            error, self.utxo_error = self.utxo_error, None
            raise error
        return list(self.units)


@pytest.mark.asyncio
async def test_unexpected_adapter_error_only_fails_that_deposit(store, delegate, bus):
    chain = _FlakyChain(units=[FundUnit(id="aa#0", value=100_000_000)])
    chain.utxo_error = PermissionError("work dir not writable")
    deposits = [
        Deposit(tx_hash="txA", sender=SENDER, amount=PRICE),
        Deposit(tx_hash="txB", sender=SENDER, amount=PRICE),
    ]
    workflow = _workflow(store, FakeSource(store, deposits), chain, delegate, bus)
    before = _failures("select")

    report = await workflow.run_tick()

    assert report.ok
    assert (report.failed, report.finalized) == (1, 1)
    assert store.pending == {"txA": 1}
    assert store.is_processed("txB")
    assert [r.asset_name for r in delegate.requests] == ["Token 2"]
    assert _failures("select") == before + 1
    failed = [e for e in drain_events(bus) if e.type == EventTypes.MINT_FAILED]
    assert failed[0].data == {"deposit_id": "txA", "stage": "select", "error": "work dir not writable"}


@pytest.mark.asyncio
async def test_fetch_error_aborts_tick(store, chain, delegate, bus):
    workflow = _workflow(store, FakeSource(store, error=SourceError("timeout")), chain, delegate, bus)

    report = await workflow.run_tick()

    assert not report.ok
    assert report.fetch_error == "timeout"
    assert delegate.requests == []


# ─────────────────────────────── reconciliation ─────────────────────────────
@pytest.mark.asyncio
async def test_crash_after_submit_is_recovered_on_restart(state_path, chain, delegate, bus):
    store = StateStore(state_path, next_sequence=7)
    store.save()
    assert store.reserve_sequence("txA") == 7
    store.reserve_sequence("txB")

    # Process restarts: only the file survives
    reloaded = StateStore.load(state_path)
    workflow = _workflow(reloaded, FakeSource(reloaded), chain, delegate, bus,
                         registry=FakeRegistry(highest=7))

    recovered = await workflow.reconcile()

    assert recovered == 1
    assert reloaded.is_processed("txA")
    assert reloaded.pending == {"txB": 8}
    assert reloaded.next_sequence == 9
    assert [e.type for e in drain_events(bus)] == [EventTypes.RESERVATION_RECOVERED]


@pytest.mark.asyncio
async def test_reconcile_advances_counter_past_onchain_assets(store, chain, delegate, bus):
    workflow = _workflow(store, FakeSource(store), chain, delegate, bus,
                         registry=FakeRegistry(highest=41))

    assert await workflow.reconcile() == 0
    assert store.next_sequence == 42
    assert StateStore.load(store.path).next_sequence == 42


@pytest.mark.asyncio
async def test_reconcile_tolerates_indexer_outage(store, chain, delegate, bus):
    store.reserve_sequence("txA")
    workflow = _workflow(store, FakeSource(store), chain, delegate, bus,
                         registry=FakeRegistry(error=SourceError("503")))

    assert await workflow.reconcile() == 0
    assert store.pending == {"txA": 1}


@pytest.mark.asyncio
async def test_reconcile_without_registry_is_noop(store, chain, delegate, bus):
    workflow = _workflow(store, FakeSource(store), chain, delegate, bus)
    assert await workflow.reconcile() == 0
    assert store.next_sequence == 1
