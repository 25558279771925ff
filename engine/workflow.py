"""
Mint workflow: turns each new deposit into exactly one minted asset.

Per deposit: Discovered -> Reserved -> Delegated -> Finalized. Only the
reservation and the finalization touch the state file, so a failure anywhere
in between leaves the deposit Reserved and the next tick retries it with the
same sequence number.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol

from config.config import (
    DEFAULT_ASSET_PREFIX, FEE_BUFFER, UNKNOWN_SENDER, VALIDITY_HORIZON_SLOTS
)
from deposits.sources import DepositSource
from engine.naming import derive_names
from errors.exceptions import (
    AlreadyProcessedError, DelegationError, MinterError, PersistenceError, SourceError
)
from events.event_bus import EventBus, EventTypes, event_bus
from log_utils import get_logger
from models.models import Deposit, FundUnit, MintRequest
from monitoring.health import (
    deposits_seen_total, mint_failures_total, mints_finalized_total,
    record_state, tick_failures_total
)
from state.state import StateStore
from wallet.coin_selection import select_inputs

logger = get_logger(__name__)


class ChainQuery(Protocol):
    async def current_slot(self) -> int: ...
    async def fund_units(self, address: str) -> List[FundUnit]: ...


class MintDelegate(Protocol):
    async def mint(self, request: MintRequest) -> str: ...


class OnChainRegistry(Protocol):
    async def max_sequence(self) -> int: ...


class MintOutcome(Enum):
    FINALIZED = "finalized"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class TickReport:
    discovered: int = 0
    finalized: int = 0
    skipped: int = 0
    failed: int = 0
    fetch_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.fetch_error is None


class MintWorkflow:
    def __init__(self, state: StateStore, source: DepositSource, chain: ChainQuery,
                 delegate: MintDelegate, monitor_address: str, mint_price: int,
                 registry: Optional[OnChainRegistry] = None,
                 fee_buffer: int = FEE_BUFFER,
                 validity_horizon: int = VALIDITY_HORIZON_SLOTS,
                 asset_prefix: str = DEFAULT_ASSET_PREFIX,
                 bus: Optional[EventBus] = None):
        self.state = state
        self.source = source
        self.chain = chain
        self.delegate = delegate
        self.registry = registry
        self.monitor_address = monitor_address
        self.mint_price = mint_price
        self.fee_buffer = fee_buffer
        self.validity_horizon = validity_horizon
        self.asset_prefix = asset_prefix
        self.bus = bus if bus is not None else event_bus

    @property
    def required_lovelace(self) -> int:
        return self.mint_price + self.fee_buffer

    async def _emit(self, event_type: str, data: dict):
        try:
            await self.bus.emit(event_type, data, source="mint_workflow")
        except Exception as e:
            logger.warning(f"Could not emit {event_type}: {e}")

    # -------------------------------------------------------- reconciliation
    async def reconcile(self) -> int:
        """
        Catch local bookkeeping up with the chain before the first tick.

        Local state decides which sequence to issue next; the chain decides
        which mints already happened. Returns the number of pending
        reservations recovered as processed. PersistenceError propagates.
        """
        if self.registry is None:
            logger.info("No on-chain registry configured; skipping reconciliation")
            return 0

        try:
            max_onchain = await self.registry.max_sequence()
        except SourceError as e:
            logger.warning(f"On-chain reconciliation skipped: {e.message}")
            return 0

        if self.state.advance_sequence(max_onchain + 1):
            logger.info(f"Synced next_mint_counter to {max_onchain + 1} from on-chain assets")

        recovered = 0
        for deposit_id, sequence in sorted(self.state.pending.items(), key=lambda kv: kv[1]):
            if sequence > max_onchain:
                continue
            logger.info(
                f"Pending reservation for {deposit_id} (sequence={sequence}) is minted on-chain; marking processed",
                extra={"deposit_id": deposit_id, "sequence": sequence},
            )
            self.state.clear_reservation(deposit_id)
            recovered += 1
            await self._emit(EventTypes.RESERVATION_RECOVERED, {
                "deposit_id": deposit_id,
                "sequence": sequence,
            })

        record_state(self.state)
        return recovered

    # ------------------------------------------------------------------ tick
    async def run_tick(self) -> TickReport:
        report = TickReport()
        logger.info("Poll tick")

        try:
            deposits = await self.source.fetch_new_deposits(self.mint_price)
        except SourceError as e:
            logger.error(f"Error fetching deposits: {e.message}", extra={"stage": "fetch"})
            tick_failures_total.inc()
            report.fetch_error = e.message
            return report

        report.discovered = len(deposits)
        deposits_seen_total.inc(len(deposits))

        # One at a time: each mint consumes UTxOs the next one would select
        for deposit in deposits:
            outcome = await self.process_deposit(deposit)
            if outcome is MintOutcome.FINALIZED:
                report.finalized += 1
            elif outcome is MintOutcome.SKIPPED:
                report.skipped += 1
            else:
                report.failed += 1

        record_state(self.state)
        if deposits:
            logger.info(
                f"Tick done: {report.finalized} finalized, {report.failed} failed, {report.skipped} skipped"
            )
        return report

    async def process_deposit(self, deposit: Deposit) -> MintOutcome:
        log = logger.with_context(deposit_id=deposit.tx_hash)

        if self.state.is_processed(deposit.tx_hash):
            return MintOutcome.SKIPPED

        log.info(f"Found deposit: {deposit.sender} -> {deposit.amount} lovelace")
        await self._emit(EventTypes.DEPOSIT_DISCOVERED, {
            "deposit_id": deposit.tx_hash,
            "sender": deposit.sender,
            "amount": deposit.amount,
        })

        if deposit.sender == UNKNOWN_SENDER:
            log.warning("Sender unresolved; deferring deposit to next tick", extra={"stage": "resolve_sender"})
            mint_failures_total.labels(stage="resolve_sender").inc()
            return MintOutcome.FAILED

        stage = "reserve"
        try:
            sequence = self.state.reserve_sequence(deposit.tx_hash)
            name, name_hex = derive_names(self.asset_prefix, sequence)
            log = log.with_context(sequence=sequence, asset_name=name)

            stage = "tip"
            slot = await self.chain.current_slot()
            invalid_hereafter = slot + self.validity_horizon
            log.info(f"Minting {name} (hex={name_hex}) slot={slot} invalid-hereafter={invalid_hereafter}")

            stage = "select"
            units = await self.chain.fund_units(self.monitor_address)
            selected = select_inputs(units, self.required_lovelace)
            log.info(
                f"Selected UTxOs: {[u.id for u in selected]} "
                f"(total lovelace={sum(u.value for u in selected)})"
            )

            stage = "delegate"
            request = self._mint_request(deposit, selected, name, name_hex, invalid_hereafter)
            tx_hash = await self.delegate.mint(request)

            stage = "finalize"
            self.state.clear_reservation(deposit.tx_hash)
        except AlreadyProcessedError:
            return MintOutcome.SKIPPED
        except MinterError as e:
            if stage == "finalize" and isinstance(e, PersistenceError):
                log.critical(
                    f"Mint submitted but not recorded: {e.message}; "
                    f"startup reconciliation will mark it processed",
                    extra={"stage": stage},
                )
            else:
                log.error(
                    f"Failed to mint for deposit at {stage}: {e.message}",
                    extra={"stage": stage, "error_code": e.code},
                )
            return await self._mint_failed(deposit, stage, e.message)
        except Exception as e:
            # Adapters outside the error taxonomy still only cost this deposit
            log.error(
                f"Unexpected {type(e).__name__} at {stage}: {e}",
                exc_info=True,
                extra={"stage": stage},
            )
            return await self._mint_failed(deposit, stage, str(e) or type(e).__name__)

        mints_finalized_total.inc()
        log.info(f"Successfully minted {name} for deposit", extra={"tx_hash": tx_hash})
        await self._emit(EventTypes.MINT_FINALIZED, {
            "deposit_id": deposit.tx_hash,
            "sequence": sequence,
            "asset_name": name,
            "recipient": deposit.sender,
            "tx_hash": tx_hash,
        })
        return MintOutcome.FINALIZED

    async def _mint_failed(self, deposit: Deposit, stage: str, message: str) -> MintOutcome:
        mint_failures_total.labels(stage=stage).inc()
        await self._emit(EventTypes.MINT_FAILED, {
            "deposit_id": deposit.tx_hash,
            "stage": stage,
            "error": message,
        })
        return MintOutcome.FAILED

    def _mint_request(self, deposit: Deposit, selected: List[FundUnit], name: str,
                      name_hex: str, invalid_hereafter: int) -> MintRequest:
        try:
            return MintRequest(
                inputs=[u.id for u in selected],
                recipient=deposit.sender,
                change_address=self.monitor_address,
                asset_name=name,
                asset_name_hex=name_hex,
                invalid_hereafter=invalid_hereafter,
                quantity=1,
            )
        except ValueError as e:
            raise DelegationError("request", str(e))
