"""
Deposit sources: where the workflow learns about new matching deposits.

Each call recomputes the list from scratch. A source either returns every
matching deposit or raises SourceError; it never returns a partial list.
"""

import json
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config.config import UNKNOWN_SENDER
from deposits.blockfrost import BlockfrostClient
from errors.exceptions import SourceError
from log_utils import get_logger
from models.models import Deposit
from state.state import StateStore

logger = get_logger(__name__)


class DepositSource(ABC):
    """Source of deposits into the watched address not yet processed"""

    def __init__(self, address: str, state: StateStore):
        self.address = address
        self.state = state

    @abstractmethod
    async def fetch_new_deposits(self, target_amount: int) -> List[Deposit]:
        ...


def _lovelace(amounts: List[Dict[str, Any]]) -> int:
    for amount in amounts:
        if amount.get("unit") == "lovelace":
            return int(amount.get("quantity", 0))
    return 0


class BlockfrostDepositSource(DepositSource):
    """Live deposits read from the Blockfrost indexer"""

    def __init__(self, address: str, state: StateStore, client: BlockfrostClient):
        super().__init__(address, state)
        self.client = client

    async def _resolve_sender(self, tx_hash: str) -> str:
        try:
            return await self.client.tx_sender(tx_hash)
        except SourceError as e:
            logger.warning(
                f"Failed to resolve sender for {tx_hash}: {e.message}",
                extra={"deposit_id": tx_hash},
            )
            return UNKNOWN_SENDER

    async def fetch_new_deposits(self, target_amount: int) -> List[Deposit]:
        utxos = await self.client.address_utxos(self.address)

        deposits: List[Deposit] = []
        seen = set()
        for utxo in utxos:
            try:
                tx_hash = utxo["tx_hash"]
                lovelace = _lovelace(utxo.get("amount") or [])
            except (KeyError, TypeError, ValueError) as e:
                raise SourceError(f"Malformed UTxO entry for {self.address}: {utxo!r} ({e})")

            if lovelace != target_amount or tx_hash in seen:
                continue
            if self.state.is_processed(tx_hash):
                continue
            seen.add(tx_hash)

            sender = await self._resolve_sender(tx_hash)
            deposits.append(Deposit(tx_hash=tx_hash, sender=sender, amount=lovelace))

        logger.debug(f"Blockfrost returned {len(utxos)} utxos, {len(deposits)} new deposits")
        return deposits


class FixtureRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    monitor: str
    sender: str
    amount: int
    tx_hash: str = Field(..., alias="tx")


class FixtureDepositSource(DepositSource):
    """Deposits read from a static JSON file, for offline runs and tests"""

    def __init__(self, address: str, state: StateStore, path: str):
        super().__init__(address, state)
        self.path = path

    def _read_records(self) -> List[FixtureRecord]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, list):
                raise ValueError("expected a JSON list of deposits")
            return [FixtureRecord.model_validate(item) for item in raw]
        except (OSError, ValueError, ValidationError) as e:
            raise SourceError(f"Failed to read deposit fixture {self.path}: {e}")

    async def fetch_new_deposits(self, target_amount: int) -> List[Deposit]:
        deposits = []
        for record in self._read_records():
            if record.monitor != self.address or record.amount != target_amount:
                continue
            if self.state.is_processed(record.tx_hash):
                continue
            deposits.append(
                Deposit(tx_hash=record.tx_hash, sender=record.sender, amount=record.amount)
            )
        return deposits
