"""
Durable mint state: sequence counter, processed deposits and pending reservations.

The JSON file on disk is the only durable copy. Every mutating call persists
the full snapshot before it returns, and rolls the in-memory state back if the
write fails, so memory never runs ahead of disk.
"""

import json
import os
import threading
from typing import Dict, List, Optional

from pydantic import ValidationError

from errors.exceptions import AlreadyProcessedError, PersistenceError
from log_utils import get_logger
from models.models import StateSnapshot

logger = get_logger(__name__)


class StateStore:
    """Owns the MintState aggregate. All access goes through these methods."""

    def __init__(self, path: str, next_sequence: int = 1,
                 processed: Optional[List[str]] = None,
                 pending: Optional[Dict[str, int]] = None):
        self._path = path
        self._lock = threading.Lock()
        self._next_sequence = next_sequence
        self._processed_order: List[str] = []
        self._processed = set()
        for deposit_id in processed or []:
            if deposit_id not in self._processed:
                self._processed.add(deposit_id)
                self._processed_order.append(deposit_id)
        self._pending: Dict[str, int] = dict(pending or {})

    # ------------------------------------------------------------------ load
    @classmethod
    def load(cls, path: str) -> "StateStore":
        """Load the snapshot at ``path``, creating a fresh one if it is absent"""
        if not os.path.exists(path):
            store = cls(path)
            store.save()
            logger.info(f"Initialized new state file: {path}")
            return store

        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            snapshot = StateSnapshot.model_validate(raw)
        except (OSError, ValueError, ValidationError) as e:
            raise PersistenceError(f"Failed to load state file {path}: {e}") from e

        store = cls(
            path,
            next_sequence=snapshot.next_mint_counter,
            processed=snapshot.processed_deposits,
            pending=snapshot.pending_deposits,
        )
        for deposit_id in list(store._pending):
            if deposit_id in store._processed:
                logger.warning(
                    f"Dropping stale reservation for processed deposit {deposit_id}",
                    extra={"deposit_id": deposit_id},
                )
                del store._pending[deposit_id]

        logger.info(
            f"Loaded state: next_mint={store._next_sequence}, "
            f"processed={len(store._processed)}, pending={len(store._pending)}"
        )
        return store

    # ------------------------------------------------------------ accessors
    @property
    def path(self) -> str:
        return self._path

    @property
    def next_sequence(self) -> int:
        with self._lock:
            return self._next_sequence

    @property
    def pending(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._pending)

    @property
    def processed_count(self) -> int:
        with self._lock:
            return len(self._processed)

    def is_processed(self, deposit_id: str) -> bool:
        with self._lock:
            return deposit_id in self._processed

    def snapshot(self) -> StateSnapshot:
        with self._lock:
            return self._snapshot_locked()

    # ------------------------------------------------------------ mutations
    def reserve_sequence(self, deposit_id: str) -> int:
        """Bind ``deposit_id`` to a sequence number, durably.

        Repeated calls for the same pending deposit return the same sequence
        without touching disk.
        """
        with self._lock:
            existing = self._pending.get(deposit_id)
            if existing is not None:
                return existing
            if deposit_id in self._processed:
                raise AlreadyProcessedError(deposit_id)

            sequence = self._next_sequence
            self._next_sequence = sequence + 1
            self._pending[deposit_id] = sequence
            try:
                self._persist_locked()
            except PersistenceError:
                del self._pending[deposit_id]
                self._next_sequence = sequence
                raise

        logger.info(
            f"Reserved sequence {sequence} for deposit {deposit_id}",
            extra={"deposit_id": deposit_id, "sequence": sequence},
        )
        return sequence

    def clear_reservation(self, deposit_id: str):
        """Move ``deposit_id`` from pending into processed and persist.

        Clearing an id with no pending reservation changes nothing but still
        persists the snapshot.
        """
        with self._lock:
            previous = self._pending.pop(deposit_id, None)
            if previous is not None:
                self._processed.add(deposit_id)
                self._processed_order.append(deposit_id)
            try:
                self._persist_locked()
            except PersistenceError:
                if previous is not None:
                    self._pending[deposit_id] = previous
                    self._processed.discard(deposit_id)
                    self._processed_order.pop()
                raise

        if previous is None:
            logger.debug(f"No pending reservation for {deposit_id}; nothing to clear")
            return
        logger.info(
            f"Deposit {deposit_id} marked processed",
            extra={"deposit_id": deposit_id, "sequence": previous},
        )

    def advance_sequence(self, minimum: int) -> bool:
        """Raise the counter to ``minimum`` if it is behind. Never lowers it."""
        with self._lock:
            previous = self._next_sequence
            if minimum <= previous:
                return False
            self._next_sequence = minimum
            try:
                self._persist_locked()
            except PersistenceError:
                self._next_sequence = previous
                raise

        logger.info(f"Advanced next_mint_counter from {previous} to {minimum}")
        return True

    def save(self):
        """Persist the full snapshot"""
        with self._lock:
            self._persist_locked()

    # -------------------------------------------------------------- helpers
    def _snapshot_locked(self) -> StateSnapshot:
        return StateSnapshot(
            next_mint_counter=self._next_sequence,
            processed_deposits=list(self._processed_order),
            pending_deposits=dict(self._pending),
        )

    def _persist_locked(self):
        data = json.dumps(self._snapshot_locked().model_dump(), indent=2)
        tmp_path = f"{self._path}.tmp"
        try:
            directory = os.path.dirname(os.path.abspath(self._path))
            os.makedirs(directory, exist_ok=True)
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self._path)
        except OSError as e:
            logger.error(f"Failed to persist state to {self._path}: {e}")
            raise PersistenceError(f"Failed to write state file {self._path}: {e}") from e
