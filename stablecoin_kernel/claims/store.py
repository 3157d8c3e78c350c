"""
Claim storage: durable one-time claim records plus in-flight reservations.

Behavioral Contract:
- At most one ClaimRecord per address. Records are never modified or deleted.
- ``put`` is durable before it returns.
- ``reserve`` is a check-and-set. It fails if the address already has a
  record or an outstanding reservation. The JSON store is atomic only within
  one process; the SQLite store is atomic across processes sharing the file.
- Every read goes back to storage; nothing is cached between calls.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, runtime_checkable

from stablecoin_kernel.errors import AlreadyClaimed
from stablecoin_kernel.models.claims import ClaimRecord, PendingClaim

logger = logging.getLogger(__name__)


@runtime_checkable
class ClaimStore(Protocol):
    """Persistence seam for the claim ledger."""

    def get(self, address: str) -> Optional[ClaimRecord]:
        ...

    def load_all(self) -> List[ClaimRecord]:
        ...

    def put(self, record: ClaimRecord) -> ClaimRecord:
        """Persist a record and clear the address's reservation. Raises AlreadyClaimed."""
        ...

    def reserve(self, pending: PendingClaim) -> bool:
        ...

    def attach_tx(self, address: str, tx_hash: str) -> None:
        ...

    def get_reservation(self, address: str) -> Optional[PendingClaim]:
        ...

    def list_reservations(self) -> List[PendingClaim]:
        ...

    def release(self, address: str) -> None:
        ...

    def close(self) -> None:
        ...


def _atomic_write_json(path: Path, data) -> None:
    """Write JSON to a sibling temp file, then rename over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as file:
            json.dump(data, file, indent=2)
            file.flush()
            os.fsync(file.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class JsonClaimStore:
    """
    Claims kept in a JSON list file, reservations in a sibling file.

    The claims file holds ``{address, amount, xp, txHash, timestamp}``
    entries with ``amount`` as a decimal string. It is rewritten whole on
    every insert.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self.pending_path = self.path.with_name(f"{self.path.stem}.pending.json")
        self._lock = threading.Lock()

    # -- File access --

    def _read_claims(self) -> List[dict]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as file:
            data = json.load(file)
        if not isinstance(data, list):
            raise ValueError(f"Claims file {self.path} does not hold a list")
        return data

    def _read_pending(self) -> Dict[str, dict]:
        if not self.pending_path.exists():
            return {}
        with self.pending_path.open("r", encoding="utf-8") as file:
            data = json.load(file)
        return data if isinstance(data, dict) else {}

    def _find(self, entries: List[dict], address: str) -> Optional[ClaimRecord]:
        for entry in entries:
            if str(entry.get("address", "")).lower() == address:
                return ClaimRecord.from_json_entry(entry)
        return None

    # -- Records --

    def get(self, address: str) -> Optional[ClaimRecord]:
        return self._find(self._read_claims(), address.lower())

    def load_all(self) -> List[ClaimRecord]:
        return [ClaimRecord.from_json_entry(e) for e in self._read_claims()]

    def put(self, record: ClaimRecord) -> ClaimRecord:
        with self._lock:
            entries = self._read_claims()
            existing = self._find(entries, record.address)
            if existing is not None:
                if existing.tx_hash != record.tx_hash:
                    raise AlreadyClaimed(
                        f"Address already claimed in {existing.tx_hash}", address=record.address
                    )
                record = existing
            else:
                entries.append(record.to_json_entry())
                _atomic_write_json(self.path, entries)
                logger.info("Claim recorded for %s: %s", record.address, record.tx_hash)

            pending = self._read_pending()
            if pending.pop(record.address, None) is not None:
                _atomic_write_json(self.pending_path, pending)
            return record

    # -- Reservations --

    def reserve(self, pending: PendingClaim) -> bool:
        with self._lock:
            if self._find(self._read_claims(), pending.address) is not None:
                return False
            reservations = self._read_pending()
            if pending.address in reservations:
                return False
            reservations[pending.address] = pending.model_dump()
            _atomic_write_json(self.pending_path, reservations)
            return True

    def attach_tx(self, address: str, tx_hash: str) -> None:
        address = address.lower()
        with self._lock:
            reservations = self._read_pending()
            if address not in reservations:
                return
            reservations[address]["tx_hash"] = tx_hash
            _atomic_write_json(self.pending_path, reservations)

    def get_reservation(self, address: str) -> Optional[PendingClaim]:
        entry = self._read_pending().get(address.lower())
        return PendingClaim(**entry) if entry else None

    def list_reservations(self) -> List[PendingClaim]:
        return [PendingClaim(**entry) for entry in self._read_pending().values()]

    def release(self, address: str) -> None:
        address = address.lower()
        with self._lock:
            reservations = self._read_pending()
            if reservations.pop(address, None) is not None:
                _atomic_write_json(self.pending_path, reservations)

    def close(self) -> None:
        """Nothing held open: every call opens its own file handle."""
