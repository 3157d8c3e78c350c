"""
SQLite claim store.

Same contract as JsonClaimStore. The address primary keys make a second
record or a second reservation impossible at the database level.
"""

import sqlite3
import threading
from typing import List, Optional

from stablecoin_kernel.errors import AlreadyClaimed
from stablecoin_kernel.models.claims import ClaimRecord, PendingClaim

class SqliteClaimStore:
    """
    Claims and reservations in two SQLite tables.
    Amounts are stored as text: they can exceed 64-bit integers.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS claims (
                address TEXT PRIMARY KEY,
                amount TEXT NOT NULL,
                xp REAL NOT NULL,
                tx_hash TEXT NOT NULL,
                timestamp INTEGER NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS pending_claims (
                address TEXT PRIMARY KEY,
                amount TEXT NOT NULL,
                xp REAL NOT NULL,
                reserved_at INTEGER NOT NULL,
                tx_hash TEXT
            )
        """)
        self._conn.commit()

    def _deserialize(self, row: sqlite3.Row) -> ClaimRecord:
        return ClaimRecord(
            address=row["address"],
            amount=int(row["amount"]),
            xp=row["xp"],
            tx_hash=row["tx_hash"],
            timestamp=row["timestamp"],
        )

    def _deserialize_pending(self, row: sqlite3.Row) -> PendingClaim:
        return PendingClaim(
            address=row["address"],
            amount=int(row["amount"]),
            xp=row["xp"],
            reserved_at=row["reserved_at"],
            tx_hash=row["tx_hash"],
        )

    # -- Records --

    def get(self, address: str) -> Optional[ClaimRecord]:
        row = self._conn.execute(
            "SELECT * FROM claims WHERE address = ?", (address.lower(),)
        ).fetchone()
        return self._deserialize(row) if row else None

    def load_all(self) -> List[ClaimRecord]:
        rows = self._conn.execute("SELECT * FROM claims ORDER BY rowid").fetchall()
        return [self._deserialize(r) for r in rows]

    def put(self, record: ClaimRecord) -> ClaimRecord:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO claims (address, amount, xp, tx_hash, timestamp) "
                        "VALUES (?, ?, ?, ?, ?)",
                        (record.address, str(record.amount), record.xp,
                         record.tx_hash, record.timestamp),
                    )
                    self._conn.execute(
                        "DELETE FROM pending_claims WHERE address = ?", (record.address,)
                    )
                return record
            except sqlite3.IntegrityError:
                existing = self.get(record.address)
                if existing is None or existing.tx_hash != record.tx_hash:
                    raise AlreadyClaimed(
                        f"Address already claimed in {existing.tx_hash if existing else 'unknown'}",
                        address=record.address,
                    )
                with self._conn:
                    self._conn.execute(
                        "DELETE FROM pending_claims WHERE address = ?", (record.address,)
                    )
                return existing

    # -- Reservations --

    def reserve(self, pending: PendingClaim) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO pending_claims (address, amount, xp, reserved_at, tx_hash)
                SELECT ?, ?, ?, ?, ?
                WHERE NOT EXISTS (SELECT 1 FROM claims WHERE address = ?)
                """,
                (pending.address, str(pending.amount), pending.xp,
                 pending.reserved_at, pending.tx_hash, pending.address),
            )
            return cursor.rowcount == 1

    def attach_tx(self, address: str, tx_hash: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE pending_claims SET tx_hash = ? WHERE address = ?",
                (tx_hash, address.lower()),
            )

    def get_reservation(self, address: str) -> Optional[PendingClaim]:
        row = self._conn.execute(
            "SELECT * FROM pending_claims WHERE address = ?", (address.lower(),)
        ).fetchone()
        return self._deserialize_pending(row) if row else None

    def list_reservations(self) -> List[PendingClaim]:
        rows = self._conn.execute("SELECT * FROM pending_claims ORDER BY rowid").fetchall()
        return [self._deserialize_pending(r) for r in rows]

    def release(self, address: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "DELETE FROM pending_claims WHERE address = ?", (address.lower(),)
            )

    def close(self) -> None:
        self._conn.close()
