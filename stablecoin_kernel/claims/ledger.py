"""
Claim Ledger: one irreversible token disbursement per eligible address.

State machine per address:
  NEVER_CLAIMED -> MINT_PENDING -> CLAIMED(amount, tx, timestamp)
  MINT_PENDING -> NEVER_CLAIMED        (mint reverted or never broadcast)

Behavioral Contract:
- A ClaimRecord is written only after the mint confirmed successfully, and
  it is durable before ``claim`` returns.
- Concurrent claims for one address mint at most once: a per-address lock
  in this process, a check-and-set reservation in the store, and the
  on-chain balance as a last fallback. Only the SQLite store makes the
  reservation atomic across OS processes; the JSON store serializes
  within one process.
- XP worth less than one whole token is not claimable.
- A confirmation timeout keeps the reservation with its tx hash. The next
  check or claim for that address re-reads the receipt and settles it.
- Once broadcast, a mint is settled even if the caller goes away.
"""

import asyncio
import logging
import time
import weakref
from pathlib import Path
from typing import Callable, List, Optional

from stablecoin_kernel.chain.token import TokenAdapter
from stablecoin_kernel.claims.sqlite_store import SqliteClaimStore
from stablecoin_kernel.claims.store import ClaimStore, JsonClaimStore
from stablecoin_kernel.eligibility.policy import claim_amount, valid_xp
from stablecoin_kernel.errors import (
    AlreadyClaimed,
    ErrorKind,
    InvalidAddress,
    KernelError,
    Misconfigured,
)
from stablecoin_kernel.models.address import normalize_address
from stablecoin_kernel.models.claims import ClaimRecord, ClaimResult, ClaimStatus, PendingClaim
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.outcome import Outcome
from stablecoin_kernel.models.whitelist import ConfirmationStatus
from stablecoin_kernel.reputation.client import ScoreProviderClient

logger = logging.getLogger(__name__)

ALREADY_CLAIMED_MESSAGE = "You have already claimed your $ethosUSD"
NO_PROFILE_MESSAGE = (
    "No Ethos profile found. Create one at ethos.network to earn Contributor XP."
)
NO_XP_MESSAGE = (
    "You have an Ethos profile but no Contributor XP yet. "
    "Earn XP by contributing to Ethos!"
)
IN_FLIGHT_MESSAGE = "A claim for this address is already being processed"


def build_claim_store(config: KernelConfig) -> ClaimStore:
    """Claim store for the configured backend."""
    if config.claims_backend == "sqlite":
        path = Path(config.claims_path).with_suffix(".db")
        path.parent.mkdir(parents=True, exist_ok=True)
        return SqliteClaimStore(str(path))
    return JsonClaimStore(config.claims_path)


class ClaimLedger:
    """Eligibility checks, mints and the durable record of who claimed."""

    def __init__(
        self,
        config: KernelConfig,
        provider: ScoreProviderClient,
        token: TokenAdapter,
        store: ClaimStore,
        clock: Callable[[], float] = time.time,
        receipt_poll_seconds: float = 2.0,
    ):
        self.config = config
        self.provider = provider
        self.token = token
        self.store = store
        self.receipt_poll_seconds = receipt_poll_seconds
        self._clock = clock
        # An entry lives only while some claim holds or awaits its lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _lock_for(self, address: str) -> asyncio.Lock:
        lock = self._locks.get(address)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[address] = lock
        return lock

    # -- Reads --

    def get_claim_record(self, address: str) -> Optional[ClaimRecord]:
        return self.store.get(normalize_address(address))

    def get_all_claims(self) -> List[ClaimRecord]:
        return self.store.load_all()

    def get_total_claimed(self) -> int:
        return sum(record.amount for record in self.store.load_all())

    def get_pending_claims(self) -> List[PendingClaim]:
        return self.store.list_reservations()

    async def check_claimable(self, address: str) -> ClaimStatus:
        """
        Can ``address`` claim, and how much?

        Order: outstanding reservation, on-chain balance, local record,
        contributor XP, then a plain profile lookup to explain a refusal.
        """
        try:
            address = normalize_address(address)
        except InvalidAddress as e:
            return ClaimStatus(address=str(address), error=str(e), error_kind=e.kind)

        reservation = self.store.get_reservation(address)
        if reservation is not None:
            settled = await self._settle_reservation(reservation)
            if isinstance(settled, ClaimRecord):
                return _claimed_status(address, settled)
            if settled is not None:
                return settled

        try:
            balance = await self.token.balance_of(address)
        except KernelError as e:
            return ClaimStatus(
                address=address, error=f"Failed to read token balance: {e}", error_kind=e.kind
            )

        record = self.store.get(address)
        if balance > 0 or record is not None:
            return _claimed_status(address, record)

        try:
            user = await self.provider.get_user_data(address)
            amount = claim_amount(user.xp, self.config.claim_unit) if user is not None else 0
            if amount > 0:
                return ClaimStatus(
                    address=address,
                    can_claim=True,
                    amount=amount,
                    xp=user.xp,
                    score=user.score,
                )
            score = await self.provider.get_score(address)
        except KernelError as e:
            return ClaimStatus(
                address=address, error=f"Failed to fetch reputation: {e}", error_kind=e.kind
            )

        if score is None:
            return ClaimStatus(
                address=address, error=NO_PROFILE_MESSAGE, error_kind=ErrorKind.PROFILE_NOT_FOUND
            )
        return ClaimStatus(
            address=address,
            xp=valid_xp(user.xp) if user else 0.0,
            score=score.score,
            error=NO_XP_MESSAGE,
            error_kind=ErrorKind.NO_XP,
        )

    async def _settle_reservation(self, reservation: PendingClaim):
        """
        Resolve a reservation left by an earlier claim.

        Returns the ClaimRecord if its mint confirmed, a ClaimStatus if it is
        still in flight, or None once the reservation has been released.
        """
        address = reservation.address
        if reservation.tx_hash is None:
            age_seconds = (self._now_ms() - reservation.reserved_at) / 1000
            if age_seconds < self.config.confirmation_timeout_seconds:
                return _in_flight_status(address, reservation)
            # Never broadcast. If it had been, the balance check catches it.
            logger.warning("Releasing stale claim reservation for %s", address)
            self.store.release(address)
            return None

        receipt = await self.token.await_confirmation(
            reservation.tx_hash, timeout=self.receipt_poll_seconds
        )
        if receipt.status == ConfirmationStatus.SUCCESS:
            return self.record_claim(
                address, reservation.amount, reservation.xp, reservation.tx_hash
            )
        if receipt.status == ConfirmationStatus.REVERTED:
            logger.warning("Pending mint %s for %s reverted", reservation.tx_hash, address)
            self.store.release(address)
            return None
        return _in_flight_status(address, reservation)

    # -- Writes --

    def record_claim(self, address: str, amount: int, xp: float, tx_hash: str) -> ClaimRecord:
        """Persist a confirmed claim. The only write path for records."""
        record = ClaimRecord(
            address=address, amount=amount, xp=xp, tx_hash=tx_hash, timestamp=self._now_ms()
        )
        return self.store.put(record)

    async def claim(self, address: str) -> ClaimResult:
        """Mint the claimable amount to ``address``, at most once."""
        try:
            address = normalize_address(address)
        except InvalidAddress as e:
            return ClaimResult(
                address=str(address), outcome=Outcome.REJECTED, error=str(e), error_kind=e.kind
            )

        try:
            self.config.require_policy_id()
            self.config.require_token_address()
            self.config.require_admin_key()
        except Misconfigured as e:
            logger.error("Claim refused: %s", e)
            return ClaimResult(
                address=address, outcome=Outcome.REJECTED, error=str(e), error_kind=e.kind
            )

        lock = self._lock_for(address)
        async with lock:
            status = await self.check_claimable(address)
            if status.already_claimed:
                return ClaimResult(
                    address=address,
                    outcome=Outcome.REJECTED,
                    already_claimed=True,
                    claim_record=status.claim_record,
                    xp=status.xp,
                    error=ALREADY_CLAIMED_MESSAGE,
                    error_kind=ErrorKind.ALREADY_CLAIMED,
                )
            if not status.can_claim:
                return ClaimResult(
                    address=address,
                    outcome=status.outcome,
                    tx_hash=status.pending_tx_hash,
                    xp=status.xp,
                    error=status.error or "Not eligible to claim",
                    error_kind=status.error_kind or ErrorKind.NOT_ELIGIBLE,
                )

            pending = PendingClaim(
                address=address,
                amount=status.amount,
                xp=status.xp,
                reserved_at=self._now_ms(),
            )
            if not self.store.reserve(pending):
                existing = self.store.get(address)
                if existing is not None:
                    return ClaimResult(
                        address=address,
                        outcome=Outcome.REJECTED,
                        already_claimed=True,
                        claim_record=existing,
                        error=ALREADY_CLAIMED_MESSAGE,
                        error_kind=ErrorKind.ALREADY_CLAIMED,
                    )
                return ClaimResult(
                    address=address,
                    outcome=Outcome.RETRYABLE,
                    error=IN_FLIGHT_MESSAGE,
                    error_kind=ErrorKind.CLAIM_IN_FLIGHT,
                )

            logger.info(
                "Processing claim for %s: %d units (%s XP)", address, pending.amount, pending.xp
            )
            # Shielded: a broadcast mint is settled even if the request is abandoned.
            return await asyncio.shield(self._mint_and_settle(pending))

    async def _mint_and_settle(self, pending: PendingClaim) -> ClaimResult:
        address = pending.address
        try:
            tx_hash = await self.token.mint(address, pending.amount)
        except KernelError as e:
            self.store.release(address)
            return ClaimResult(
                address=address,
                outcome=Outcome.RETRYABLE if e.retryable else Outcome.REJECTED,
                amount=pending.amount,
                xp=pending.xp,
                error=f"Mint failed: {e}",
                error_kind=e.kind,
            )

        self.store.attach_tx(address, tx_hash)
        receipt = await self.token.await_confirmation(tx_hash)
        result = ClaimResult(
            address=address,
            outcome=Outcome.SUCCESS,
            tx_hash=tx_hash,
            amount=pending.amount,
            xp=pending.xp,
            block_number=receipt.block_number,
        )

        if receipt.status == ConfirmationStatus.REVERTED:
            self.store.release(address)
            result.outcome = Outcome.REJECTED
            result.error = "Mint transaction failed"
            result.error_kind = ErrorKind.CHAIN_WRITE_REVERTED
            return result

        if receipt.status == ConfirmationStatus.TIMEOUT:
            logger.warning("Mint %s for %s unconfirmed; reservation kept", tx_hash, address)
            result.outcome = Outcome.RETRYABLE
            result.error = "Mint submitted but not yet confirmed. Check back shortly."
            result.error_kind = ErrorKind.CONFIRMATION_TIMEOUT
            return result

        try:
            result.claim_record = self.record_claim(address, pending.amount, pending.xp, tx_hash)
        except AlreadyClaimed as e:
            # Mint confirmed but a different record exists. Should be unreachable.
            logger.error("Claim record conflict for %s after mint %s: %s", address, tx_hash, e)
            result.error = str(e)
            result.error_kind = e.kind
        return result


def _claimed_status(address: str, record: Optional[ClaimRecord]) -> ClaimStatus:
    return ClaimStatus(
        address=address,
        already_claimed=True,
        xp=record.xp if record else 0.0,
        claim_record=record,
    )


def _in_flight_status(address: str, reservation: PendingClaim) -> ClaimStatus:
    return ClaimStatus(
        address=address,
        amount=reservation.amount,
        xp=reservation.xp,
        pending_tx_hash=reservation.tx_hash,
        error=IN_FLIGHT_MESSAGE,
        error_kind=ErrorKind.CLAIM_IN_FLIGHT,
    )
