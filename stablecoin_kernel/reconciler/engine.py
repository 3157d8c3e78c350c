"""
Whitelist Reconciliation Engine: keeps on-chain authorization in line with
reputation-derived eligibility.

States per address:
  desired (score >= minimum) x current (on-chain) -> KEEP | ADD | REMOVE | NONE

Behavioral Contract:
- Level-triggered: desired state is recomputed from scratch on every pass,
  so a second pass over an unchanged world issues no writes.
- Scores come from exactly one bulk fetch per pass. If the provider is down,
  the pass issues zero writes and reports a top-level error. An address
  whose entry has no usable score is skipped, its authorization untouched.
- A failure on one address (read, write, revert, timeout) is recorded against
  that address and never blocks the others.
- Only the configured policy id is read or written. The engine never rebinds
  the token's transfer policy.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from croniter import croniter

from stablecoin_kernel.chain.whitelist import WhitelistAdapter
from stablecoin_kernel.eligibility.policy import is_eligible
from stablecoin_kernel.errors import (
    ErrorKind,
    InvalidAddress,
    KernelError,
    Misconfigured,
    ProviderUnavailable,
)
from stablecoin_kernel.models.address import is_valid_address, normalize_address
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.outcome import Outcome
from stablecoin_kernel.models.reputation import ReputationSnapshot
from stablecoin_kernel.models.whitelist import (
    AddResult,
    ConfirmationStatus,
    SyncAction,
    SyncResult,
)
from stablecoin_kernel.reconciler.seeds import load_seed_addresses
from stablecoin_kernel.reputation.client import ScoreProviderClient

logger = logging.getLogger(__name__)


def plan_action(desired: bool, current: bool) -> SyncAction:
    """Classify one address from its desired and current authorization."""
    if desired and current:
        return SyncAction.KEEP
    if desired:
        return SyncAction.ADD
    if current:
        return SyncAction.REMOVE
    return SyncAction.NONE


class AddressOutcome:
    """What happened to one address during a pass."""

    def __init__(self, address: str, action: SyncAction):
        self.address = address
        self.action = action
        self.tx_hash: Optional[str] = None
        self.status: Optional[ConfirmationStatus] = None
        self.error: Optional[str] = None
        self.error_kind: Optional[ErrorKind] = None

    @property
    def authorized(self) -> bool:
        """Confirmed whitelisted once the pass is over."""
        if self.action == SyncAction.KEEP:
            return True
        return self.action == SyncAction.ADD and self.status == ConfirmationStatus.SUCCESS

    def fail(self, kind: ErrorKind, message: str) -> "AddressOutcome":
        self.error_kind = kind
        self.error = message
        return self


class WhitelistReconciler:
    """
    Reconciles the whitelist policy against reputation scores.

    One instance per process; ``sync`` may be triggered by the CLI, the HTTP
    endpoint or the scheduled loop. Concurrent passes are serialized.
    """

    def __init__(
        self,
        config: KernelConfig,
        provider: ScoreProviderClient,
        adapter: WhitelistAdapter,
    ):
        self.config = config
        self.provider = provider
        self.adapter = adapter

        self._pass_lock = asyncio.Lock()
        self._running = False
        self._last_result: Optional[SyncResult] = None

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self._last_result

    # -- Full pass --

    async def sync(
        self,
        addresses: Optional[Iterable[str]] = None,
        eligibility: Optional[Dict[str, bool]] = None,
    ) -> SyncResult:
        """
        Run one reconciliation pass.

        ``addresses`` defaults to the seed set. ``eligibility`` overrides the
        score fetch with a precomputed desired state; addresses missing from
        it are skipped.
        """
        async with self._pass_lock:
            result = SyncResult(started_at=datetime.now(timezone.utc))
            try:
                await self._sync(result, addresses, eligibility)
            finally:
                result.finished_at = datetime.now(timezone.utc)
                self._last_result = result

        logger.info(
            "Sync finished: checked=%d added=%d removed=%d errors=%d timed_out=%d",
            result.checked, len(result.added), len(result.removed),
            len(result.errors), len(result.timed_out),
        )
        return result

    async def _sync(
        self,
        result: SyncResult,
        addresses: Optional[Iterable[str]],
        eligibility: Optional[Dict[str, bool]],
    ) -> None:
        candidates = self._resolve_candidates(result, addresses)
        result.checked = len(candidates)

        try:
            result.policy_id = self.config.require_policy_id()
        except Misconfigured as e:
            logger.error("Sync refused: %s", e)
            result.fail(e.kind, str(e))
            return

        if not candidates:
            return

        if eligibility is not None:
            overrides = {a.lower(): bool(v) for a, v in eligibility.items()}
            desired = {}
            for address in candidates:
                if address in overrides:
                    desired[address] = overrides[address]
                else:
                    result.record_failure(
                        address, ErrorKind.NOT_ELIGIBLE,
                        f"{address}: no eligibility given, skipped",
                    )
        else:
            unusable: Dict[str, ProviderUnavailable] = {}
            try:
                scores = await self.provider.get_scores(candidates, failures=unusable)
            except ProviderUnavailable as e:
                logger.error("Score fetch failed, no changes made: %s", e)
                result.fail(e.kind, f"Failed to fetch scores: {e}")
                return

            snapshots = {
                address: ReputationSnapshot(address=address, score=data.score)
                for address, data in scores.items()
                if data is not None
            }
            desired = {}
            for address in candidates:
                if address in unusable:
                    # Unknown eligibility: leave on-chain state alone.
                    result.record_failure(
                        address, ErrorKind.PROVIDER_UNAVAILABLE,
                        f"{address}: score unavailable, skipped: {unusable[address]}",
                    )
                    continue
                snapshot = snapshots.get(address)
                score = snapshot.score if snapshot is not None else None
                result.scores[address] = score
                desired[address] = is_eligible(score, self.config.min_score)

        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        ordered = [a for a in candidates if a in desired]
        outcomes = await asyncio.gather(
            *(self._guarded(semaphore, a, desired[a]) for a in ordered)
        )

        for outcome in outcomes:
            self._collect(result, outcome)

    def _resolve_candidates(
        self, result: SyncResult, addresses: Optional[Iterable[str]]
    ) -> List[str]:
        if addresses is None:
            return load_seed_addresses(self.config)

        candidates: List[str] = []
        for raw in addresses:
            if not is_valid_address(raw):
                result.errors.append(f"{raw}: invalid address")
                continue
            address = raw.lower()
            if address not in candidates:
                candidates.append(address)
        return candidates

    @staticmethod
    def _collect(result: SyncResult, outcome: AddressOutcome) -> None:
        address = outcome.address
        if outcome.authorized:
            result.authorized.append(address)
        if outcome.error_kind is not None:
            if outcome.error_kind == ErrorKind.CONFIRMATION_TIMEOUT:
                result.timed_out.append(address)
            result.record_failure(address, outcome.error_kind, outcome.error or address)
            return
        if outcome.action == SyncAction.ADD:
            result.added.append(address)
        elif outcome.action == SyncAction.REMOVE:
            result.removed.append(address)

    # -- Per-address --

    async def _guarded(
        self, semaphore: asyncio.Semaphore, address: str, desired: bool
    ) -> AddressOutcome:
        async with semaphore:
            try:
                return await self._reconcile_address(address, desired)
            except Exception as e:
                # Isolation boundary: record and move on.
                logger.exception("Unexpected failure reconciling %s", address)
                return AddressOutcome(address, SyncAction.SKIP).fail(
                    ErrorKind.CHAIN_WRITE_FAILED, f"{address}: {e}"
                )

    async def _reconcile_address(self, address: str, desired: bool) -> AddressOutcome:
        try:
            current = await self.adapter.is_authorized(address)
        except KernelError as e:
            logger.warning("Authorization read failed for %s: %s", address, e)
            return AddressOutcome(address, SyncAction.SKIP).fail(
                e.kind, f"{address}: failed to read authorization: {e}"
            )

        outcome = AddressOutcome(address, plan_action(desired, current))
        if outcome.action not in (SyncAction.ADD, SyncAction.REMOVE):
            return outcome

        verb = "add" if outcome.action == SyncAction.ADD else "remove"
        try:
            outcome.tx_hash = await self.adapter.set_authorization(address, desired)
        except KernelError as e:
            logger.warning("Failed to %s %s: %s", verb, address, e)
            return outcome.fail(e.kind, f"{address}: failed to {verb}: {e}")

        receipt = await self.adapter.await_confirmation(outcome.tx_hash)
        outcome.status = receipt.status
        if receipt.status == ConfirmationStatus.REVERTED:
            return outcome.fail(
                ErrorKind.CHAIN_WRITE_REVERTED,
                f"{address}: {verb} transaction {outcome.tx_hash} reverted",
            )
        if receipt.status == ConfirmationStatus.TIMEOUT:
            return outcome.fail(
                ErrorKind.CONFIRMATION_TIMEOUT,
                f"{address}: {verb} transaction {outcome.tx_hash} not confirmed in time",
            )
        return outcome

    # -- Single address --

    async def add_if_eligible(self, address: str) -> AddResult:
        """Authorize one address if its score clears the threshold."""
        try:
            address = normalize_address(address)
        except InvalidAddress as e:
            return AddResult(
                address=str(address), outcome=Outcome.REJECTED,
                error=str(e), error_kind=e.kind,
            )

        try:
            self.config.require_policy_id()
        except Misconfigured as e:
            return AddResult(
                address=address, outcome=Outcome.REJECTED, error=str(e), error_kind=e.kind
            )

        try:
            data = await self.provider.get_score(address)
        except ProviderUnavailable as e:
            return AddResult(
                address=address, outcome=Outcome.RETRYABLE,
                error=f"Failed to fetch score: {e}", error_kind=e.kind,
            )

        if data is None:
            return AddResult(
                address=address, outcome=Outcome.REJECTED,
                error="No reputation profile found for this address",
                error_kind=ErrorKind.PROFILE_NOT_FOUND,
            )
        if not is_eligible(data.score, self.config.min_score):
            return AddResult(
                address=address, outcome=Outcome.REJECTED, score=data.score,
                error=f"Score {data.score} is below minimum {self.config.min_score}",
                error_kind=ErrorKind.NOT_ELIGIBLE,
            )

        outcome = await self._reconcile_address(address, True)
        result = AddResult(
            address=address,
            outcome=Outcome.SUCCESS,
            score=data.score,
            tx_hash=outcome.tx_hash,
            already_authorized=outcome.action == SyncAction.KEEP,
        )
        if outcome.error_kind is not None:
            result.error = outcome.error
            result.error_kind = outcome.error_kind
            result.outcome = (
                Outcome.REJECTED
                if outcome.error_kind == ErrorKind.CHAIN_WRITE_REVERTED
                else Outcome.RETRYABLE
            )
        return result

    # -- Scheduled loop --

    async def run_async(
        self,
        stop_event: Optional[asyncio.Event] = None,
        schedule: Optional[str] = None,
        interval_seconds: float = 3600.0,
    ) -> None:
        """
        Run sync passes until ``stop_event`` is set.

        With a cron ``schedule`` (falls back to ``config.sync_schedule``)
        each pass fires at the next cron tick; otherwise every
        ``interval_seconds``.
        """
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()
        schedule = schedule or self.config.sync_schedule
        cron = croniter(schedule, datetime.now(timezone.utc)) if schedule else None

        first = True
        try:
            while not stop_event.is_set():
                if cron is not None:
                    next_run = cron.get_next(datetime)
                    delay = (next_run - datetime.now(timezone.utc)).total_seconds()
                else:
                    delay = 0.0 if first else interval_seconds
                first = False

                if delay > 0:
                    try:
                        await asyncio.wait_for(stop_event.wait(), timeout=delay)
                        break
                    except asyncio.TimeoutError:
                        pass

                await self.sync()
        finally:
            self._running = False
