"""
Stablecoin Kernel API: FastAPI endpoints.

Exposes the kernel's functionality via a REST API for:
- Claim status and signed claims
- Whitelist sync and single-address admission
- Score lookups for the dashboard
- Claim and policy reporting
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from stablecoin_kernel.chain.rpc import LedgerRpc
from stablecoin_kernel.chain.units import format_token_amount
from stablecoin_kernel.claims.store import ClaimStore
from stablecoin_kernel.eligibility.policy import is_eligible, score_class, score_level
from stablecoin_kernel.errors import (
    ErrorKind,
    InvalidAddress,
    InvalidSignature,
    KernelError,
    SignatureExpired,
)
from stablecoin_kernel.kernel import Kernel
from stablecoin_kernel.models.address import normalize_address, truncate_address
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.outcome import Outcome
from stablecoin_kernel.reputation.client import ScoreProviderClient, profile_url

logger = logging.getLogger(__name__)


# --- Request/Response Models ---

class ClaimRequest(BaseModel):
    address: Optional[str] = None
    signature: Optional[str] = None
    timestamp: Optional[int] = None


class SyncRequest(BaseModel):
    addresses: Optional[List[str]] = None


class AddRequest(BaseModel):
    address: str


class ScoresRequest(BaseModel):
    addresses: List[str]


class ClaimResponse(BaseModel):
    success: bool
    outcome: Outcome
    address: str
    tx_hash: Optional[str] = None
    amount: str = "0"
    amount_formatted: str = "0"
    xp: float = 0.0
    block_number: Optional[int] = None
    explorer_url: Optional[str] = None
    already_claimed: bool = False
    claim_record: Optional[dict] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


# Claim error kind -> HTTP status
_CLAIM_STATUS = {
    ErrorKind.ALREADY_CLAIMED: 409,
    ErrorKind.CLAIM_IN_FLIGHT: 409,
    ErrorKind.CONFIRMATION_TIMEOUT: 202,
    ErrorKind.CHAIN_WRITE_REVERTED: 500,
    ErrorKind.PROVIDER_UNAVAILABLE: 503,
    ErrorKind.CHAIN_READ_FAILED: 503,
    ErrorKind.CHAIN_WRITE_FAILED: 503,
    ErrorKind.MISCONFIGURED: 503,
}


def _status_for(kind: Optional[ErrorKind]) -> int:
    if kind is None:
        return 200
    return _CLAIM_STATUS.get(kind, 400)


def _error(status_code: int, error: KernelError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error.message, "error_kind": error.kind.value},
    )


# --- Application Factory ---

def create_app(
    config: Optional[KernelConfig] = None,
    *,
    rpc: Optional[LedgerRpc] = None,
    provider: Optional[ScoreProviderClient] = None,
    claim_store: Optional[ClaimStore] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    config = config or KernelConfig.from_env()
    kernel = Kernel(config, rpc=rpc, provider=provider, claim_store=claim_store, clock=clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await kernel.close()

    app = FastAPI(
        title="Stablecoin Kernel API",
        description="Reputation-gated stablecoin: whitelist sync and one-time claims",
        version="0.1.0-alpha",
        lifespan=lifespan,
    )

    # Store components on app state for access in endpoints
    app.state.config = config
    app.state.kernel = kernel
    app.state.reconciler = kernel.reconciler
    app.state.ledger = kernel.ledger
    app.state.signature_gate = kernel.signature_gate

    def require_sync_key(authorization: Optional[str] = Header(None)) -> None:
        """Bearer check, only when SYNC_API_KEY is configured."""
        if config.sync_api_key and authorization != f"Bearer {config.sync_api_key}":
            raise HTTPException(401, "Unauthorized")

    # === CLAIMS ===

    @app.get("/api/claim-status")
    async def claim_status(address: Optional[str] = None):
        """Whether an address can claim, and how much."""
        if not address:
            raise HTTPException(400, "Address parameter required")
        try:
            address = normalize_address(address)
        except InvalidAddress:
            raise HTTPException(400, "Invalid address format")

        status = await kernel.ledger.check_claimable(address)
        payload = status.model_dump(mode="json")
        payload["amount"] = str(status.amount)
        payload["amount_formatted"] = format_token_amount(status.amount, config.token_decimals)
        payload["outcome"] = status.outcome.value
        if status.claim_record is not None:
            payload["claim_record"]["amount"] = str(status.claim_record.amount)
        return payload

    @app.post("/api/claim")
    async def claim(req: ClaimRequest):
        """Verify a signed claim and mint the claimable amount."""
        if not req.address:
            raise HTTPException(400, "Address required")
        if not req.signature or not req.timestamp:
            raise HTTPException(400, "Signature verification required")

        try:
            address = kernel.signature_gate.verify(req.address, req.signature, req.timestamp)
        except (InvalidAddress, SignatureExpired) as e:
            return _error(400, e)
        except InvalidSignature as e:
            return _error(403, e)

        result = await kernel.ledger.claim(address)
        response = ClaimResponse(
            success=result.outcome == Outcome.SUCCESS,
            outcome=result.outcome,
            address=result.address,
            tx_hash=result.tx_hash,
            amount=str(result.amount),
            amount_formatted=format_token_amount(result.amount, config.token_decimals),
            xp=result.xp,
            block_number=result.block_number,
            explorer_url=config.receipt_url(result.tx_hash) if result.tx_hash else None,
            already_claimed=result.already_claimed,
            claim_record=(
                result.claim_record.to_json_entry() if result.claim_record else None
            ),
            error=result.error,
            error_kind=result.error_kind,
        )
        status_code = 200 if result.outcome == Outcome.SUCCESS else _status_for(result.error_kind)
        return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))

    @app.get("/api/claims/stats")
    def claim_stats():
        """Totals over all recorded claims."""
        records = kernel.ledger.get_all_claims()
        total = sum(r.amount for r in records)
        return {
            "count": len(records),
            "total_claimed": str(total),
            "total_claimed_formatted": format_token_amount(total, config.token_decimals),
            "pending": len(kernel.ledger.get_pending_claims()),
            "claims": [r.to_json_entry() for r in records],
        }

    # === WHITELIST ===

    @app.post("/api/sync-whitelist", dependencies=[Depends(require_sync_key)])
    async def sync_whitelist(req: Optional[SyncRequest] = None):
        """Reconcile the whitelist for the given addresses, or the seed set."""
        addresses = req.addresses if req is not None else None
        result = await kernel.reconciler.sync(addresses)
        payload = result.to_payload()
        payload["success"] = result.error is None
        status_code = 503 if result.error is not None else 200
        return JSONResponse(status_code=status_code, content=payload)

    @app.post("/api/whitelist/add", dependencies=[Depends(require_sync_key)])
    async def add_to_whitelist(req: AddRequest):
        """Authorize one address if it is eligible."""
        result = await kernel.reconciler.add_if_eligible(req.address)
        if result.outcome == Outcome.SUCCESS:
            status_code = 200
        elif result.error_kind == ErrorKind.CONFIRMATION_TIMEOUT:
            status_code = 202
        elif result.outcome == Outcome.RETRYABLE or result.error_kind == ErrorKind.MISCONFIGURED:
            status_code = 503
        else:
            status_code = 400
        payload = result.model_dump(mode="json")
        if result.tx_hash:
            payload["explorer_url"] = config.receipt_url(result.tx_hash)
        return JSONResponse(status_code=status_code, content=payload)

    @app.get("/api/policy")
    async def policy():
        """Configured policy id against the token's bound policy."""
        token_policy_id = None
        error = None
        try:
            token_policy_id = await kernel.whitelist.get_token_policy()
        except KernelError as e:
            error = e.message
        return {
            "policy_id": config.policy_id,
            "configured": config.policy_id != 0,
            "token_address": config.token_address,
            "token_policy_id": token_policy_id,
            "bound": token_policy_id is not None and token_policy_id == config.policy_id,
            "registry_address": config.registry_address,
            "error": error,
        }

    # === SCORES ===

    @app.get("/api/score")
    async def score(address: Optional[str] = None):
        """Score, level, eligibility and on-chain status for one address."""
        if not address:
            raise HTTPException(400, "address parameter required")
        try:
            address = normalize_address(address)
        except InvalidAddress:
            raise HTTPException(400, "Invalid address format")

        try:
            data = await kernel.provider.get_score_cached(address)
        except KernelError as e:
            return _error(503, e)

        try:
            linked = await kernel.provider.get_linked_addresses(address)
        except KernelError as e:
            logger.warning("Linked address lookup failed for %s: %s", address, e)
            linked = [address]

        on_chain = None
        whitelisted_address = None
        try:
            on_chain = await kernel.whitelist.is_authorized_cached(address)
            whitelisted_address = await kernel.whitelist.find_authorized(linked)
        except KernelError as e:
            logger.warning("Authorization lookup failed for %s: %s", address, e)

        eligible = is_eligible(data.score if data else None, config.min_score)
        payload = {
            "address": address,
            "short_address": truncate_address(address),
            "score": data.score if data else None,
            "level": score_level(data.score).value if data else None,
            "score_class": score_class(data.score) if data else None,
            "is_eligible": eligible,
            "is_authorized": whitelisted_address is not None and eligible,
            "is_on_chain_authorized": on_chain,
            "has_any_whitelisted_address": whitelisted_address is not None,
            "whitelisted_address": whitelisted_address,
            "all_addresses": linked,
            "min_score": config.min_score,
            "profile_url": profile_url(address),
        }
        if data:
            payload["reviews"] = data.reviews
            payload["vouches"] = data.vouches
        return payload

    @app.post("/api/scores")
    async def scores(req: ScoresRequest):
        """Bulk score, level and eligibility."""
        try:
            found = await kernel.provider.get_scores(req.addresses)
        except InvalidAddress as e:
            return _error(400, e)
        except KernelError as e:
            return _error(503, e)

        results = []
        for address, data in found.items():
            results.append({
                "address": address,
                "score": data.score if data else None,
                "level": score_level(data.score).value if data else None,
                "is_eligible": is_eligible(data.score if data else None, config.min_score),
            })
        return {"results": results, "min_score": config.min_score}

    @app.get("/health")
    def health(request: Request):
        reconciler = request.app.state.reconciler
        last = reconciler.last_result
        return {
            "status": "ok",
            "reconciler": reconciler.status,
            "last_sync": last.finished_at.isoformat() if last and last.finished_at else None,
        }

    return app


# Default application instance
app = create_app()
