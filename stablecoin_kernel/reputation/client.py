"""
Score Provider Client: reputation scores and contributor XP over HTTP.

Behavioral Contract:
- ``None`` means the provider answered 404: no profile for that address.
- Any other failure (network, timeout, non-2xx, malformed body, an entry
  without a usable score) raises ProviderUnavailable. Callers must treat
  that as "unknown", never as "ineligible".
- Bulk lookups return every requested (canonical) address as a key, unless
  the caller collects per-address failures: then an address whose entry is
  unusable moves from the result into ``failures``.
- The TTL cache backs presentation lookups only (``get_score_cached``).
  Reconciliation always goes through the uncached methods.
"""

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from stablecoin_kernel.errors import ProviderUnavailable
from stablecoin_kernel.models.address import normalize_address, normalize_addresses
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.reputation import ScoreData, UserData

logger = logging.getLogger(__name__)

PROFILE_URL_BASE = "https://app.ethos.network/profile"


class ScoreProviderClient:
    """Async client for the reputation provider API."""

    def __init__(
        self,
        config: KernelConfig,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        bulk_chunk_size: int = 500,
    ):
        self.base_url = config.reputation_api_base.rstrip("/")
        self.cache_ttl = config.score_cache_ttl_seconds
        self.bulk_chunk_size = bulk_chunk_size
        self._headers = {"X-Ethos-Client": config.reputation_client_id}
        self._client = client or httpx.AsyncClient(timeout=config.reputation_timeout_seconds)
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Optional[ScoreData]]] = {}

    async def close(self) -> None:
        await self._client.aclose()

    # -- Transport --

    async def _request(self, method: str, path: str, **kwargs) -> Optional[dict]:
        """Perform a request. Returns None on 404, the JSON body on 2xx."""
        url = f"{self.base_url}{path}"
        try:
            resp = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Reputation API %s %s failed: %s", method, path, e)
            raise ProviderUnavailable(f"Reputation API unreachable: {e}") from e

        if resp.status_code == 404:
            return None
        if not resp.is_success:
            logger.warning("Reputation API %s %s returned %s", method, path, resp.status_code)
            raise ProviderUnavailable(f"Reputation API error: {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderUnavailable("Reputation API returned malformed JSON") from e
        if not isinstance(data, dict):
            raise ProviderUnavailable("Reputation API returned an unexpected payload")
        return data

    # -- Lookups --

    async def get_score(self, address: str) -> Optional[ScoreData]:
        """Score for one address, or None if it has no profile."""
        address = normalize_address(address)
        data = await self._request("GET", "/api/v2/score/address", params={"address": address})
        if data is None:
            return None
        return _parse_score(data, address)

    async def get_scores(
        self,
        addresses: Iterable[str],
        failures: Optional[Dict[str, ProviderUnavailable]] = None,
    ) -> Dict[str, Optional[ScoreData]]:
        """
        Scores for many addresses; every requested address is a key.

        An entry that is present but unusable raises ProviderUnavailable,
        or, when ``failures`` is given, is recorded there and left out of
        the result.
        """
        wanted = normalize_addresses(addresses)
        result: Dict[str, Optional[ScoreData]] = {a: None for a in wanted}
        if not wanted:
            return result

        for start in range(0, len(wanted), self.bulk_chunk_size):
            chunk = wanted[start:start + self.bulk_chunk_size]
            data = await self._request(
                "POST", "/api/v2/score/addresses", json={"addresses": chunk}
            )
            if data is None:
                raise ProviderUnavailable("Bulk score endpoint not found")

            # Provider keys may come back in any case.
            by_address = {}
            for key, value in data.items():
                if isinstance(key, str):
                    by_address[key.lower()] = value
            for address in chunk:
                entry = by_address.get(address)
                if entry is None:
                    continue
                try:
                    result[address] = _parse_score(entry, address)
                except ProviderUnavailable as e:
                    if failures is None:
                        raise
                    logger.warning("Unusable score entry for %s: %s", address, e)
                    del result[address]
                    failures[address] = e

        logger.debug(
            "Fetched scores for %d addresses (%d with profiles)",
            len(wanted), sum(1 for v in result.values() if v is not None),
        )
        return result

    async def get_user_data(self, address: str) -> Optional[UserData]:
        """Profile data including contributor XP, or None if no profile."""
        address = normalize_address(address)
        data = await self._request("GET", f"/api/v2/internal/users/address:{address}")
        if data is None:
            return None
        user = data.get("user")
        if user is None:
            return None
        return _parse_user(user, address)

    async def get_linked_addresses(self, address: str) -> List[str]:
        """All addresses tied to the same profile, always including ``address``."""
        address = normalize_address(address)
        data = await self._request("GET", f"/api/v2/internal/users/address:{address}")
        linked = [address]
        if not data:
            return linked

        all_addresses = data.get("allAddresses")
        if not isinstance(all_addresses, dict):
            return linked
        candidates = list(all_addresses.get("addresses") or [])
        for key in ("primaryAddress", "embeddedWallet", "smartWallet"):
            if all_addresses.get(key):
                candidates.append(all_addresses[key])

        for candidate in candidates:
            if not isinstance(candidate, str):
                continue
            candidate = candidate.lower()
            if candidate not in linked:
                linked.append(candidate)
        return linked

    # -- Presentation cache --

    async def get_score_cached(self, address: str) -> Optional[ScoreData]:
        """Best-effort cached score for dashboard reads."""
        address = normalize_address(address)
        now = self._clock()
        cached = self._cache.get(address)
        if cached and cached[0] > now:
            return cached[1]
        score = await self.get_score(address)
        self._cache[address] = (now + self.cache_ttl, score)
        return score

    def invalidate(self, address: Optional[str] = None) -> None:
        if address is None:
            self._cache.clear()
        else:
            self._cache.pop(address.lower(), None)


def _parse_score(data, address: str) -> ScoreData:
    """A missing or non-integer score is unusable, not zero."""
    if not isinstance(data, dict) or data.get("score") is None:
        raise ProviderUnavailable("Reputation API returned no score", address=address)
    try:
        return ScoreData(
            score=data["score"],
            reviews=data.get("reviews"),
            vouches=data.get("vouches"),
        )
    except ValidationError as e:
        raise ProviderUnavailable(
            f"Reputation API returned a malformed score: {data.get('score')!r}",
            address=address,
        ) from e


def _parse_user(user, address: str) -> UserData:
    try:
        stats = user.get("stats") or {}
        review_stats = (stats.get("review") or {}).get("received") or {}
        vouch_stats = stats.get("vouch") or {}
        return UserData(
            score=user.get("score") or 0,
            xp=user.get("xpTotal") or 0,
            reviews=(
                (review_stats.get("positive") or 0)
                + (review_stats.get("neutral") or 0)
                + (review_stats.get("negative") or 0)
            ),
            vouches=(vouch_stats.get("given") or {}).get("count") or 0,
            vouches_received=(vouch_stats.get("received") or {}).get("count") or 0,
        )
    except (AttributeError, TypeError, ValidationError) as e:
        raise ProviderUnavailable(
            "Reputation API returned malformed user data", address=address
        ) from e


def profile_url(address: str) -> str:
    return f"{PROFILE_URL_BASE}/{address}"
