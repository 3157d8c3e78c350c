"""Shared fixtures: an in-memory ledger and a mock reputation API."""

import asyncio
import json
from typing import Dict, List, Optional, Set, Tuple

import httpx
import pytest

from stablecoin_kernel.claims.store import JsonClaimStore
from stablecoin_kernel.errors import ChainReadFailed, ChainWriteFailed
from stablecoin_kernel.kernel import Kernel
from stablecoin_kernel.models.config import KernelConfig
from stablecoin_kernel.models.whitelist import ConfirmationStatus, TxReceipt
from stablecoin_kernel.reputation.client import ScoreProviderClient

ADMIN = "0x" + "ad" * 20
TOKEN = "0x20c0000000000000000000000000000000000001"
ADMIN_KEY = "0x" + "11" * 32

ADDR_A = "0x" + "a" * 40
ADDR_B = "0x" + "b" * 40
ADDR_C = "0x" + "c" * 40
ADDR_D = "0x" + "d" * 40


class FakeLedgerRpc:
    """
    In-memory registry and token behind the LedgerRpc interface.

    Writes take effect immediately unless their target address is in
    ``revert_addresses``. Addresses in ``timeout_addresses`` get a TIMEOUT
    receipt (the write still lands, as a slow block would).
    """

    def __init__(self, signer: Optional[str] = ADMIN):
        self._signer = signer
        self.authorized: Dict[Tuple[int, str], bool] = {}
        self.balances: Dict[str, int] = {}
        self.policy_counter = 2
        self.policies: Dict[int, Tuple[int, str]] = {1: (0, ADMIN)}
        self.token_policy = 1
        self.sent: List[dict] = []
        self.receipts: Dict[str, TxReceipt] = {}
        self.read_failures: Set[str] = set()
        self.write_failures: Set[str] = set()
        self.revert_addresses: Set[str] = set()
        self.timeout_addresses: Set[str] = set()
        self.fail_all_reads = False
        self.write_delay = 0.0

    @property
    def signer_address(self) -> Optional[str]:
        return self._signer

    # -- Helpers for tests --

    def authorize(self, address: str, policy_id: int = 1) -> None:
        self.authorized[(policy_id, address.lower())] = True

    def is_member(self, address: str, policy_id: int = 1) -> bool:
        return self.authorized.get((policy_id, address.lower()), False)

    def writes(self, function_name: Optional[str] = None) -> List[dict]:
        return [t for t in self.sent if function_name is None or t["function"] == function_name]

    def confirm(self, tx_hash: str, status: ConfirmationStatus = ConfirmationStatus.SUCCESS) -> None:
        self.receipts[tx_hash] = TxReceipt(tx_hash=tx_hash, status=status, block_number=100)

    # -- LedgerRpc --

    async def read_contract(self, address, abi, function_name, args=()):
        await asyncio.sleep(0)
        if self.fail_all_reads:
            raise ChainReadFailed(f"{function_name} read failed: connection refused")
        if function_name == "isAuthorized":
            policy_id, account = args
            if account in self.read_failures:
                raise ChainReadFailed("isAuthorized read failed: timeout")
            return self.authorized.get((policy_id, account), False)
        if function_name == "balanceOf":
            return self.balances.get(args[0], 0)
        if function_name == "policyIdCounter":
            return self.policy_counter
        if function_name == "policyData":
            return self.policies[args[0]]
        if function_name == "transferPolicyId":
            return self.token_policy
        raise AssertionError(f"Unexpected read {function_name}")

    async def write_contract(self, address, abi, function_name, args, nonce):
        target = _target(function_name, args)
        if target in self.write_failures:
            raise ChainWriteFailed(f"{function_name} submission failed: insufficient funds")
        if self.write_delay:
            await asyncio.sleep(self.write_delay)

        tx_hash = "0x" + format(len(self.sent) + 1, "064x")
        self.sent.append({
            "function": function_name,
            "args": list(args),
            "nonce": nonce,
            "tx_hash": tx_hash,
            "target": target,
        })

        if target in self.revert_addresses:
            self.confirm(tx_hash, ConfirmationStatus.REVERTED)
            return tx_hash

        self._apply(function_name, args)
        if target in self.timeout_addresses:
            self.receipts[tx_hash] = TxReceipt(tx_hash=tx_hash, status=ConfirmationStatus.TIMEOUT)
        else:
            self.confirm(tx_hash)
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        await asyncio.sleep(0)
        receipt = self.receipts.get(tx_hash)
        if receipt is None:
            return TxReceipt(tx_hash=tx_hash, status=ConfirmationStatus.TIMEOUT)
        return receipt

    async def get_transaction_count(self, address: str) -> int:
        return len(self.sent)

    def _apply(self, function_name: str, args) -> None:
        if function_name == "modifyPolicyWhitelist":
            policy_id, account, allowed = args
            self.authorized[(policy_id, account)] = allowed
        elif function_name == "mint":
            to, amount = args
            self.balances[to] = self.balances.get(to, 0) + amount
        elif function_name == "createPolicyWithAccounts":
            policy_id = self.policy_counter
            self.policy_counter += 1
            self.policies[policy_id] = (args[1], args[0])
            for account in args[2]:
                self.authorized[(policy_id, account)] = True
        elif function_name == "changeTransferPolicyId":
            self.token_policy = args[0]


def _target(function_name: str, args) -> Optional[str]:
    if function_name == "modifyPolicyWhitelist":
        return args[1]
    if function_name == "mint":
        return args[0]
    return None


class FakeReputationApi:
    """httpx MockTransport handler standing in for the reputation API."""

    def __init__(self):
        self.scores: Dict[str, int] = {}
        self.xp: Dict[str, float] = {}
        self.linked: Dict[str, List[str]] = {}
        self.raw_entries: Dict[str, dict] = {}  # Served verbatim in place of a parsed profile
        self.down = False
        self.requests: List[httpx.Request] = []

    def add(self, address: str, score: int, xp: float = 0) -> None:
        self.scores[address.lower()] = score
        self.xp[address.lower()] = xp

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            return httpx.Response(503, json={"error": "maintenance"})

        path = request.url.path
        if path == "/api/v2/score/address":
            address = request.url.params["address"].lower()
            if address not in self.scores:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(
                200, json={"score": self.scores[address], "reviews": 3, "vouches": 1}
            )

        if path == "/api/v2/score/addresses":
            wanted = json.loads(request.content)["addresses"]
            body = {
                # Provider echoes keys in checksum-ish mixed case
                a.upper().replace("0X", "0x"): {"score": self.scores[a.lower()]}
                for a in wanted
                if a.lower() in self.scores
            }
            for a in wanted:
                if a.lower() in self.raw_entries:
                    body[a.upper().replace("0X", "0x")] = self.raw_entries[a.lower()]
            return httpx.Response(200, json=body)

        if path.startswith("/api/v2/internal/users/address:"):
            address = path.split("address:", 1)[1].lower()
            if address in self.raw_entries:
                return httpx.Response(200, json={"user": self.raw_entries[address]})
            if address not in self.scores:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json={
                "user": {
                    "score": self.scores[address],
                    "xpTotal": self.xp.get(address, 0),
                    "stats": {
                        "review": {"received": {"positive": 2, "neutral": 1, "negative": 0}},
                        "vouch": {"given": {"count": 1}, "received": {"count": 4}},
                    },
                },
                "allAddresses": {
                    "addresses": self.linked.get(address, [address]),
                    "primaryAddress": address,
                },
            })

        return httpx.Response(404)

    def client(self, config: KernelConfig) -> ScoreProviderClient:
        transport = httpx.MockTransport(self.handler)
        return ScoreProviderClient(config, client=httpx.AsyncClient(transport=transport))


class FakeClock:
    """Wall clock in seconds that tests can move."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def config(tmp_path):
    return KernelConfig(
        policy_id=1,
        token_address=TOKEN,
        admin_private_key=ADMIN_KEY,
        claims_path=str(tmp_path / "claims.json"),
        seed_csv_path=str(tmp_path / "seed-addresses.csv"),
        confirmation_timeout_seconds=5,
        max_concurrency=4,
    )


@pytest.fixture
def rpc():
    return FakeLedgerRpc()


@pytest.fixture
def reputation():
    return FakeReputationApi()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kernel(config, rpc, reputation, clock):
    return Kernel(
        config,
        rpc=rpc,
        provider=reputation.client(config),
        claim_store=JsonClaimStore(config.claims_path),
        clock=clock,
    )
