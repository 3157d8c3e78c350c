"""Kernel configuration: built once at startup and passed into every component."""

import os
from typing import List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator

from stablecoin_kernel.errors import Misconfigured

# TIP-403 registry precompile on Tempo.
DEFAULT_REGISTRY_ADDRESS = "0x403c000000000000000000000000000000000000"

# env var -> field name
_ENV_FIELDS = {
    "RPC_URL": "rpc_url",
    "CHAIN_ID": "chain_id",
    "REGISTRY_ADDRESS": "registry_address",
    "TOKEN_ADDRESS": "token_address",
    "POLICY_ID": "policy_id",
    "ADMIN_PRIVATE_KEY": "admin_private_key",
    "REPUTATION_API_BASE": "reputation_api_base",
    "REPUTATION_CLIENT_ID": "reputation_client_id",
    "MIN_SCORE": "min_score",
    "CONFIRMATION_TIMEOUT": "confirmation_timeout_seconds",
    "SYNC_CONCURRENCY": "max_concurrency",
    "CLAIMS_PATH": "claims_path",
    "CLAIMS_BACKEND": "claims_backend",
    "SEED_CSV_PATH": "seed_csv_path",
    "SYNC_API_KEY": "sync_api_key",
    "SYNC_SCHEDULE": "sync_schedule",
    "EXPLORER_URL": "explorer_url",
}


class KernelConfig(BaseModel):
    """Explicit configuration for every kernel component."""

    # Chain
    rpc_url: str = "https://rpc.testnet.tempo.xyz"
    chain_id: int = 42429
    registry_address: str = DEFAULT_REGISTRY_ADDRESS
    token_address: Optional[str] = None
    policy_id: int = Field(default=0, ge=0)          # 0 = unconfigured
    admin_private_key: Optional[SecretStr] = None
    confirmation_timeout_seconds: float = 120.0
    max_concurrency: int = Field(default=20, ge=1)
    authorization_cache_ttl_seconds: float = 30.0
    explorer_url: str = "https://explore.tempo.xyz"

    # Reputation provider
    reputation_api_base: str = "https://api.ethos.network"
    reputation_client_id: str = "ethosUSD@1.0.0"
    reputation_timeout_seconds: float = 10.0
    score_cache_ttl_seconds: float = 60.0

    # Eligibility
    min_score: int = 1400
    token_decimals: int = 6
    claim_unit: int = 1_000_000                     # minor units per XP

    # Claims
    claims_path: str = "./data/claims.json"
    claims_backend: str = "json"                    # "json" | "sqlite"
    signature_max_age_seconds: float = 300.0

    # Sync
    seed_csv_path: str = "./data/seed-addresses.csv"
    seed_addresses: List[str] = []
    sync_api_key: Optional[str] = None
    sync_schedule: Optional[str] = None             # Cron expression

    @field_validator("claims_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        if value not in ("json", "sqlite"):
            raise ValueError(f"Unknown claims backend: {value}")
        return value

    @field_validator("admin_private_key", mode="before")
    @classmethod
    def _prefix_key(cls, value):
        if isinstance(value, str) and value and not value.startswith("0x"):
            return "0x" + value
        return value or None

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[str] = None,
    ) -> "KernelConfig":
        """Build a config from the process environment (after loading .env)."""
        if env is None:
            load_dotenv(dotenv_path)
            env = os.environ

        values = {}
        for env_name, field_name in _ENV_FIELDS.items():
            raw = env.get(env_name)
            if raw not in (None, ""):
                values[field_name] = raw

        seeds = env.get("SEED_ADDRESSES")
        if seeds:
            values["seed_addresses"] = [a.strip() for a in seeds.split(",") if a.strip()]

        return cls(**values)

    # --- Preconditions ---

    def require_policy_id(self) -> int:
        if self.policy_id == 0:
            raise Misconfigured("POLICY_ID not configured")
        return self.policy_id

    def require_admin_key(self) -> str:
        if self.admin_private_key is None:
            raise Misconfigured("ADMIN_PRIVATE_KEY environment variable is required")
        return self.admin_private_key.get_secret_value()

    def require_token_address(self) -> str:
        if not self.token_address:
            raise Misconfigured("TOKEN_ADDRESS not configured")
        return self.token_address

    def receipt_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url.rstrip('/')}/receipt/{tx_hash}"
