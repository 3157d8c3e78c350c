"""Tests for kernel data models and configuration."""

import pytest
from pydantic import ValidationError

from stablecoin_kernel.errors import ErrorKind, InvalidAddress, Misconfigured
from stablecoin_kernel.models import (
    ClaimRecord,
    ClaimStatus,
    KernelConfig,
    Outcome,
    SyncResult,
    normalize_address,
    normalize_addresses,
)
from stablecoin_kernel.models.address import is_valid_address, truncate_address

MIXED = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"


class TestAddress:
    def test_normalize_lowercases(self):
        assert normalize_address(MIXED) == MIXED.lower()

    def test_normalize_strips_whitespace(self):
        assert normalize_address(f"  {MIXED}\n") == MIXED.lower()

    @pytest.mark.parametrize("value", ["", "0x123", "abcdef" * 7, "0x" + "g" * 40, None, 42])
    def test_invalid(self, value):
        assert not is_valid_address(value)
        with pytest.raises(InvalidAddress):
            normalize_address(value)

    def test_dedupe_across_case(self):
        result = normalize_addresses([MIXED, MIXED.lower(), MIXED.upper().replace("0X", "0x")])
        assert result == [MIXED.lower()]

    def test_truncate(self):
        assert truncate_address(MIXED.lower()) == "0xabcd...ef01"


class TestClaimRecord:
    def test_address_is_canonicalized(self):
        record = ClaimRecord(address=MIXED, amount=5, xp=5.2, tx_hash="0x1", timestamp=1)
        assert record.address == MIXED.lower()

    def test_rejects_malformed_address(self):
        with pytest.raises(ValidationError):
            ClaimRecord(address="nope", amount=5, xp=5, tx_hash="0x1", timestamp=1)

    def test_json_entry_stores_amount_as_text(self):
        record = ClaimRecord(
            address=MIXED, amount=250_000_000, xp=250.7, tx_hash="0xabc", timestamp=1700000000000
        )
        entry = record.to_json_entry()
        assert entry == {
            "address": MIXED.lower(),
            "amount": "250000000",
            "xp": 250.7,
            "txHash": "0xabc",
            "timestamp": 1700000000000,
        }
        assert ClaimRecord.from_json_entry(entry) == record

    def test_amount_beyond_64_bits(self):
        entry = {"address": MIXED, "amount": str(2**80), "xp": 1, "txHash": "0x1", "timestamp": 1}
        assert ClaimRecord.from_json_entry(entry).amount == 2**80


class TestOutcomes:
    def test_sync_result_success(self):
        assert SyncResult(checked=2, added=["0x1"]).outcome == Outcome.SUCCESS

    def test_sync_result_errors_are_retryable(self):
        result = SyncResult(checked=2)
        result.record_failure("0x1", ErrorKind.CHAIN_READ_FAILED, "0x1: read failed")
        assert result.outcome == Outcome.RETRYABLE
        assert result.failures == {"0x1": ErrorKind.CHAIN_READ_FAILED}

    def test_sync_result_misconfigured_is_rejected(self):
        result = SyncResult(error="POLICY_ID not configured", error_kind=ErrorKind.MISCONFIGURED)
        assert result.outcome == Outcome.REJECTED

    def test_sync_payload_counts(self):
        payload = SyncResult(checked=3, added=["0x1", "0x2"], removed=["0x3"]).to_payload()
        assert payload["added_count"] == 2
        assert payload["removed_count"] == 1
        assert payload["outcome"] == "success"

    def test_claim_status_outcomes(self):
        assert ClaimStatus(address="0x1", can_claim=True).outcome == Outcome.SUCCESS
        assert ClaimStatus(
            address="0x1", error_kind=ErrorKind.PROVIDER_UNAVAILABLE
        ).outcome == Outcome.RETRYABLE
        assert ClaimStatus(address="0x1", error_kind=ErrorKind.NO_XP).outcome == Outcome.REJECTED


class TestConfig:
    def test_defaults(self):
        config = KernelConfig()
        assert config.min_score == 1400
        assert config.claim_unit == 1_000_000
        assert config.policy_id == 0

    def test_from_env(self):
        config = KernelConfig.from_env({
            "POLICY_ID": "7",
            "TOKEN_ADDRESS": "0x20c0000000000000000000000000000000000001",
            "ADMIN_PRIVATE_KEY": "11" * 32,
            "MIN_SCORE": "1500",
            "SEED_ADDRESSES": f"{MIXED}, 0x{'a' * 40} ,",
            "CLAIMS_BACKEND": "sqlite",
            "SYNC_API_KEY": "",
        })
        assert config.policy_id == 7
        assert config.min_score == 1500
        assert config.require_admin_key() == "0x" + "11" * 32
        assert config.seed_addresses == [MIXED, "0x" + "a" * 40]
        assert config.claims_backend == "sqlite"
        assert config.sync_api_key is None

    def test_secret_not_in_repr(self):
        config = KernelConfig(admin_private_key="0x" + "22" * 32)
        assert "22" * 32 not in repr(config)

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            KernelConfig(claims_backend="redis")

    def test_preconditions(self):
        config = KernelConfig()
        with pytest.raises(Misconfigured):
            config.require_policy_id()
        with pytest.raises(Misconfigured):
            config.require_admin_key()
        with pytest.raises(Misconfigured):
            config.require_token_address()

    def test_receipt_url(self):
        config = KernelConfig(explorer_url="https://explore.tempo.xyz/")
        assert config.receipt_url("0xabc") == "https://explore.tempo.xyz/receipt/0xabc"
