"""Tests for the Whitelist Reconciliation Engine."""

import asyncio

import pytest

from stablecoin_kernel.errors import ErrorKind
from stablecoin_kernel.models.outcome import Outcome
from stablecoin_kernel.models.whitelist import SyncAction
from stablecoin_kernel.reconciler.bulk import create_policy_chunked, upload_addresses
from stablecoin_kernel.reconciler.engine import plan_action
from stablecoin_kernel.reconciler.seeds import load_seed_addresses, read_address_csv

from conftest import ADDR_A, ADDR_B, ADDR_C, ADDR_D, ADMIN


class TestPlanAction:
    def test_all_four_cells(self):
        assert plan_action(True, True) == SyncAction.KEEP
        assert plan_action(True, False) == SyncAction.ADD
        assert plan_action(False, True) == SyncAction.REMOVE
        assert plan_action(False, False) == SyncAction.NONE


class TestSync:
    @pytest.mark.asyncio
    async def test_mixed_scenario(self, kernel, rpc, reputation):
        """A eligible and new, B below threshold, C eligible and already listed."""
        reputation.add(ADDR_A, 1500)
        reputation.add(ADDR_B, 1000)
        reputation.add(ADDR_C, 1600)
        rpc.authorize(ADDR_C)

        result = await kernel.reconciler.sync([ADDR_A, ADDR_B, ADDR_C])

        assert result.checked == 3
        assert result.added == [ADDR_A]
        assert result.removed == []
        assert set(result.authorized) == {ADDR_A, ADDR_C}
        assert result.scores == {ADDR_A: 1500, ADDR_B: 1000, ADDR_C: 1600}
        assert result.errors == []
        assert result.outcome == Outcome.SUCCESS
        assert rpc.is_member(ADDR_A)
        assert not rpc.is_member(ADDR_B)
        assert [t["target"] for t in rpc.writes()] == [ADDR_A]

    @pytest.mark.asyncio
    async def test_removes_addresses_that_dropped_below(self, kernel, rpc, reputation):
        reputation.add(ADDR_A, 1200)
        rpc.authorize(ADDR_A)

        result = await kernel.reconciler.sync([ADDR_A])

        assert result.removed == [ADDR_A]
        assert not rpc.is_member(ADDR_A)

    @pytest.mark.asyncio
    async def test_missing_profile_is_ineligible(self, kernel, rpc, reputation):
        rpc.authorize(ADDR_D)

        result = await kernel.reconciler.sync([ADDR_D])

        assert result.scores == {ADDR_D: None}
        assert result.removed == [ADDR_D]

    @pytest.mark.asyncio
    async def test_second_pass_is_a_no_op(self, kernel, rpc, reputation):
        reputation.add(ADDR_A, 1500)
        reputation.add(ADDR_B, 900)
        rpc.authorize(ADDR_B)

        await kernel.reconciler.sync([ADDR_A, ADDR_B])
        writes_after_first = len(rpc.sent)
        second = await kernel.reconciler.sync([ADDR_A, ADDR_B])

        assert len(rpc.sent) == writes_after_first
        assert second.added == []
        assert second.removed == []
        assert second.authorized == [ADDR_A]

    @pytest.mark.asyncio
    async def test_case_variants_collapse(self, kernel, reputation):
        reputation.add(ADDR_A, 1500)
        upper = ADDR_A.upper().replace("0X", "0x")

        result = await kernel.reconciler.sync([ADDR_A, upper])

        assert result.checked == 1
        assert result.added == [ADDR_A]

    @pytest.mark.asyncio
    async def test_invalid_addresses_are_reported(self, kernel, reputation):
        reputation.add(ADDR_A, 1500)
        result = await kernel.reconciler.sync(["not-an-address", ADDR_A])
        assert result.checked == 1
        assert result.added == [ADDR_A]
        assert any("not-an-address" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_provider_outage_makes_no_changes(self, kernel, rpc, reputation):
        reputation.down = True
        rpc.authorize(ADDR_B)

        result = await kernel.reconciler.sync([ADDR_A, ADDR_B, ADDR_C])

        assert result.checked == 3
        assert result.error == "Failed to fetch scores: Reputation API error: 503"
        assert result.errors == [result.error]
        assert result.error_kind == ErrorKind.PROVIDER_UNAVAILABLE
        assert result.added == [] and result.removed == []
        assert result.outcome == Outcome.RETRYABLE
        assert rpc.sent == []
        assert rpc.is_member(ADDR_B)

    @pytest.mark.asyncio
    async def test_unconfigured_policy_refuses(self, kernel, rpc, reputation):
        reputation.add(ADDR_A, 1500)
        kernel.config.policy_id = 0

        result = await kernel.reconciler.sync([ADDR_A])

        assert result.error_kind == ErrorKind.MISCONFIGURED
        assert result.errors == ["POLICY_ID not configured"]
        assert result.outcome == Outcome.REJECTED
        assert rpc.sent == []
        assert reputation.requests == []

    @pytest.mark.asyncio
    async def test_entry_without_score_leaves_member_alone(self, kernel, rpc, reputation):
        reputation.raw_entries[ADDR_A] = {"reviews": 3}
        reputation.add(ADDR_B, 1500)
        rpc.authorize(ADDR_A)

        result = await kernel.reconciler.sync([ADDR_A, ADDR_B])

        assert result.removed == []
        assert result.added == [ADDR_B]
        assert ADDR_A not in result.scores
        assert result.failures == {ADDR_A: ErrorKind.PROVIDER_UNAVAILABLE}
        assert result.outcome == Outcome.RETRYABLE
        assert rpc.is_member(ADDR_A)
        assert [t["target"] for t in rpc.writes()] == [ADDR_B]

    @pytest.mark.asyncio
    async def test_malformed_score_is_skipped(self, kernel, rpc, reputation):
        reputation.raw_entries[ADDR_A] = {"score": "n/a"}
        rpc.authorize(ADDR_A)

        result = await kernel.reconciler.sync([ADDR_A])

        assert result.error is None
        assert result.failures == {ADDR_A: ErrorKind.PROVIDER_UNAVAILABLE}
        assert "n/a" in result.errors[0]
        assert rpc.sent == []
        assert rpc.is_member(ADDR_A)

    @pytest.mark.asyncio
    async def test_read_failure_skips_only_that_address(self, kernel, rpc, reputation):
        reputation.add(ADDR_A, 1500)
        reputation.add(ADDR_B, 1500)
        rpc.read_failures.add(ADDR_A)

        result = await kernel.reconciler.sync([ADDR_A, ADDR_B])

        assert result.added == [ADDR_B]
        assert result.failures == {ADDR_A: ErrorKind.CHAIN_READ_FAILED}
        assert ADDR_A in result.errors[0]
        assert not rpc.is_member(ADDR_A)

    @pytest.mark.asyncio
    async def test_write_failure_and_revert_are_isolated(self, kernel, rpc, reputation):
        for address in (ADDR_A, ADDR_B, ADDR_C):
            reputation.add(address, 1500)
        rpc.write_failures.add(ADDR_A)
        rpc.revert_addresses.add(ADDR_B)

        result = await kernel.reconciler.sync([ADDR_A, ADDR_B, ADDR_C])

        assert result.added == [ADDR_C]
        assert result.failures == {
            ADDR_A: ErrorKind.CHAIN_WRITE_FAILED,
            ADDR_B: ErrorKind.CHAIN_WRITE_REVERTED,
        }
        assert result.authorized == [ADDR_C]
        assert len(result.errors) == 2

    @pytest.mark.asyncio
    async def test_timeout_is_ambiguous(self, kernel, rpc, reputation):
        reputation.add(ADDR_A, 1500)
        rpc.timeout_addresses.add(ADDR_A)

        result = await kernel.reconciler.sync([ADDR_A])

        assert result.timed_out == [ADDR_A]
        assert result.added == []
        assert ADDR_A not in result.authorized
        assert result.outcome == Outcome.RETRYABLE

        # The write landed; the next pass sees it and does nothing.
        rpc.timeout_addresses.clear()
        again = await kernel.reconciler.sync([ADDR_A])
        assert again.authorized == [ADDR_A]
        assert again.added == []

    @pytest.mark.asyncio
    async def test_writes_use_distinct_nonces(self, kernel, rpc, reputation):
        addresses = ["0x" + format(i + 1, "040x") for i in range(12)]
        for address in addresses:
            reputation.add(address, 1500)
        rpc.write_delay = 0.001

        result = await kernel.reconciler.sync(addresses)

        assert len(result.added) == 12
        nonces = sorted(t["nonce"] for t in rpc.sent)
        assert nonces == list(range(12))

    @pytest.mark.asyncio
    async def test_results_follow_input_order(self, kernel, reputation):
        addresses = [ADDR_C, ADDR_A, ADDR_B]
        for address in addresses:
            reputation.add(address, 1500)
        result = await kernel.reconciler.sync(addresses)
        assert result.added == addresses

    @pytest.mark.asyncio
    async def test_defaults_to_seed_addresses(self, kernel, config, reputation):
        with open(config.seed_csv_path, "w") as f:
            f.write(f"address,label\n{ADDR_A},alice\n{ADDR_B},bob\nbad,row\n")
        reputation.add(ADDR_A, 1500)

        result = await kernel.reconciler.sync()

        assert result.checked == 2
        assert result.added == [ADDR_A]

    @pytest.mark.asyncio
    async def test_eligibility_override(self, kernel, rpc, reputation):
        rpc.authorize(ADDR_B)
        result = await kernel.reconciler.sync(
            [ADDR_A, ADDR_B], eligibility={ADDR_A.upper().replace("0X", "0x"): True, ADDR_B: False}
        )
        assert result.added == [ADDR_A]
        assert result.removed == [ADDR_B]
        assert reputation.requests == []

    @pytest.mark.asyncio
    async def test_last_result(self, kernel, reputation):
        assert kernel.reconciler.last_result is None
        result = await kernel.reconciler.sync([])
        assert kernel.reconciler.last_result is result
        assert result.finished_at >= result.started_at


class TestAddIfEligible:
    @pytest.mark.asyncio
    async def test_adds_eligible(self, kernel, rpc, reputation):
        reputation.add(ADDR_A, 1450)
        result = await kernel.reconciler.add_if_eligible(ADDR_A)
        assert result.outcome == Outcome.SUCCESS
        assert result.score == 1450
        assert result.tx_hash is not None
        assert rpc.is_member(ADDR_A)

    @pytest.mark.asyncio
    async def test_rejection_includes_score(self, kernel, rpc, reputation):
        reputation.add(ADDR_A, 1399)
        result = await kernel.reconciler.add_if_eligible(ADDR_A)
        assert result.outcome == Outcome.REJECTED
        assert result.score == 1399
        assert "1399" in result.error
        assert result.error_kind == ErrorKind.NOT_ELIGIBLE
        assert rpc.sent == []

    @pytest.mark.asyncio
    async def test_no_profile(self, kernel, reputation):
        result = await kernel.reconciler.add_if_eligible(ADDR_A)
        assert result.outcome == Outcome.REJECTED
        assert result.error_kind == ErrorKind.PROFILE_NOT_FOUND

    @pytest.mark.asyncio
    async def test_already_authorized(self, kernel, rpc, reputation):
        reputation.add(ADDR_A, 1500)
        rpc.authorize(ADDR_A)
        result = await kernel.reconciler.add_if_eligible(ADDR_A)
        assert result.outcome == Outcome.SUCCESS
        assert result.already_authorized
        assert rpc.sent == []

    @pytest.mark.asyncio
    async def test_provider_down_is_retryable(self, kernel, reputation):
        reputation.down = True
        result = await kernel.reconciler.add_if_eligible(ADDR_A)
        assert result.outcome == Outcome.RETRYABLE

    @pytest.mark.asyncio
    async def test_invalid_address(self, kernel):
        result = await kernel.reconciler.add_if_eligible("0x123")
        assert result.outcome == Outcome.REJECTED
        assert result.error_kind == ErrorKind.INVALID_ADDRESS

    @pytest.mark.asyncio
    async def test_timeout(self, kernel, rpc, reputation):
        reputation.add(ADDR_A, 1500)
        rpc.timeout_addresses.add(ADDR_A)
        result = await kernel.reconciler.add_if_eligible(ADDR_A)
        assert result.outcome == Outcome.RETRYABLE
        assert result.error_kind == ErrorKind.CONFIRMATION_TIMEOUT


class TestRunAsync:
    @pytest.mark.asyncio
    async def test_interval_loop_runs_and_stops(self, kernel, config, reputation):
        with open(config.seed_csv_path, "w") as f:
            f.write(f"{ADDR_A}\n")
        reputation.add(ADDR_A, 1500)
        stop = asyncio.Event()

        task = asyncio.create_task(
            kernel.reconciler.run_async(stop_event=stop, interval_seconds=60)
        )
        for _ in range(200):
            await asyncio.sleep(0.01)
            if kernel.reconciler.last_result is not None:
                break
        assert kernel.reconciler.status == "running"
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert kernel.reconciler.last_result.added == [ADDR_A]
        assert kernel.reconciler.status == "stopped"

    @pytest.mark.asyncio
    async def test_cron_loop_waits_for_tick(self, kernel):
        stop = asyncio.Event()
        task = asyncio.create_task(
            kernel.reconciler.run_async(stop_event=stop, schedule="0 0 1 1 *")
        )
        await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1)
        assert kernel.reconciler.last_result is None


class TestSeeds:
    def test_csv_with_header(self, tmp_path):
        path = tmp_path / "seeds.csv"
        path.write_text(f"name,address\nalice,{ADDR_A.upper().replace('0X', '0x')}\nbob,{ADDR_A}\n")
        assert read_address_csv(path) == [ADDR_A]

    def test_csv_without_header(self, tmp_path):
        path = tmp_path / "seeds.csv"
        path.write_text(f"{ADDR_A}\n\n{ADDR_B}\nnope\n")
        assert read_address_csv(path) == [ADDR_A, ADDR_B]

    def test_allowed_column(self, tmp_path):
        path = tmp_path / "upload.csv"
        path.write_text(f"address,allowed\n{ADDR_A},true\n{ADDR_B},false\n{ADDR_C},TRUE\n")
        assert read_address_csv(path, allowed_column="allowed") == [ADDR_A, ADDR_C]

    def test_env_fallback(self, config):
        config.seed_addresses = [ADDR_B, "junk", ADDR_B]
        assert load_seed_addresses(config) == [ADDR_B]


class TestBulkTools:
    @pytest.mark.asyncio
    async def test_upload_only_adds_missing(self, kernel, rpc, reputation):
        rpc.authorize(ADDR_B)
        result = await upload_addresses(
            kernel.config, kernel.provider, kernel.whitelist, [ADDR_A, ADDR_B], concurrency=2
        )
        assert result.added == [ADDR_A]
        assert set(result.authorized) == {ADDR_A, ADDR_B}
        assert reputation.requests == []

    @pytest.mark.asyncio
    async def test_create_policy_chunked(self, kernel, rpc, reputation):
        addresses = ["0x" + format(i + 1, "040x") for i in range(5)]

        policy_id, result = await create_policy_chunked(
            kernel.config, kernel.provider, kernel.whitelist, addresses, first_chunk_size=3
        )

        assert policy_id == 2
        create = rpc.writes("createPolicyWithAccounts")[0]
        assert create["args"][2] == [ADMIN] + addresses[:2]
        assert result.added == addresses[2:]
        assert all(rpc.is_member(a, policy_id=2) for a in addresses + [ADMIN])
        # Existing policy and token binding untouched
        assert rpc.token_policy == 1
        assert kernel.config.policy_id == 1
