"""Tests for the token launch pipeline state machine"""

import asyncio
import struct
from decimal import Decimal

import pytest

import launch_pipeline
from errors import LaunchError, StateTransitionError, ValidationError, WalletNotConnectedError
from launch_pipeline import STEP_CREATE_HOLDING, STEP_CREATE_MINT, STEP_MINT_SUPPLY, TransactionPipeline
from models import ConfirmationStatus, LaunchSession, LaunchStatus, StepStatus, TokenLaunchRequest
from token_program import get_associated_token_address, get_mint_len, launch_storage_sizes

from conftest import FakeRpc, FakeWallet

REQUEST = TokenLaunchRequest(
    name="Demo",
    symbol="DMO",
    uri="https://example.com/demo.json",
    decimals=6,
    initial_supply=Decimal("1000"),
)


def _run(coro):
    return asyncio.run(coro)


class TestHappyPath:
    def test_three_steps_in_order(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)
        session = pipeline.new_session(REQUEST)
        result = _run(pipeline.run(session))

        assert session.status == LaunchStatus.COMPLETED
        assert [step.ordinal for step in session.steps] == [1, 2, 3]
        assert [step.label for step in session.steps] == [STEP_CREATE_MINT, STEP_CREATE_HOLDING, STEP_MINT_SUPPLY]
        assert all(step.status == StepStatus.CONFIRMED for step in session.steps)
        assert len(fake_wallet.sent) == 3
        assert result.base_units == 1_000_000_000
        assert result.fully_confirmed

    def test_state_history(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)
        session = pipeline.new_session(REQUEST)
        _run(pipeline.run(session))

        assert session.history == [
            LaunchStatus.VALIDATING,
            LaunchStatus.BUILDING,
            LaunchStatus.STEP1_SUBMITTED,
            LaunchStatus.STEP1_CONFIRMED,
            LaunchStatus.STEP2_SUBMITTED,
            LaunchStatus.STEP2_CONFIRMED,
            LaunchStatus.STEP3_SUBMITTED,
            LaunchStatus.STEP3_CONFIRMED,
            LaunchStatus.COMPLETED,
        ]

    def test_result_addresses_and_signatures(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)
        session = pipeline.new_session(REQUEST)
        result = _run(pipeline.run(session))

        mint = session.mint_address
        assert result.mint_address == str(mint)
        assert result.token_account_address == str(get_associated_token_address(mint, fake_wallet.public_key))
        assert [label for label, _ in result.signatures] == [STEP_CREATE_MINT, STEP_CREATE_HOLDING, STEP_MINT_SUPPLY]
        assert [sig for _, sig in result.signatures] == [str(step.signature) for step in session.steps]
        assert result.supply == Decimal("1000")
        assert result.decimals == 6

    def test_step_one_is_dual_signed(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)
        session = pipeline.new_session(REQUEST)
        _run(pipeline.run(session))

        first, second, third = fake_wallet.sent
        assert first.message.header.num_required_signatures == 2
        assert session.mint_address in first.message.account_keys
        assert second.message.header.num_required_signatures == 1
        assert third.message.header.num_required_signatures == 1
        assert session.steps[0].required_signers == (fake_wallet.public_key, session.mint_address)
        assert session.steps[1].required_signers == (fake_wallet.public_key,)

    def test_rent_covers_mint_and_metadata(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)
        session = pipeline.new_session(REQUEST)
        _run(pipeline.run(session))

        mint_len, metadata_len = launch_storage_sizes(fake_wallet.public_key, session.mint_address, REQUEST)
        assert fake_rpc.rent_sizes == [mint_len + metadata_len]
        assert mint_len == get_mint_len()

    def test_mint_to_carries_base_units(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)
        session = pipeline.new_session(REQUEST)
        _run(pipeline.run(session))

        (mint_to,) = session.steps[2].instructions
        assert struct.unpack("<BQ", bytes(mint_to.data)) == (7, 1_000_000_000)

    def test_launch_validates_raw_input(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)
        result = _run(
            pipeline.launch(
                {
                    "name": "Demo",
                    "symbol": "dmo",
                    "uri": "https://example.com/demo.json",
                    "initial_supply": "1000",
                    "decimals": "6",
                }
            )
        )
        assert result.base_units == 1_000_000_000


class TestConfirmationPolicy:
    def test_legacy_policy_reports_unconfirmed_steps(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc, confirm_all_steps=False)
        session = pipeline.new_session(REQUEST)
        result = _run(pipeline.run(session))

        assert session.status == LaunchStatus.COMPLETED
        assert len(fake_rpc.confirmed) == 1
        assert result.unconfirmed_steps == (2, 3)
        assert not result.fully_confirmed
        assert LaunchStatus.STEP2_CONFIRMED not in session.history
        assert session.steps[0].status == StepStatus.CONFIRMED

    def test_finalized_counts_as_confirmed(self, fake_wallet):
        rpc = FakeRpc([ConfirmationStatus.FINALIZED] * 3)
        result = _run(TransactionPipeline(fake_wallet, rpc).execute(REQUEST))
        assert result.fully_confirmed


class TestFailures:
    def test_step_two_failure(self, fake_rpc, monkeypatch):
        built = []
        original = launch_pipeline.build_mint_to_instructions

        def spy(*args, **kwargs):
            built.append(args)
            return original(*args, **kwargs)

        monkeypatch.setattr(launch_pipeline, "build_mint_to_instructions", spy)
        wallet = FakeWallet(fail_on_call=2)
        pipeline = TransactionPipeline(wallet, fake_rpc)
        session = pipeline.new_session(REQUEST)

        with pytest.raises(LaunchError) as exc_info:
            _run(pipeline.run(session))

        err = exc_info.value
        assert session.status == LaunchStatus.FAILED
        assert session.steps_with_status(StepStatus.CONFIRMED) == (1,)
        assert session.step(2).status == StepStatus.FAILED
        assert "insufficient lamports" in session.step(2).error
        assert len(session.steps) == 2
        assert built == []
        assert err.failed_step == 2
        assert err.last_submitted_step == 1
        assert err.session is session
        assert "insufficient lamports" in str(err)
        assert isinstance(err.__cause__, RuntimeError)

    def test_step_one_rejected_on_confirmation(self, fake_wallet):
        rpc = FakeRpc([ConfirmationStatus.FAILED])
        pipeline = TransactionPipeline(fake_wallet, rpc)
        session = pipeline.new_session(REQUEST)

        with pytest.raises(LaunchError) as exc_info:
            _run(pipeline.run(session))

        assert exc_info.value.failed_step == 1
        assert exc_info.value.last_submitted_step == 1
        assert session.step(1).status == StepStatus.FAILED
        assert len(fake_wallet.sent) == 1
        assert session.history[-1] == LaunchStatus.FAILED

    def test_rent_lookup_failure_before_any_submission(self, fake_wallet, fake_rpc):
        async def broken(size):
            raise RuntimeError("rpc unavailable")

        fake_rpc.minimum_rent_exempt_balance = broken
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)
        session = pipeline.new_session(REQUEST)

        with pytest.raises(LaunchError) as exc_info:
            _run(pipeline.run(session))

        assert exc_info.value.last_submitted_step is None
        assert session.steps == []
        assert fake_wallet.calls == 0

    def test_disconnected_wallet_refuses_to_start(self, fake_rpc):
        wallet = FakeWallet(connected=False)
        pipeline = TransactionPipeline(wallet, fake_rpc)
        session = pipeline.new_session(REQUEST)

        with pytest.raises(WalletNotConnectedError):
            _run(pipeline.run(session))

        assert fake_rpc.rent_sizes == []
        assert fake_rpc.blockhash_calls == 0
        assert session.status == LaunchStatus.FAILED

    def test_invalid_input_never_touches_network(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)
        with pytest.raises(ValidationError):
            _run(pipeline.launch({"name": "", "symbol": "ABCDEFGHIJK"}))
        assert fake_rpc.rent_sizes == []
        assert fake_wallet.calls == 0


class TestSessions:
    def test_retry_uses_fresh_mint_identity(self, fake_rpc):
        mints = []
        for _ in range(2):
            pipeline = TransactionPipeline(FakeWallet(fail_on_call=2), fake_rpc)
            with pytest.raises(LaunchError) as exc_info:
                _run(pipeline.execute(REQUEST))
            mints.append(exc_info.value.session.mint_address)
        assert mints[0] != mints[1]

    def test_session_cannot_be_rerun(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)
        session = pipeline.new_session(REQUEST)
        _run(pipeline.run(session))
        with pytest.raises(StateTransitionError):
            _run(pipeline.run(session))

    def test_illegal_transition_rejected(self):
        session = LaunchSession.start(REQUEST)
        with pytest.raises(StateTransitionError):
            session.transition(LaunchStatus.STEP2_SUBMITTED)
        session.transition(LaunchStatus.FAILED)
        with pytest.raises(StateTransitionError):
            session.transition(LaunchStatus.BUILDING)

    def test_wallet_is_never_used_concurrently(self, fake_wallet, fake_rpc):
        pipeline = TransactionPipeline(fake_wallet, fake_rpc)

        async def both():
            return await asyncio.gather(pipeline.execute(REQUEST), pipeline.execute(REQUEST))

        first, second = _run(both())
        assert first.mint_address != second.mint_address
        assert fake_wallet.max_in_flight == 1
        assert len(fake_wallet.sent) == 6
