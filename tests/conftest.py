"""测试共用的假钱包与假 RPC。"""

import asyncio
from typing import List, Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair as SolanaKeypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from models import ConfirmationStatus

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)


class FakeRpc:
    def __init__(self, confirm_statuses: Optional[List[ConfirmationStatus]] = None) -> None:
        self.rent_sizes: List[int] = []
        self.confirmed: List[Signature] = []
        self.blockhash_calls = 0
        self._confirm_statuses = list(confirm_statuses or [])

    async def minimum_rent_exempt_balance(self, size: int) -> int:
        self.rent_sizes.append(size)
        return 890_880 + size * 6_960

    async def latest_block_reference(self) -> Hash:
        self.blockhash_calls += 1
        return Hash.default()

    async def confirm(self, signature: Signature) -> ConfirmationStatus:
        self.confirmed.append(signature)
        if self._confirm_statuses:
            return self._confirm_statuses.pop(0)
        return ConfirmationStatus.CONFIRMED


class FakeWallet:
    def __init__(self, fail_on_call: Optional[int] = None, connected: bool = True) -> None:
        self.keypair = SolanaKeypair()
        self.sent: List[Transaction] = []
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._fail_on_call = fail_on_call
        self._connected = connected

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def public_key(self) -> Optional[Pubkey]:
        return self.keypair.pubkey() if self._connected else None

    async def sign_and_send(self, transaction: Transaction) -> Signature:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self._fail_on_call == self.calls:
                raise RuntimeError("insufficient lamports for rent exemption")
            transaction.partial_sign([self.keypair], transaction.message.recent_blockhash)
            self.sent.append(transaction)
            return transaction.signatures[0]
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_rpc():
    return FakeRpc()


@pytest.fixture
def fake_wallet():
    return FakeWallet()


@pytest.fixture
def seed():
    from wallet_service import MnemonicManager

    return MnemonicManager().to_seed(TEST_MNEMONIC)
