"""会话内账户登记：按链分配严格递增的派生序号。"""

import threading
import uuid
from typing import Dict, List, Optional, Set, Tuple, Union

import structlog

from config import CHAIN_DISPLAY_NAMES, ChainType
from models import Account
from wallet_service import KeyDerivationEngine

logger = structlog.get_logger(__name__)


class AccountRegistry:
    """
    记录本次会话派生出的账户。

    每条链各自维护计数器，从 0 开始，只增不减；
    没有删除操作，序号也从不复用。
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._counters: Dict[ChainType, int] = {}
        self._accounts: List[Account] = []
        self._used: Set[Tuple[ChainType, int]] = set()

    def next_index(self, chain_type: Union[ChainType, str]) -> int:
        """返回当前序号并自增。"""
        chain = ChainType(chain_type)
        with self._lock:
            index = self._counters.get(chain, 0)
            self._counters[chain] = index + 1
            return index

    def register(self, account: Account) -> None:
        """按插入顺序追加账户，同链序号不可重复。"""
        key = (account.chain_type, account.derivation_index)
        with self._lock:
            if key in self._used:
                raise ValueError(
                    f"{account.chain_type.value} 序号 {account.derivation_index} 已被占用"
                )
            self._used.add(key)
            self._accounts.append(account)

    def derive_account(
        self,
        seed: bytes,
        chain_type: Union[ChainType, str],
        engine: KeyDerivationEngine,
    ) -> Account:
        """取下一个序号、派生密钥并登记，整个过程在锁内完成。"""
        chain = ChainType(chain_type)
        with self._lock:
            index = self.next_index(chain)
            keypair = engine.derive_keypair(seed, chain, index)
            ordinal = sum(1 for acc in self._accounts if acc.chain_type == chain) + 1
            account = Account(
                account_id=uuid.uuid4().hex,
                chain_type=chain,
                address=keypair.address,
                derivation_index=index,
                derivation_path=keypair.derivation_path,
                display_name=f"{CHAIN_DISPLAY_NAMES[chain]} Account {ordinal}",
            )
            self.register(account)
        logger.info("account_registered", chain=chain.value, index=index, address=account.address)
        return account

    def accounts(self, chain_type: Optional[Union[ChainType, str]] = None) -> Tuple[Account, ...]:
        with self._lock:
            if chain_type is None:
                return tuple(self._accounts)
            chain = ChainType(chain_type)
            return tuple(acc for acc in self._accounts if acc.chain_type == chain)

    def __len__(self) -> int:
        return len(self._accounts)
