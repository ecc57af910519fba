"""数据模型定义：密钥对、派生路径、账户记录与代币发行会话。"""

import uuid
from dataclasses import dataclass, field
from decimal import MAX_EMAX, MIN_EMIN, ROUND_FLOOR, Decimal, localcontext
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from base58 import b58decode
from solders.instruction import Instruction
from solders.keypair import Keypair as SolanaKeypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from config import HARDENED_OFFSET, ChainType
from errors import InvalidPathError, StateTransitionError


@dataclass(frozen=True)
class DerivationPath:
    """BIP44 派生路径，各段均为硬化段。"""

    coin_type: int
    account_index: int
    purpose: int = 44
    change: int = 0

    def __post_init__(self) -> None:
        for value in (self.purpose, self.coin_type, self.account_index, self.change):
            if value < 0:
                raise InvalidPathError(f"派生路径分量不能为负数: {value}")
            if value >= HARDENED_OFFSET:
                raise InvalidPathError(f"派生路径分量超出硬化索引范围: {value}")

    def components(self) -> Tuple[int, ...]:
        """返回带硬化偏移的各段索引。"""
        return tuple(
            value + HARDENED_OFFSET
            for value in (self.purpose, self.coin_type, self.account_index, self.change)
        )

    def to_string(self) -> str:
        return f"m/{self.purpose}'/{self.coin_type}'/{self.account_index}'/{self.change}'"


@dataclass(frozen=True)
class Keypair:
    """派生出的链上密钥对，私钥仅存在于内存。"""

    chain_type: ChainType
    derivation_path: str
    private_key: bytes = field(repr=False)
    public_key: bytes
    address: str

    @property
    def address_bytes(self) -> bytes:
        """地址的原始字节：Solana 为 32 字节公钥，EVM 为 20 字节哈希。"""
        if self.chain_type == ChainType.SOLANA:
            return b58decode(self.address)
        return bytes.fromhex(self.address[2:])

    @property
    def secret_key(self) -> bytes:
        """Solana 钱包通用的 64 字节私钥（种子 + 公钥）。"""
        if self.chain_type != ChainType.SOLANA:
            raise ValueError("仅 Solana 密钥对提供 64 字节私钥格式")
        return self.private_key + self.public_key


@dataclass(frozen=True)
class Account:
    """会话内的账户记录，创建后不可变。"""

    account_id: str
    chain_type: ChainType
    address: str
    derivation_index: int
    derivation_path: str
    display_name: str

    def is_solana(self) -> bool:
        """是否为 Solana 链记录。"""
        return self.chain_type == ChainType.SOLANA


@dataclass(frozen=True)
class TokenLaunchRequest:
    """校验通过的代币发行参数。"""

    name: str
    symbol: str
    uri: str
    decimals: int
    initial_supply: Decimal

    @property
    def base_units(self) -> int:
        """floor(initial_supply × 10^decimals)。"""
        with localcontext() as ctx:
            # scaleb 只移动指数，精度够放下全部有效数字即为精确结果
            ctx.prec = max(ctx.prec, len(self.initial_supply.as_tuple().digits))
            ctx.Emax = MAX_EMAX
            ctx.Emin = MIN_EMIN
            scaled = self.initial_supply.scaleb(self.decimals)
            return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


class StepStatus(str, Enum):
    PENDING = "Pending"
    SUBMITTED = "Submitted"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"


class ConfirmationStatus(str, Enum):
    """RPC 返回的交易确认结果。"""

    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"


class LaunchStatus(str, Enum):
    VALIDATING = "Validating"
    BUILDING = "Building"
    STEP1_SUBMITTED = "Step1Submitted"
    STEP1_CONFIRMED = "Step1Confirmed"
    STEP2_SUBMITTED = "Step2Submitted"
    STEP2_CONFIRMED = "Step2Confirmed"
    STEP3_SUBMITTED = "Step3Submitted"
    STEP3_CONFIRMED = "Step3Confirmed"
    COMPLETED = "Completed"
    FAILED = "Failed"


_TERMINAL: FrozenSet[LaunchStatus] = frozenset({LaunchStatus.COMPLETED, LaunchStatus.FAILED})

# 合法迁移表；FAILED 可由任意非终态到达
_TRANSITIONS: Dict[LaunchStatus, FrozenSet[LaunchStatus]] = {
    LaunchStatus.VALIDATING: frozenset({LaunchStatus.BUILDING}),
    LaunchStatus.BUILDING: frozenset({LaunchStatus.STEP1_SUBMITTED}),
    LaunchStatus.STEP1_SUBMITTED: frozenset({LaunchStatus.STEP1_CONFIRMED}),
    LaunchStatus.STEP1_CONFIRMED: frozenset({LaunchStatus.STEP2_SUBMITTED}),
    LaunchStatus.STEP2_SUBMITTED: frozenset({LaunchStatus.STEP2_CONFIRMED, LaunchStatus.STEP3_SUBMITTED}),
    LaunchStatus.STEP2_CONFIRMED: frozenset({LaunchStatus.STEP3_SUBMITTED}),
    LaunchStatus.STEP3_SUBMITTED: frozenset({LaunchStatus.STEP3_CONFIRMED, LaunchStatus.COMPLETED}),
    LaunchStatus.STEP3_CONFIRMED: frozenset({LaunchStatus.COMPLETED}),
}


@dataclass
class TransactionStep:
    """发行流程中的单个交易步骤，归属于唯一的会话。"""

    ordinal: int
    label: str
    required_signers: Tuple[Pubkey, ...] = ()
    instructions: Tuple[Instruction, ...] = ()
    status: StepStatus = StepStatus.PENDING
    signature: Optional[Signature] = None
    error: Optional[str] = None


@dataclass
class LaunchSession:
    """
    单次发行尝试的内存状态。

    每次尝试都新建会话并生成新的临时 mint 密钥对，失败后不复用，
    因此重试永远不会与之前残留在链上的账户冲突。
    """

    request: TokenLaunchRequest
    mint_keypair: SolanaKeypair = field(repr=False)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    steps: List[TransactionStep] = field(default_factory=list)
    signatures: List[Tuple[str, Signature]] = field(default_factory=list)
    status: LaunchStatus = LaunchStatus.VALIDATING
    history: List[LaunchStatus] = field(default_factory=lambda: [LaunchStatus.VALIDATING])

    @classmethod
    def start(cls, request: TokenLaunchRequest) -> "LaunchSession":
        return cls(request=request, mint_keypair=SolanaKeypair())

    @property
    def mint_address(self) -> Pubkey:
        return self.mint_keypair.pubkey()

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    def transition(self, new_status: LaunchStatus) -> None:
        if self.is_terminal:
            raise StateTransitionError(f"会话已结束 ({self.status.value})，不能迁移到 {new_status.value}")
        if new_status != LaunchStatus.FAILED and new_status not in _TRANSITIONS[self.status]:
            raise StateTransitionError(f"非法状态迁移: {self.status.value} -> {new_status.value}")
        self.status = new_status
        self.history.append(new_status)

    def add_step(self, step: TransactionStep) -> TransactionStep:
        expected = len(self.steps) + 1
        if step.ordinal != expected:
            raise StateTransitionError(f"步骤必须按顺序加入，期望第 {expected} 步，实际第 {step.ordinal} 步")
        self.steps.append(step)
        return step

    def step(self, ordinal: int) -> TransactionStep:
        return self.steps[ordinal - 1]

    def steps_with_status(self, status: StepStatus) -> Tuple[int, ...]:
        return tuple(step.ordinal for step in self.steps if step.status == status)

    @property
    def last_submitted_step(self) -> Optional[int]:
        """最后一个已提交（不一定已确认）的步骤序号。"""
        submitted = [step.ordinal for step in self.steps if step.signature is not None]
        return max(submitted) if submitted else None


@dataclass(frozen=True)
class LaunchResult:
    """发行成功后返回给调用方的结果。"""

    mint_address: str
    token_account_address: str
    supply: Decimal
    decimals: int
    base_units: int
    signatures: Tuple[Tuple[str, str], ...]
    unconfirmed_steps: Tuple[int, ...] = ()

    @property
    def fully_confirmed(self) -> bool:
        return not self.unconfirmed_steps
