"""
代币发行流水线：按顺序构造、签名、提交三笔交易。

第 1 步创建 mint 账户（外部钱包 + 临时 mint 密钥双签），必须等待确认；
第 2 步创建关联持币账户；第 3 步铸造初始供应量。后两步是否等待确认由
confirm_all_steps 决定，未确认的步骤会在结果中明确列出。
"""

import asyncio
from typing import Any, Mapping, Optional, Protocol, Sequence

import structlog
from solders.hash import Hash
from solders.keypair import Keypair as SolanaKeypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from errors import LaunchError, StateTransitionError, TransactionRejectedError, WalletNotConnectedError
from launch_validator import LaunchRequestValidator
from models import (
    ConfirmationStatus,
    LaunchResult,
    LaunchSession,
    LaunchStatus,
    StepStatus,
    TokenLaunchRequest,
    TransactionStep,
)
from token_program import (
    build_create_holding_account_instructions,
    build_create_mint_instructions,
    build_mint_to_instructions,
    get_associated_token_address,
    launch_storage_sizes,
)

logger = structlog.get_logger(__name__)

STEP_CREATE_MINT = "Mint Created"
STEP_CREATE_HOLDING = "Token Account Created"
STEP_MINT_SUPPLY = "Tokens Minted"

_ACCEPTED = (ConfirmationStatus.CONFIRMED, ConfirmationStatus.FINALIZED)


class SigningWallet(Protocol):
    """外部签名钱包：提供公钥、连接状态与签名广播能力。"""

    @property
    def connected(self) -> bool:
        ...

    @property
    def public_key(self) -> Optional[Pubkey]:
        ...

    async def sign_and_send(self, transaction: Transaction) -> Signature:
        ...


class ChainRpc(Protocol):
    async def minimum_rent_exempt_balance(self, size: int) -> int:
        ...

    async def latest_block_reference(self) -> Hash:
        ...

    async def confirm(self, signature: Signature) -> ConfirmationStatus:
        ...


class TransactionPipeline:
    """发行流水线，每次 execute 都使用全新的会话与临时 mint 密钥。"""

    def __init__(
        self,
        wallet: SigningWallet,
        rpc: ChainRpc,
        confirm_all_steps: bool = True,
        validator: Optional[LaunchRequestValidator] = None,
    ) -> None:
        self._wallet = wallet
        self._rpc = rpc
        self._confirm_all_steps = confirm_all_steps
        self._validator = validator or LaunchRequestValidator()
        # 钱包签名只能串行调用
        self._signing_lock = asyncio.Lock()

    async def launch(self, raw_input: Mapping[str, Any]) -> LaunchResult:
        """校验原始输入后执行发行。"""
        request = self._validator.validate(raw_input)
        return await self.execute(request)

    async def execute(self, request: TokenLaunchRequest) -> LaunchResult:
        return await self.run(self.new_session(request))

    def new_session(self, request: TokenLaunchRequest) -> LaunchSession:
        return LaunchSession.start(request)

    async def run(self, session: LaunchSession) -> LaunchResult:
        if session.status != LaunchStatus.VALIDATING or session.steps:
            raise StateTransitionError("会话已被使用，重试必须新建会话")

        log = logger.bind(session_id=session.session_id, mint=str(session.mint_address))
        if not self._wallet.connected or self._wallet.public_key is None:
            self._advance(session, LaunchStatus.FAILED, log)
            raise WalletNotConnectedError("请先连接钱包")

        request = session.request
        payer = self._wallet.public_key
        mint = session.mint_address
        current = 1
        try:
            self._advance(session, LaunchStatus.BUILDING, log)
            mint_len, metadata_len = launch_storage_sizes(payer, mint, request)
            lamports = await self._rpc.minimum_rent_exempt_balance(mint_len + metadata_len)
            log.info("rent_quoted", space=mint_len, metadata_space=metadata_len, lamports=lamports)

            step = session.add_step(
                TransactionStep(
                    ordinal=1,
                    label=STEP_CREATE_MINT,
                    required_signers=(payer, mint),
                    instructions=build_create_mint_instructions(payer, mint, request, lamports),
                )
            )
            await self._submit(session, step, payer, co_signers=(session.mint_keypair,))
            self._advance(session, LaunchStatus.STEP1_SUBMITTED, log)
            # 后续步骤引用 mint 账户，必须等它上链
            await self._confirm(step)
            self._advance(session, LaunchStatus.STEP1_CONFIRMED, log)

            current = 2
            holding = get_associated_token_address(mint, payer)
            step = session.add_step(
                TransactionStep(
                    ordinal=2,
                    label=STEP_CREATE_HOLDING,
                    required_signers=(payer,),
                    instructions=build_create_holding_account_instructions(payer, holding, payer, mint),
                )
            )
            await self._submit(session, step, payer)
            self._advance(session, LaunchStatus.STEP2_SUBMITTED, log)
            if self._confirm_all_steps:
                await self._confirm(step)
                self._advance(session, LaunchStatus.STEP2_CONFIRMED, log)

            current = 3
            step = session.add_step(
                TransactionStep(
                    ordinal=3,
                    label=STEP_MINT_SUPPLY,
                    required_signers=(payer,),
                    instructions=build_mint_to_instructions(mint, holding, payer, request.base_units),
                )
            )
            await self._submit(session, step, payer)
            self._advance(session, LaunchStatus.STEP3_SUBMITTED, log)
            if self._confirm_all_steps:
                await self._confirm(step)
                self._advance(session, LaunchStatus.STEP3_CONFIRMED, log)

            self._advance(session, LaunchStatus.COMPLETED, log)
        except Exception as exc:
            self._fail(session, current, exc, log)
            raise LaunchError(
                f"第 {current} 步失败: {exc}",
                session=session,
                failed_step=current,
                last_submitted_step=session.last_submitted_step,
            ) from exc

        unconfirmed = session.steps_with_status(StepStatus.SUBMITTED)
        if unconfirmed:
            log.warning("launch_completed_unconfirmed", unconfirmed_steps=unconfirmed)
        return LaunchResult(
            mint_address=str(mint),
            token_account_address=str(holding),
            supply=request.initial_supply,
            decimals=request.decimals,
            base_units=request.base_units,
            signatures=tuple((label, str(sig)) for label, sig in session.signatures),
            unconfirmed_steps=unconfirmed,
        )

    async def _submit(
        self,
        session: LaunchSession,
        step: TransactionStep,
        payer: Pubkey,
        co_signers: Sequence[SolanaKeypair] = (),
    ) -> None:
        blockhash = await self._rpc.latest_block_reference()
        message = Message.new_with_blockhash(list(step.instructions), payer, blockhash)
        transaction = Transaction.new_unsigned(message)
        if co_signers:
            transaction.partial_sign(list(co_signers), blockhash)
        async with self._signing_lock:
            signature = await self._wallet.sign_and_send(transaction)
        step.signature = signature
        step.status = StepStatus.SUBMITTED
        session.signatures.append((step.label, signature))
        logger.info("step_submitted", session_id=session.session_id, step=step.ordinal, signature=str(signature))

    async def _confirm(self, step: TransactionStep) -> None:
        status = ConfirmationStatus(await self._rpc.confirm(step.signature))
        if status not in _ACCEPTED:
            raise TransactionRejectedError(f"交易 {step.signature} 未被确认 ({status.value})")
        step.status = StepStatus.CONFIRMED

    def _advance(self, session: LaunchSession, status: LaunchStatus, log: Any) -> None:
        previous = session.status
        session.transition(status)
        log.info("launch_state_changed", previous=previous.value, status=status.value)

    def _fail(self, session: LaunchSession, ordinal: int, exc: Exception, log: Any) -> None:
        if len(session.steps) >= ordinal:
            step = session.step(ordinal)
            step.status = StepStatus.FAILED
            step.error = str(exc)
        if not session.is_terminal:
            session.transition(LaunchStatus.FAILED)
        log.error(
            "launch_failed",
            failed_step=ordinal,
            last_submitted_step=session.last_submitted_step,
            error=str(exc),
        )
