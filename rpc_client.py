"""Solana JSON-RPC 适配器与本地密钥钱包。"""

import asyncio
import base64
import itertools
from typing import Any, List, Optional

import httpx
import structlog
from solders.hash import Hash
from solders.keypair import Keypair as SolanaKeypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from config import CONFIRM_POLL_INTERVAL, DEFAULT_COMMITMENT, DEFAULT_CONFIRM_TIMEOUT, ChainType
from errors import RpcError, TransactionRejectedError
from models import ConfirmationStatus, Keypair

logger = structlog.get_logger(__name__)

_COMMITMENT_RANK = {
    ConfirmationStatus.PROCESSED: 0,
    ConfirmationStatus.CONFIRMED: 1,
    ConfirmationStatus.FINALIZED: 2,
}


class JsonRpcClient:
    """基于 httpx 的异步 JSON-RPC 客户端，只实现发行流程需要的方法。"""

    def __init__(
        self,
        endpoint: str,
        commitment: str = DEFAULT_COMMITMENT,
        confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT,
        poll_interval: float = CONFIRM_POLL_INTERVAL,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._endpoint = endpoint
        self._commitment = ConfirmationStatus(commitment)
        if self._commitment == ConfirmationStatus.FAILED:
            raise ValueError("commitment 只能是 processed/confirmed/finalized")
        self._confirm_timeout = confirm_timeout
        self._poll_interval = poll_interval
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._request_ids = itertools.count(1)

    async def __aenter__(self) -> "JsonRpcClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _call(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._request_ids), "method": method, "params": params}
        try:
            resp = await self._client.post(self._endpoint, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as exc:
            raise RpcError(f"RPC 请求失败 ({method}): {exc}") from exc
        except ValueError as exc:
            raise RpcError(f"RPC 响应不是合法 JSON ({method})") from exc
        if body.get("error"):
            error = body["error"]
            raise RpcError(error.get("message", str(error)), code=error.get("code"))
        return body.get("result")

    async def minimum_rent_exempt_balance(self, size: int) -> int:
        result = await self._call(
            "getMinimumBalanceForRentExemption",
            [size, {"commitment": self._commitment.value}],
        )
        return int(result)

    async def latest_block_reference(self) -> Hash:
        result = await self._call("getLatestBlockhash", [{"commitment": self._commitment.value}])
        return Hash.from_string(result["value"]["blockhash"])

    async def send_transaction(self, transaction: Transaction) -> Signature:
        encoded = base64.b64encode(bytes(transaction)).decode("ascii")
        result = await self._call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self._commitment.value}],
        )
        return Signature.from_string(result)

    async def confirm(self, signature: Signature) -> ConfirmationStatus:
        """轮询签名状态，直到达到配置的确认级别、交易报错或超时。"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._confirm_timeout
        while True:
            result = await self._call("getSignatureStatuses", [[str(signature)]])
            status = (result.get("value") or [None])[0]
            if status is not None:
                if status.get("err") is not None:
                    logger.warning("transaction_failed", signature=str(signature), err=status["err"])
                    return ConfirmationStatus.FAILED
                reached = status.get("confirmationStatus")
                if reached and _COMMITMENT_RANK[ConfirmationStatus(reached)] >= _COMMITMENT_RANK[self._commitment]:
                    return ConfirmationStatus(reached)
            if loop.time() >= deadline:
                raise TransactionRejectedError(f"等待交易 {signature} 确认超时")
            await asyncio.sleep(self._poll_interval)


class KeypairWallet:
    """用本地 Solana 密钥对充当签名钱包，适合命令行与测试网环境。"""

    def __init__(self, keypair: SolanaKeypair, rpc: JsonRpcClient) -> None:
        self._keypair = keypair
        self._rpc = rpc
        self._connected = True

    @classmethod
    def from_derived(cls, keypair: Keypair, rpc: JsonRpcClient) -> "KeypairWallet":
        if keypair.chain_type != ChainType.SOLANA:
            raise ValueError("只有 Solana 密钥对可以作为发行钱包")
        return cls(SolanaKeypair.from_seed(keypair.private_key), rpc)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def public_key(self) -> Optional[Pubkey]:
        return self._keypair.pubkey() if self._connected else None

    def disconnect(self) -> None:
        self._connected = False

    async def sign_and_send(self, transaction: Transaction) -> Signature:
        if not self._connected:
            raise RpcError("钱包已断开")
        transaction.partial_sign([self._keypair], transaction.message.recent_blockhash)
        return await self._rpc.send_transaction(transaction)
