"""助记词与分层确定性派生服务，支持 Solana 与 EVM 双链。"""

import hashlib
import hmac
import secrets
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Tuple, Union

import structlog
from base58 import b58encode
from eth_account import Account as EthAccount
from eth_keys import constants as eth_constants
from eth_keys import keys as eth_keys
from mnemonic import Mnemonic
from nacl.signing import SigningKey

from config import COIN_TYPES, ENTROPY_BITS_TO_WORDS, HARDENED_OFFSET, ChainType
from errors import (
    DerivationFailureError,
    EntropySourceError,
    InvalidMnemonicError,
    InvalidPathError,
)
from models import DerivationPath, Keypair

logger = structlog.get_logger(__name__)

# 曲线阶常量
SECP256K1_N = eth_constants.SECPK1_N

# 主密钥 HMAC 键
BIP32_SEED_KEY = b"Bitcoin seed"
SLIP10_ED25519_SEED_KEY = b"ed25519 seed"


class MnemonicManager:
    """生成与校验 BIP39 助记词，并转换为二进制种子。"""

    def __init__(
        self,
        language: str = "english",
        entropy_provider: Optional[Callable[[int], bytes]] = None,
    ) -> None:
        self._mnemo = Mnemonic(language)
        self._entropy_provider = entropy_provider or secrets.token_bytes

    def generate(self, entropy_bits: int = 128) -> str:
        """生成全新的助记词，每次调用互不关联。"""
        if entropy_bits not in ENTROPY_BITS_TO_WORDS:
            raise ValueError("熵长度仅支持 128/160/192/224/256 位")
        size = entropy_bits // 8
        try:
            entropy = self._entropy_provider(size)
        except (OSError, NotImplementedError) as exc:
            raise EntropySourceError(f"随机数来源不可用: {exc}") from exc
        if not isinstance(entropy, (bytes, bytearray)) or len(entropy) != size:
            raise EntropySourceError("随机数来源返回的长度不正确")
        return self._mnemo.to_mnemonic(bytes(entropy))

    def validate(self, candidate: object) -> bool:
        """校验词表与校验和，不修改任何状态。"""
        if not isinstance(candidate, str):
            return False
        normalized = " ".join(candidate.split())
        try:
            return bool(self._mnemo.check(normalized))
        except (ValueError, LookupError):
            return False

    def to_seed(self, mnemonic: str, passphrase: str = "") -> bytes:
        """通过 BIP39 标准将助记词转换为 64 字节种子。"""
        if not self.validate(mnemonic):
            raise InvalidMnemonicError("助记词校验未通过")
        return self._mnemo.to_seed(" ".join(mnemonic.split()), passphrase)


def _parse_path(path: str) -> List[Tuple[int, bool]]:
    """解析形如 m/44'/60'/0'/0' 的路径，返回 (序号, 是否硬化) 列表。"""
    segments = path.strip().split("/")
    if not segments or segments[0] != "m":
        raise InvalidPathError(f"派生路径必须以 m 开头: {path!r}")
    parsed = []
    for seg in segments[1:]:
        hardened = seg.endswith("'") or seg.endswith("h") or seg.endswith("H")
        digits = seg[:-1] if hardened else seg
        if not digits.isdigit():
            raise InvalidPathError(f"派生路径段格式错误: {seg!r}")
        index = int(digits)
        if index >= HARDENED_OFFSET:
            raise InvalidPathError(f"派生路径段超出硬化索引范围: {seg!r}")
        parsed.append((index, hardened))
    return parsed


def _master_key(seed: bytes, hmac_key: bytes) -> Tuple[bytes, bytes]:
    if not 16 <= len(seed) <= 64:
        raise DerivationFailureError(f"种子长度必须在 16 到 64 字节之间，实际 {len(seed)}")
    I = hmac.new(hmac_key, seed, hashlib.sha512).digest()
    return I[:32], I[32:]


def _derive_child(private_key: bytes, chain_code: bytes, index: int, hardened: bool) -> Tuple[bytes, bytes]:
    """执行单步 BIP32 子密钥派生（secp256k1）。"""
    if hardened:
        data = b"\x00" + private_key + index.to_bytes(4, "big")
    else:
        pub_compressed = eth_keys.PrivateKey(private_key).public_key.to_compressed_bytes()
        data = pub_compressed + index.to_bytes(4, "big")
    I = hmac.new(chain_code, data, hashlib.sha512).digest()
    Il, Ir = I[:32], I[32:]
    il_int = int.from_bytes(Il, "big")
    if il_int >= SECP256K1_N:
        raise DerivationFailureError(f"子密钥 IL 超出曲线阶，索引 {index:#x} 无效")
    child_int = (il_int + int.from_bytes(private_key, "big")) % SECP256K1_N
    if child_int == 0:
        raise DerivationFailureError(f"子密钥为零，索引 {index:#x} 无效")
    return child_int.to_bytes(32, "big"), Ir


def _derive_private_key_from_path(seed: bytes, path: str) -> bytes:
    """从种子和路径计算最终 secp256k1 私钥。"""
    priv, chain = _master_key(seed, BIP32_SEED_KEY)
    master_int = int.from_bytes(priv, "big")
    if master_int == 0 or master_int >= SECP256K1_N:
        raise DerivationFailureError("主私钥不在曲线阶范围内")
    for index, hardened in _parse_path(path):
        if hardened:
            index += HARDENED_OFFSET
        priv, chain = _derive_child(priv, chain, index, hardened)
    return priv


def _slip10_derive_ed25519(seed: bytes, path: str) -> bytes:
    """依据 SLIP-0010 派生 ed25519 私钥种子，仅支持硬化段。"""
    key, chain_code = _master_key(seed, SLIP10_ED25519_SEED_KEY)
    for index, hardened in _parse_path(path):
        # ed25519 没有仅公钥派生
        if not hardened:
            raise InvalidPathError(f"ed25519 派生只支持硬化段: {path!r}")
        data = b"\x00" + key + (index | HARDENED_OFFSET).to_bytes(4, "big")
        I = hmac.new(chain_code, data, hashlib.sha512).digest()
        key, chain_code = I[:32], I[32:]
    return key


class DerivationStrategy(Protocol):
    chain_type: ChainType

    def derive(self, seed: bytes, path: DerivationPath) -> Keypair:
        ...


class Ed25519Slip10Strategy:
    """Solana：SLIP-10 ed25519 全硬化派生，地址为公钥的 Base58 编码。"""

    chain_type = ChainType.SOLANA

    def derive(self, seed: bytes, path: DerivationPath) -> Keypair:
        path_str = path.to_string()
        private_seed = _slip10_derive_ed25519(seed, path_str)
        signing_key = SigningKey(private_seed)
        verify_key = bytes(signing_key.verify_key)
        return Keypair(
            chain_type=self.chain_type,
            derivation_path=path_str,
            private_key=bytes(signing_key),
            public_key=verify_key,
            address=b58encode(verify_key).decode("utf-8"),
        )


class Secp256k1Bip32Strategy:
    """EVM：BIP32 secp256k1 派生，地址为 EIP-55 校验格式。"""

    chain_type = ChainType.EVM

    def derive(self, seed: bytes, path: DerivationPath) -> Keypair:
        path_str = path.to_string()
        priv_key_bytes = _derive_private_key_from_path(seed, path_str)
        acct = EthAccount.from_key(priv_key_bytes)
        pub_compressed = eth_keys.PrivateKey(priv_key_bytes).public_key.to_compressed_bytes()
        return Keypair(
            chain_type=self.chain_type,
            derivation_path=path_str,
            private_key=priv_key_bytes,
            public_key=pub_compressed,
            address=acct.address,
        )


DEFAULT_STRATEGIES: Dict[ChainType, DerivationStrategy] = {
    ChainType.SOLANA: Ed25519Slip10Strategy(),
    ChainType.EVM: Secp256k1Bip32Strategy(),
}


class KeyDerivationEngine:
    """
    按链类型分派到各自的派生策略。

    新增链只需增加 ChainType 成员、实现策略并登记到策略表，
    引擎本身没有可变状态，相同输入永远得到相同密钥对。
    """

    def __init__(self, strategies: Optional[Mapping[ChainType, DerivationStrategy]] = None) -> None:
        self._strategies = dict(strategies if strategies is not None else DEFAULT_STRATEGIES)

    def path_for(self, chain_type: Union[ChainType, str], index: int) -> DerivationPath:
        chain = _coerce_chain(chain_type)
        if isinstance(index, bool) or not isinstance(index, int):
            raise InvalidPathError(f"账户序号必须为整数: {index!r}")
        if index < 0:
            raise InvalidPathError(f"账户序号不能为负数: {index}")
        return DerivationPath(coin_type=COIN_TYPES[chain], account_index=index)

    def derive_keypair(self, seed: bytes, chain_type: Union[ChainType, str], index: int) -> Keypair:
        chain = _coerce_chain(chain_type)
        strategy = self._strategies.get(chain)
        if strategy is None:
            raise ValueError(f"未支持的链类型: {chain.value}")
        path = self.path_for(chain, index)
        keypair = strategy.derive(seed, path)
        logger.debug("keypair_derived", chain=chain.value, path=keypair.derivation_path, address=keypair.address)
        return keypair


def _coerce_chain(chain_type: Union[ChainType, str]) -> ChainType:
    try:
        return ChainType(chain_type)
    except ValueError:
        raise ValueError(f"未支持的链类型: {chain_type!r}") from None
