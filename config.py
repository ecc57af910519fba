"""全局配置：链类型、派生路径模板、预设网络与链上程序常量。"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


class ChainType(str, Enum):
    """链类型枚举，派生策略按此分派。"""

    SOLANA = "Solana"
    EVM = "EVM"


@dataclass(frozen=True)
class NetworkConfig:
    """网络配置模型，支持预设与自定义网络。"""

    name: str
    chain_type: ChainType
    rpc_url: Optional[str] = None
    chain_id: Optional[int] = None
    is_custom: bool = False


# BIP44 币种编号（SLIP-44）
COIN_TYPES: Dict[ChainType, int] = {
    ChainType.SOLANA: 501,
    ChainType.EVM: 60,
}

# 账户展示名称前缀
CHAIN_DISPLAY_NAMES: Dict[ChainType, str] = {
    ChainType.SOLANA: "Solana",
    ChainType.EVM: "Ethereum",
}

# 全硬化派生路径模板，账户序号位于第三段
DERIVATION_PATH_TEMPLATE_SOL = "m/44'/501'/{index}'/0'"
DERIVATION_PATH_TEMPLATE_EVM = "m/44'/60'/{index}'/0'"

# 硬化索引起点，账户序号必须小于该值
HARDENED_OFFSET = 0x80000000

# BIP39 熵长度（位）与词数对应关系
ENTROPY_BITS_TO_WORDS: Dict[int, int] = {128: 12, 160: 15, 192: 18, 224: 21, 256: 24}

# 预设网络列表，代币发行只面向 Solana 集群
PRESET_NETWORKS: List[NetworkConfig] = [
    NetworkConfig(name="Solana", chain_type=ChainType.SOLANA, rpc_url="https://api.mainnet-beta.solana.com"),
    NetworkConfig(name="Solana Devnet", chain_type=ChainType.SOLANA, rpc_url="https://api.devnet.solana.com"),
    NetworkConfig(name="Solana Testnet", chain_type=ChainType.SOLANA, rpc_url="https://api.testnet.solana.com"),
    NetworkConfig(name="Solana Localnet", chain_type=ChainType.SOLANA, rpc_url="http://127.0.0.1:8899"),
    NetworkConfig(name="Custom Network / RPC", chain_type=ChainType.SOLANA, is_custom=True),
]

# 链上程序地址
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
SYSVAR_RENT_ID = "SysvarRent111111111111111111111111111111111"

# Token-2022 账户布局
MINT_SIZE = 82
ACCOUNT_SIZE = 165
ACCOUNT_TYPE_SIZE = 1
TYPE_SIZE = 2
LENGTH_SIZE = 2
METADATA_POINTER_SIZE = 64

# 代币参数限制
MAX_SYMBOL_LENGTH = 10
MAX_DECIMALS = 9
DEFAULT_DECIMALS = "9"
U64_MAX = 2**64 - 1

# 默认确认级别与等待时长（秒）
DEFAULT_NETWORK = "Solana Devnet"
DEFAULT_COMMITMENT = "confirmed"
DEFAULT_CONFIRM_TIMEOUT = 60.0
CONFIRM_POLL_INTERVAL = 0.5

# 用户设置存储位置与环境变量前缀
USER_SETTINGS_FILE = Path("user_settings.json")
ENV_PREFIX = "SEEDMINT_"


def find_network(name: str) -> NetworkConfig:
    """按名称查找预设网络。"""
    for net in PRESET_NETWORKS:
        if net.name == name:
            return net
    raise KeyError(f"未知网络: {name}")
