"""Token-2022 指令构造与元数据编码，全部为无副作用的纯函数。"""

import hashlib
import struct
from typing import Sequence, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account

from config import (
    ACCOUNT_SIZE,
    ACCOUNT_TYPE_SIZE,
    ASSOCIATED_TOKEN_PROGRAM_ID,
    LENGTH_SIZE,
    METADATA_POINTER_SIZE,
    MINT_SIZE,
    SYSTEM_PROGRAM_ID,
    SYSVAR_RENT_ID,
    TOKEN_2022_PROGRAM_ID,
    TYPE_SIZE,
)
from models import TokenLaunchRequest

TOKEN_2022_PROGRAM = Pubkey.from_string(TOKEN_2022_PROGRAM_ID)
ASSOCIATED_TOKEN_PROGRAM = Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM_ID)
SYSTEM_PROGRAM = Pubkey.from_string(SYSTEM_PROGRAM_ID)
SYSVAR_RENT = Pubkey.from_string(SYSVAR_RENT_ID)

# 多签账户长度，扩展后的 mint 恰好等于该值时需额外补一个类型字段
MULTISIG_SIZE = 355

# Token-2022 指令编号
IX_INITIALIZE_MINT = 0
IX_MINT_TO = 7
IX_METADATA_POINTER_EXTENSION = 39
METADATA_POINTER_INITIALIZE = 0

# spl-token-metadata-interface 的 initialize 指令鉴别码
TOKEN_METADATA_INITIALIZE = hashlib.sha256(b"spl_token_metadata_interface:initialize_account").digest()[:8]


def _borsh_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


def pack_token_metadata(
    update_authority: Pubkey,
    mint: Pubkey,
    name: str,
    symbol: str,
    uri: str,
    additional_metadata: Sequence[Tuple[str, str]] = (),
) -> bytes:
    """按 Borsh 序列化 TokenMetadata：两个公钥、三个字符串和附加字段列表。"""
    extra = struct.pack("<I", len(additional_metadata))
    for key, value in additional_metadata:
        extra += _borsh_string(key) + _borsh_string(value)
    return (
        bytes(update_authority)
        + bytes(mint)
        + _borsh_string(name)
        + _borsh_string(symbol)
        + _borsh_string(uri)
        + extra
    )


def metadata_extension_len(packed: bytes) -> int:
    """TLV 形式的元数据扩展长度：类型 + 长度前缀 + 数据。"""
    return TYPE_SIZE + LENGTH_SIZE + len(packed)


def get_mint_len(extension_sizes: Sequence[int] = (METADATA_POINTER_SIZE,)) -> int:
    """带固定长度扩展的 mint 账户长度，默认只含 metadata pointer。"""
    if not extension_sizes:
        return MINT_SIZE
    length = ACCOUNT_SIZE + ACCOUNT_TYPE_SIZE + sum(TYPE_SIZE + LENGTH_SIZE + size for size in extension_sizes)
    if length == MULTISIG_SIZE:
        return length + TYPE_SIZE
    return length


def launch_storage_sizes(payer: Pubkey, mint: Pubkey, request: TokenLaunchRequest) -> Tuple[int, int]:
    """返回 (mint 账户长度, 元数据扩展长度)，两者之和决定免租金额。"""
    packed = pack_token_metadata(payer, mint, request.name, request.symbol, request.uri)
    return get_mint_len(), metadata_extension_len(packed)


def get_associated_token_address(
    mint: Pubkey,
    owner: Pubkey,
    token_program: Pubkey = TOKEN_2022_PROGRAM,
) -> Pubkey:
    """持币账户地址只取决于 (owner, token program, mint)。"""
    address, _bump = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM,
    )
    return address


def initialize_metadata_pointer_instruction(mint: Pubkey, authority: Pubkey, metadata_address: Pubkey) -> Instruction:
    data = bytes([IX_METADATA_POINTER_EXTENSION, METADATA_POINTER_INITIALIZE]) + bytes(authority) + bytes(metadata_address)
    return Instruction(
        TOKEN_2022_PROGRAM,
        data,
        [AccountMeta(mint, is_signer=False, is_writable=True)],
    )


def initialize_mint_instruction(mint: Pubkey, decimals: int, mint_authority: Pubkey) -> Instruction:
    # 不设冻结权限：option 标志为 0，后随 32 字节占位
    data = bytes([IX_INITIALIZE_MINT, decimals]) + bytes(mint_authority) + b"\x00" + bytes(32)
    return Instruction(
        TOKEN_2022_PROGRAM,
        data,
        [
            AccountMeta(mint, is_signer=False, is_writable=True),
            AccountMeta(SYSVAR_RENT, is_signer=False, is_writable=False),
        ],
    )


def initialize_token_metadata_instruction(
    mint: Pubkey,
    update_authority: Pubkey,
    mint_authority: Pubkey,
    name: str,
    symbol: str,
    uri: str,
) -> Instruction:
    data = TOKEN_METADATA_INITIALIZE + _borsh_string(name) + _borsh_string(symbol) + _borsh_string(uri)
    return Instruction(
        TOKEN_2022_PROGRAM,
        data,
        [
            AccountMeta(mint, is_signer=False, is_writable=True),
            AccountMeta(update_authority, is_signer=False, is_writable=False),
            AccountMeta(mint, is_signer=False, is_writable=False),
            AccountMeta(mint_authority, is_signer=True, is_writable=False),
        ],
    )


def build_create_mint_instructions(
    payer: Pubkey,
    mint: Pubkey,
    request: TokenLaunchRequest,
    lamports: int,
) -> Tuple[Instruction, ...]:
    """
    第 1 步：创建 mint 账户并在同一笔交易里初始化。

    账户按 mint 长度创建，但预付的租金覆盖元数据扩展，
    元数据初始化指令会在链上自行扩容。
    """
    mint_len = get_mint_len()
    return (
        create_account(
            CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=mint,
                lamports=lamports,
                space=mint_len,
                owner=TOKEN_2022_PROGRAM,
            )
        ),
        initialize_metadata_pointer_instruction(mint, payer, mint),
        initialize_mint_instruction(mint, request.decimals, payer),
        initialize_token_metadata_instruction(mint, payer, payer, request.name, request.symbol, request.uri),
    )


def build_create_holding_account_instructions(
    payer: Pubkey,
    holding_account: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
) -> Tuple[Instruction, ...]:
    """第 2 步：创建关联持币账户。"""
    return (
        Instruction(
            ASSOCIATED_TOKEN_PROGRAM,
            b"",
            [
                AccountMeta(payer, is_signer=True, is_writable=True),
                AccountMeta(holding_account, is_signer=False, is_writable=True),
                AccountMeta(owner, is_signer=False, is_writable=False),
                AccountMeta(mint, is_signer=False, is_writable=False),
                AccountMeta(SYSTEM_PROGRAM, is_signer=False, is_writable=False),
                AccountMeta(TOKEN_2022_PROGRAM, is_signer=False, is_writable=False),
            ],
        ),
    )


def build_mint_to_instructions(
    mint: Pubkey,
    holding_account: Pubkey,
    authority: Pubkey,
    amount: int,
) -> Tuple[Instruction, ...]:
    """第 3 步：向持币账户铸造初始供应量（最小单位）。"""
    return (
        Instruction(
            TOKEN_2022_PROGRAM,
            struct.pack("<BQ", IX_MINT_TO, amount),
            [
                AccountMeta(mint, is_signer=False, is_writable=True),
                AccountMeta(holding_account, is_signer=False, is_writable=True),
                AccountMeta(authority, is_signer=True, is_writable=False),
            ],
        ),
    )
