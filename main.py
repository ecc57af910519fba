"""命令行入口：生成助记词、派生账户、发行代币。"""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from account_registry import AccountRegistry
from config import DEFAULT_DECIMALS, ENTROPY_BITS_TO_WORDS, ENV_PREFIX, USER_SETTINGS_FILE, ChainType
from errors import (
    EntropySourceError,
    InvalidMnemonicError,
    InvalidPathError,
    LaunchError,
    RpcError,
    ValidationError,
    WalletNotConnectedError,
)
from launch_pipeline import TransactionPipeline
from logging_config import configure_logging, get_logger
from models import Keypair, LaunchResult
from rpc_client import JsonRpcClient, KeypairWallet
from settings import LauncherSettings, load_settings
from wallet_service import KeyDerivationEngine, MnemonicManager

MNEMONIC_ENV = ENV_PREFIX + "MNEMONIC"
_WORDS_TO_BITS = {words: bits for bits, words in ENTROPY_BITS_TO_WORDS.items()}
_CHAIN_CHOICES = {"solana": ChainType.SOLANA, "evm": ChainType.EVM}


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="seedmint")
    parser.add_argument("--settings", default=str(USER_SETTINGS_FILE))
    subparsers = parser.add_subparsers(dest="command", required=True)

    mnemonic_parser = subparsers.add_parser("mnemonic")
    mnemonic_parser.add_argument("--words", type=int, choices=sorted(_WORDS_TO_BITS), default=12)
    mnemonic_parser.set_defaults(func=_generate_mnemonic)

    check_parser = subparsers.add_parser("check-mnemonic")
    check_parser.set_defaults(func=_check_mnemonic)

    derive_parser = subparsers.add_parser("derive")
    derive_parser.add_argument("--chain", choices=sorted(_CHAIN_CHOICES), required=True)
    derive_parser.add_argument("--count", type=int, default=1)
    derive_parser.add_argument("--passphrase", default="")
    derive_parser.set_defaults(func=_derive_accounts)

    launch_parser = subparsers.add_parser("launch")
    launch_parser.add_argument("--name", required=True)
    launch_parser.add_argument("--symbol", required=True)
    launch_parser.add_argument("--uri", required=True)
    launch_parser.add_argument("--supply", required=True)
    launch_parser.add_argument("--decimals", default=DEFAULT_DECIMALS)
    launch_parser.add_argument("--payer-index", type=int, default=0)
    launch_parser.add_argument("--passphrase", default="")
    launch_parser.set_defaults(func=_launch_token)

    args = parser.parse_args(argv)

    try:
        settings = load_settings(Path(args.settings))
        configure_logging(settings.log_level, settings.log_json)
        return args.func(args, settings)
    except ValidationError as exc:
        print(f"ERROR [{exc.rule}]: {exc.message}", file=sys.stderr)
        return 2
    except LaunchError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        print(f"last submitted step: {exc.last_submitted_step}", file=sys.stderr)
        return 3
    except (
        ValueError,
        EntropySourceError,
        InvalidMnemonicError,
        InvalidPathError,
        RpcError,
        WalletNotConnectedError,
    ) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2


def _read_mnemonic() -> str:
    phrase = os.environ.get(MNEMONIC_ENV)
    if phrase is None:
        phrase = sys.stdin.readline()
    return " ".join(phrase.split())


def _generate_mnemonic(args: argparse.Namespace, settings: LauncherSettings) -> int:
    print(MnemonicManager().generate(_WORDS_TO_BITS[args.words]))
    return 0


def _check_mnemonic(args: argparse.Namespace, settings: LauncherSettings) -> int:
    valid = MnemonicManager().validate(_read_mnemonic())
    print("valid" if valid else "invalid")
    return 0 if valid else 1


def _derive_accounts(args: argparse.Namespace, settings: LauncherSettings) -> int:
    if args.count <= 0:
        raise ValueError("数量必须为正整数")
    seed = MnemonicManager().to_seed(_read_mnemonic(), args.passphrase)
    engine = KeyDerivationEngine()
    registry = AccountRegistry()
    chain = _CHAIN_CHOICES[args.chain]
    for _ in range(args.count):
        registry.derive_account(seed, chain, engine)
    rows = [
        {
            "name": acc.display_name,
            "index": acc.derivation_index,
            "path": acc.derivation_path,
            "address": acc.address,
        }
        for acc in registry.accounts(chain)
    ]
    print(json.dumps(rows, ensure_ascii=False, indent=2))
    return 0


def _launch_token(args: argparse.Namespace, settings: LauncherSettings) -> int:
    log = get_logger(__name__)

    seed = MnemonicManager().to_seed(_read_mnemonic(), args.passphrase)
    payer = KeyDerivationEngine().derive_keypair(seed, ChainType.SOLANA, args.payer_index)
    raw_input = {
        "name": args.name,
        "symbol": args.symbol,
        "uri": args.uri,
        "initial_supply": args.supply,
        "decimals": args.decimals,
    }
    log.info("launch_requested", network=settings.network, payer=payer.address)
    result = asyncio.run(_run_launch(settings, payer, raw_input))
    print(
        json.dumps(
            {
                "mint_address": result.mint_address,
                "token_account_address": result.token_account_address,
                "supply": str(result.supply),
                "decimals": result.decimals,
                "base_units": result.base_units,
                "signatures": [{"step": label, "signature": sig} for label, sig in result.signatures],
                "unconfirmed_steps": list(result.unconfirmed_steps),
            },
            indent=2,
        )
    )
    return 0


async def _run_launch(settings: LauncherSettings, payer: Keypair, raw_input: Dict[str, str]) -> LaunchResult:
    async with JsonRpcClient(
        settings.resolve_rpc_url(),
        commitment=settings.commitment,
        confirm_timeout=settings.confirm_timeout,
    ) as rpc:
        wallet = KeypairWallet.from_derived(payer, rpc)
        pipeline = TransactionPipeline(wallet, rpc, confirm_all_steps=settings.confirm_all_steps)
        return await pipeline.launch(raw_input)


if __name__ == "__main__":
    sys.exit(main())
