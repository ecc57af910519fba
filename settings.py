"""用户设置：本地 JSON 持久化，环境变量（含 .env）可覆盖。"""

import json
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from config import (
    DEFAULT_COMMITMENT,
    DEFAULT_CONFIRM_TIMEOUT,
    DEFAULT_NETWORK,
    ENV_PREFIX,
    USER_SETTINGS_FILE,
    find_network,
)

_COMMITMENTS = ("processed", "confirmed", "finalized")
_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class LauncherSettings:
    network: str = DEFAULT_NETWORK
    rpc_url: Optional[str] = None
    commitment: str = DEFAULT_COMMITMENT
    confirm_all_steps: bool = True
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT
    log_level: str = "INFO"
    log_json: bool = False

    def resolve_rpc_url(self) -> str:
        """自定义 RPC 优先，否则取预设网络的地址。"""
        if self.rpc_url:
            return self.rpc_url
        net = find_network(self.network)
        if not net.rpc_url:
            raise ValueError(f"网络 {self.network} 未配置 RPC URL")
        return net.rpc_url


def validate_rpc_url(url: str) -> bool:
    """基础格式校验 RPC URL。"""
    if not url:
        return False
    return url.startswith("http://") or url.startswith("https://")


def _coerce(name: str, value: Any) -> Any:
    if name in ("confirm_all_steps", "log_json"):
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_VALUES
        return bool(value)
    if name == "confirm_timeout":
        return float(value)
    return None if value is None else str(value)


def _from_mapping(base: LauncherSettings, data: Mapping[str, Any]) -> LauncherSettings:
    known = {f.name for f in fields(LauncherSettings)}
    updates = {name: _coerce(name, value) for name, value in data.items() if name in known}
    settings = replace(base, **updates)
    if settings.commitment not in _COMMITMENTS:
        raise ValueError(f"commitment 只能是 {'/'.join(_COMMITMENTS)}")
    try:
        find_network(settings.network)
    except KeyError as exc:
        raise ValueError(f"未知网络: {settings.network}") from exc
    if settings.rpc_url and not validate_rpc_url(settings.rpc_url):
        raise ValueError("RPC URL 格式不正确，请使用 http/https 开头")
    return settings


def load_settings(
    settings_path: Path = USER_SETTINGS_FILE,
    environ: Optional[Mapping[str, str]] = None,
) -> LauncherSettings:
    """读取本地配置，再用 SEEDMINT_* 环境变量覆盖；文件缺失或损坏时使用默认值。"""
    settings = LauncherSettings()
    try:
        data = json.loads(settings_path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            settings = _from_mapping(settings, data)
    except FileNotFoundError:
        pass
    except (ValueError, TypeError):
        # 配置损坏时忽略，走默认
        settings = LauncherSettings()

    if environ is None:
        load_dotenv()
        environ = os.environ
    overrides: Dict[str, str] = {}
    for f in fields(LauncherSettings):
        key = ENV_PREFIX + f.name.upper()
        if key in environ:
            overrides[f.name] = environ[key]
    return _from_mapping(settings, overrides) if overrides else settings


def save_settings(settings: LauncherSettings, settings_path: Path = USER_SETTINGS_FILE) -> None:
    """将设置写入本地配置，便于下次启动还原。"""
    settings_path.write_text(json.dumps(asdict(settings), ensure_ascii=False, indent=2), encoding="utf-8")
