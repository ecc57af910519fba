"""代币发行参数校验，在任何网络交互之前执行。"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional
from urllib.parse import urlsplit

from config import DEFAULT_DECIMALS, MAX_DECIMALS, MAX_SYMBOL_LENGTH, U64_MAX
from errors import ValidationError
from models import TokenLaunchRequest

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")
_U64_DIGITS = len(str(U64_MAX))


def validate_uri(uri: str) -> bool:
    """基础 URI 语法校验：需要协议，且带主机或路径，不能含空白。"""
    if not uri or any(ch.isspace() for ch in uri):
        return False
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    if not parts.scheme or not _SCHEME_RE.match(parts.scheme):
        return False
    return bool(parts.netloc or parts.path)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_decimal(text: str) -> Optional[Decimal]:
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


class LaunchRequestValidator:
    """按固定顺序逐条校验，首条失败的规则立即报告。"""

    def validate(self, raw_input: Mapping[str, Any]) -> TokenLaunchRequest:
        name = _as_text(raw_input.get("name"))
        symbol = _as_text(raw_input.get("symbol"))
        uri = _as_text(raw_input.get("uri"))
        supply_text = _as_text(raw_input.get("initial_supply"))
        decimals_raw = raw_input.get("decimals", DEFAULT_DECIMALS)
        decimals_text = _as_text(decimals_raw)

        if not name:
            raise ValidationError("name_required", "代币名称不能为空")
        if not symbol:
            raise ValidationError("symbol_required", "代币符号不能为空")
        if len(symbol) > MAX_SYMBOL_LENGTH:
            raise ValidationError("symbol_too_long", f"代币符号不能超过 {MAX_SYMBOL_LENGTH} 个字符")
        if not uri:
            raise ValidationError("uri_required", "元数据 URI 不能为空")
        if not validate_uri(uri):
            raise ValidationError("uri_invalid", "元数据 URI 格式不正确")

        supply = _parse_decimal(supply_text)
        if supply is None:
            raise ValidationError("supply_invalid", "初始供应量必须为有效数字")
        if supply <= 0:
            raise ValidationError("supply_not_positive", "初始供应量必须大于 0")

        decimals_num = _parse_decimal(decimals_text)
        if decimals_num is None or decimals_num != decimals_num.to_integral_value():
            raise ValidationError("decimals_invalid", "小数位数必须为整数")
        if decimals_num < 0 or decimals_num > MAX_DECIMALS:
            raise ValidationError("decimals_out_of_range", f"小数位数必须在 0 到 {MAX_DECIMALS} 之间")

        decimals = int(decimals_num)
        # 数量级超过 u64 位数时直接拒绝，避免换算巨大的整数
        if supply.adjusted() + decimals >= _U64_DIGITS:
            raise ValidationError("supply_too_large", "初始供应量换算为最小单位后超出 u64 上限")

        request = TokenLaunchRequest(
            name=name,
            symbol=symbol.upper(),
            uri=uri,
            decimals=decimals,
            initial_supply=supply,
        )
        base_units = request.base_units
        if base_units < 1:
            raise ValidationError("supply_too_small", "初始供应量换算为最小单位后为 0")
        if base_units > U64_MAX:
            raise ValidationError("supply_too_large", "初始供应量换算为最小单位后超出 u64 上限")
        return request
