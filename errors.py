"""错误类型定义：输入校验、前置条件、派生与链上交互四类。"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from models import LaunchSession


class SeedmintError(Exception):
    """所有自定义错误的基类。"""


class EntropySourceError(SeedmintError):
    """随机数来源不可用，无法生成助记词。"""


class InvalidMnemonicError(SeedmintError, ValueError):
    """助记词词表或校验和不合法。"""


class InvalidPathError(SeedmintError, ValueError):
    """派生路径不合法：序号为负、超出硬化范围或格式错误。"""


class DerivationFailureError(SeedmintError):
    """派生过程中的 HMAC / 曲线运算失败，有效输入下不应出现。"""


class ValidationError(SeedmintError, ValueError):
    """代币参数校验失败，rule 为首个未通过的规则名。"""

    def __init__(self, rule: str, message: str) -> None:
        super().__init__(message)
        self.rule = rule
        self.message = message


class WalletNotConnectedError(SeedmintError):
    """签名钱包未连接，发行流程拒绝启动。"""


class RpcError(SeedmintError):
    """RPC 调用失败或返回错误。"""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class TransactionRejectedError(RpcError):
    """交易被网络拒绝或确认超时。"""


class LaunchError(SeedmintError):
    """发行流程在某一步失败；已上链的步骤不会回滚。"""

    def __init__(
        self,
        message: str,
        session: "LaunchSession",
        failed_step: Optional[int],
        last_submitted_step: Optional[int],
    ) -> None:
        super().__init__(message)
        self.session = session
        self.failed_step = failed_step
        self.last_submitted_step = last_submitted_step


class StateTransitionError(SeedmintError):
    """发行会话出现非法状态迁移。"""
