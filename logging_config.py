"""
日志配置：统一使用 structlog，底层走标准库 logging。

助记词与私钥一律不写入日志。
"""

import logging
import sys
from typing import Any, List

import structlog


def configure_logging(level: str = "INFO", format_json: bool = False) -> None:
    """
    配置整个应用的 structlog。

    :param level: 日志级别（DEBUG/INFO/WARNING/ERROR）
    :param format_json: 为 True 时输出 JSON，否则输出便于阅读的控制台格式
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        stream=sys.stderr,
        format="%(message)s",
    )

    processors: List[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if format_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)
