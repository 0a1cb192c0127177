"""structlog 配置模块

structlog 事件经 stdlib logging 输出，第三方库（aiosqlite 等）的日志走同一处理器链。
渲染模式：dev 为控制台可读输出，json 为一行一条的结构化输出。
"""

import logging
import os
from datetime import date, datetime
from enum import Enum

import structlog

# 这些库在 DEBUG 级别输出每条 SQL，单独压到 INFO
_NOISY_LOGGERS = ("aiosqlite", "asyncio")


def _plain_values(logger, method_name: str, event_dict: dict) -> dict:
    """把时间与枚举字段转换为字符串，两种渲染模式输出一致"""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, (datetime, date)):
            event_dict[key] = value.isoformat()
    return event_dict


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化 structlog 配置

    Args:
        log_format: "json" 或 "dev"，缺省读取 PLANWISE_LOG_FORMAT（默认 dev）
        log_level: 根 logger 级别名，缺省读取 PLANWISE_LOG_LEVEL（默认 INFO），
            无法识别时按 INFO 处理
    """
    log_format = log_format or os.environ.get("PLANWISE_LOG_FORMAT", "dev")
    level_name = (log_level or os.environ.get("PLANWISE_LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _plain_values,
    ]

    formatter_processors: list[structlog.types.Processor] = [
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
    ]
    if log_format == "json":
        formatter_processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        formatter_processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=formatter_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
