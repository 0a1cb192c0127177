"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、字段长度限制、工时上限、调度搜索窗口等可配置常量，
以及自动化子系统的 AutomationConfig。
"""

import os
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("PLANWISE_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "PLANWISE_DB_PATH",
        str(_get_base_dir() / "sqlite" / "planwise.db"),
    )


# 单次手动工时录入上限（分钟，含边界，即一天）
MAX_MANUAL_ENTRY_MINUTES: int = 1440

# Task 字段长度限制
TASK_TITLE_MAX_LENGTH: int = 500
TASK_DESCRIPTION_MAX_LENGTH: int = 5000
TASK_TAG_MAX_LENGTH: int = 50

# AutomationRule 字段长度限制
RULE_NAME_MAX_LENGTH: int = 200
RULE_DESCRIPTION_MAX_LENGTH: int = 1000

# cron 表达式向后搜索的最大天数（超过则认为表达式永不触发）
SCHEDULE_LOOKAHEAD_DAYS: int = int(
    os.environ.get("PLANWISE_SCHEDULE_LOOKAHEAD_DAYS", "366")
)


class AutomationConfig(BaseModel):
    """自动化子系统配置 -- 从环境变量加载

    环境变量:
        PLANWISE_AUTOMATION_ENABLED: 是否启用规则调度（默认 true）
        PLANWISE_TIMEZONE: 定时规则使用的时区（默认取系统本地时区）
    """

    enabled: bool = Field(default=True, description="是否启用自动化规则")
    timezone: str | None = Field(
        default=None,
        description="IANA 时区名，None 表示使用系统本地时区",
    )

    def tzinfo(self):
        """返回配置的时区对象，未配置时返回 None（调用方使用本地时区）"""
        if self.timezone is None:
            return None
        return ZoneInfo(self.timezone)


def load_automation_config() -> AutomationConfig:
    """从环境变量加载 AutomationConfig

    无效值不阻塞启动：记录 warning 并回退到默认值。
    """
    kwargs: dict = {}

    if val := os.environ.get("PLANWISE_AUTOMATION_ENABLED"):
        kwargs["enabled"] = val.strip().lower() not in ("0", "false", "no", "off")

    if val := os.environ.get("PLANWISE_TIMEZONE"):
        try:
            ZoneInfo(val)
            kwargs["timezone"] = val
        except (ZoneInfoNotFoundError, ValueError):
            log.warning(
                "invalid_timezone_config",
                env_var="PLANWISE_TIMEZONE",
                value=val,
                fallback="local",
            )

    return AutomationConfig(**kwargs)
