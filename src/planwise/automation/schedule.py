"""定时规则的下次触发时间计算

- daily:   每天 HH:mm
- weekly:  days_of_week（0 = 周日）中每天的 HH:mm
- monthly: 每月 day_of_month 的 HH:mm（超出当月天数时取月末）
- custom:  5 段 cron 表达式（分 时 日 月 周）

所有计算在给定时区的墙钟时间上进行，返回 UTC 时间。
"""

import calendar
import re
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo

from planwise.core.config import SCHEDULE_LOOKAHEAD_DAYS
from planwise.core.models import ScheduleConfig, ScheduleType

_TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):([0-5][0-9])$")


def parse_time(value: str) -> time:
    """解析 HH:mm

    Raises:
        ValueError: 格式不是 HH:mm
    """
    match = _TIME_RE.match(value or "")
    if match is None:
        raise ValueError(f"时刻必须是 HH:mm 格式: {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def sunday_based_weekday(day: date) -> int:
    """0 = 周日 ... 6 = 周六"""
    return (day.weekday() + 1) % 7


# ============================================================
# cron
# ============================================================


def _parse_field(text: str, low: int, high: int) -> frozenset[int]:
    values: set[int] = set()
    for part in text.split(","):
        if not part:
            raise ValueError(f"cron 字段为空: {text!r}")
        step = 1
        if "/" in part:
            part, step_text = part.split("/", 1)
            if not step_text.isdigit() or int(step_text) == 0:
                raise ValueError(f"cron 步长非法: {step_text!r}")
            step = int(step_text)
        if part == "*":
            start, end = low, high
        elif "-" in part:
            start_text, end_text = part.split("-", 1)
            if not (start_text.isdigit() and end_text.isdigit()):
                raise ValueError(f"cron 范围非法: {part!r}")
            start, end = int(start_text), int(end_text)
        elif part.isdigit():
            start = int(part)
            # "5/15" 表示从 5 开始每 15 个单位
            end = high if step > 1 else start
        else:
            raise ValueError(f"cron 值非法: {part!r}")
        if start < low or end > high or start > end:
            raise ValueError(f"cron 值超出范围 {low}-{high}: {part!r}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronExpression:
    """5 段 cron 表达式

    日与周同时受限时按标准 cron 语义取并集；周字段 0 与 7 都表示周日。
    """

    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> "CronExpression":
        """
        Raises:
            ValueError: 表达式不是合法的 5 段 cron
        """
        fields = (expression or "").split()
        if len(fields) != 5:
            raise ValueError(f"cron 表达式必须包含 5 个字段: {expression!r}")
        minute, hour, day, month, weekday = fields
        weekdays = {0 if d == 7 else d for d in _parse_field(weekday, 0, 7)}
        return cls(
            minutes=_parse_field(minute, 0, 59),
            hours=_parse_field(hour, 0, 23),
            days=_parse_field(day, 1, 31),
            months=_parse_field(month, 1, 12),
            weekdays=frozenset(weekdays),
            day_restricted=day != "*",
            weekday_restricted=weekday != "*",
        )

    def matches_day(self, day: date) -> bool:
        if day.month not in self.months:
            return False
        day_ok = day.day in self.days
        weekday_ok = sunday_based_weekday(day) in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def matches(self, moment: datetime) -> bool:
        return (
            self.matches_day(moment.date())
            and moment.hour in self.hours
            and moment.minute in self.minutes
        )

    def next_after(
        self,
        moment: datetime,
        lookahead_days: int = SCHEDULE_LOOKAHEAD_DAYS,
    ) -> datetime | None:
        """严格晚于 moment 的第一个匹配时刻（与 moment 同时区）

        lookahead_days 天内找不到时返回 None。
        """
        tz = moment.tzinfo
        start = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        hours = sorted(self.hours)
        minutes = sorted(self.minutes)

        for offset in range(lookahead_days + 1):
            day = start.date() + timedelta(days=offset)
            if not self.matches_day(day):
                continue
            for hour in hours:
                for minute in minutes:
                    candidate = datetime.combine(day, time(hour, minute), tzinfo=tz)
                    if candidate >= start:
                        return candidate
        return None


# ============================================================
# 下次触发时间
# ============================================================


def _local(moment: datetime, tz: tzinfo | None) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(tz) if tz is not None else moment.astimezone()


def _at(day: date, at: time, tz: tzinfo | None) -> datetime:
    return datetime.combine(day, at, tzinfo=tz)


def _monthly_candidate(year: int, month: int, day_of_month: int, at: time, tz) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return _at(date(year, month, min(day_of_month, last_day)), at, tz)


def next_fire_time(
    schedule: ScheduleConfig,
    after: datetime,
    tz: tzinfo | None = None,
) -> datetime | None:
    """计算严格晚于 after 的下一次触发时间（UTC）

    Args:
        schedule: 调度配置
        after: 基准时间（naive 视为 UTC）
        tz: 墙钟时区，None 使用系统本地时区

    Returns:
        下一次触发时间；custom 表达式在搜索窗口内不匹配时返回 None

    Raises:
        ValueError: 调度配置不完整或格式非法
    """
    local = _local(after, tz)
    zone = local.tzinfo

    if schedule.type == ScheduleType.CUSTOM:
        result = CronExpression.parse(schedule.expression or "").next_after(local)
        return result.astimezone(UTC) if result is not None else None

    at = parse_time(schedule.time or "")

    if schedule.type == ScheduleType.DAILY:
        candidate = _at(local.date(), at, zone)
        if candidate <= local:
            candidate = _at(local.date() + timedelta(days=1), at, zone)
        return candidate.astimezone(UTC)

    if schedule.type == ScheduleType.WEEKLY:
        if not schedule.days_of_week:
            raise ValueError("weekly 调度至少需要一个 days_of_week")
        for offset in range(8):
            day = local.date() + timedelta(days=offset)
            if sunday_based_weekday(day) not in schedule.days_of_week:
                continue
            candidate = _at(day, at, zone)
            if candidate > local:
                return candidate.astimezone(UTC)
        return None

    # monthly
    day_of_month = schedule.day_of_month or 1
    candidate = _monthly_candidate(local.year, local.month, day_of_month, at, zone)
    if candidate <= local:
        year, month = (local.year + 1, 1) if local.month == 12 else (local.year, local.month + 1)
        candidate = _monthly_candidate(year, month, day_of_month, at, zone)
    return candidate.astimezone(UTC)
