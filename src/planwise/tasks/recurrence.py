"""重复任务工具 -- 基于 dateutil.rrule

把 RecurrencePattern 转换为 rrule，并计算下一次/后续多次发生时间。
days_of_week 使用 0 = 周日；dateutil 的 weekday 使用 0 = 周一，转换在此完成。
custom 模式的 rrule_options 直接交给 rrule（weekday 数值按 dateutil 约定）。
"""

from datetime import UTC, datetime
from typing import Any

from dateutil import rrule

from planwise.core.models import RecurrencePattern, RecurrenceType
from planwise.core.models.task import ensure_aware

_PATTERN_FREQ = {
    RecurrenceType.DAILY: rrule.DAILY,
    RecurrenceType.WEEKLY: rrule.WEEKLY,
    RecurrenceType.MONTHLY: rrule.MONTHLY,
}

_FREQ_NAMES = {
    "yearly": rrule.YEARLY,
    "monthly": rrule.MONTHLY,
    "weekly": rrule.WEEKLY,
    "daily": rrule.DAILY,
    "hourly": rrule.HOURLY,
    "minutely": rrule.MINUTELY,
}

# custom 模式允许透传给 rrule 的参数
_CUSTOM_KEYS = frozenset(
    {
        "interval",
        "count",
        "wkst",
        "bysetpos",
        "bymonth",
        "bymonthday",
        "byyearday",
        "byweekno",
        "byweekday",
        "byhour",
        "byminute",
    }
)


def _to_rrule_weekday(day: int) -> int:
    """0 = 周日 -> dateutil 的 6；1 = 周一 -> 0"""
    return 6 if day == 0 else day - 1


def _custom_kwargs(options: dict[str, Any]) -> dict[str, Any]:
    freq = options["freq"]
    if isinstance(freq, str):
        if freq.lower() not in _FREQ_NAMES:
            raise ValueError(f"未知的 rrule freq: {freq}")
        freq = _FREQ_NAMES[freq.lower()]
    unknown = set(options) - _CUSTOM_KEYS - {"freq"}
    if unknown:
        raise ValueError(f"不支持的 rrule 参数: {sorted(unknown)}")
    kwargs = {key: value for key, value in options.items() if key != "freq"}
    kwargs["freq"] = freq
    return kwargs


def build_rrule(recurrence: RecurrencePattern, start: datetime) -> rrule.rrule:
    """构造 rrule

    Args:
        recurrence: 重复模式
        start: 重复序列起点（naive 视为 UTC）

    Raises:
        ValueError: custom 模式参数非法
    """
    start = ensure_aware(start)
    until = recurrence.end_date

    if recurrence.pattern == RecurrenceType.CUSTOM:
        options = _custom_kwargs(recurrence.rrule_options or {})
        freq = options.pop("freq")
        return rrule.rrule(freq, dtstart=start, until=until, **options)

    kwargs: dict[str, Any] = {"interval": recurrence.interval}
    if recurrence.pattern == RecurrenceType.WEEKLY:
        kwargs["byweekday"] = [_to_rrule_weekday(d) for d in recurrence.days_of_week]
    return rrule.rrule(
        _PATTERN_FREQ[recurrence.pattern],
        dtstart=start,
        until=until,
        **kwargs,
    )


def next_occurrence(
    recurrence: RecurrencePattern | None,
    last_occurrence: datetime | None,
    after: datetime | None = None,
) -> datetime | None:
    """计算严格晚于 after 的下一次发生时间

    Args:
        recurrence: 重复模式；None 时返回 None
        last_occurrence: 上一次发生时间（作为序列起点）；None 时以 after 为起点
        after: 下界（不含），默认取 last_occurrence，再缺省取当前时间

    Returns:
        下一次发生时间；超过 end_date 或序列已结束时返回 None
    """
    if recurrence is None:
        return None
    after = ensure_aware(after) or ensure_aware(last_occurrence) or datetime.now(UTC)
    start = ensure_aware(last_occurrence) or after
    return build_rrule(recurrence, start).after(after, inc=False)


def next_occurrences(
    recurrence: RecurrencePattern | None,
    start: datetime,
    count: int,
    after: datetime | None = None,
) -> list[datetime]:
    """计算 after 之后（不含）的最多 count 次发生时间"""
    if recurrence is None or count < 1:
        return []
    after = ensure_aware(after) or datetime.now(UTC)
    result: list[datetime] = []
    for occurrence in build_rrule(recurrence, start).xafter(after, inc=False):
        result.append(occurrence)
        if len(result) >= count:
            break
    return result
