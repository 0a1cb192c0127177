"""文本清洗工具

去除首尾空白与不安全标记（script/style 块、HTML 标签、内联事件处理器、
javascript: 协议），用于 Task / AutomationRule 的用户输入字段。
"""

import re

_BLOCK_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"</?[a-zA-Z][^>]*>")
_EVENT_HANDLER_RE = re.compile(r"\bon[a-z]+\s*=", re.IGNORECASE)
_JS_PROTOCOL_RE = re.compile(r"javascript\s*:", re.IGNORECASE)


def sanitize_string(value: str) -> str:
    """清洗单个字符串

    Args:
        value: 原始输入

    Returns:
        去除不安全标记并 trim 后的字符串
    """
    cleaned = _BLOCK_RE.sub("", value)
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = _EVENT_HANDLER_RE.sub("", cleaned)
    cleaned = _JS_PROTOCOL_RE.sub("", cleaned)
    return cleaned.strip()
