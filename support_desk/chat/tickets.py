"""Keyword heuristic deciding whether a chat message should open a ticket."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..models import Priority, TicketCategory

# Faults that need someone from IT to act.
IT_KEYWORDS = (
    "坏了", "故障", "无法连接", "连不上", "断网", "网络断",
    "蓝屏", "死机", "崩溃", "卡死", "卡顿",
    "打不开", "启动不了", "安装失败", "卸载不了",
    "忘记密码", "密码错误", "账号锁定", "无法登录",
    "打印机", "投影仪", "扫描仪", "设备故障",
    "无法访问", "访问不了", "权限问题", "没有权限",
)
IT_URGENT_TERMS = ("紧急", "完全", "无法工作")
IT_HIGH_TERMS = ("蓝屏", "崩溃")

# Requests HR usually has to follow up on.
HR_KEYWORDS = (
    "申请", "报销", "请假", "离职", "入职",
    "工资条", "薪资问题", "社保问题", "公积金问题",
)
HR_URGENT_TERMS = ("急", "尽快")

# Used when a ticket is filed by hand without a priority.
URGENT_DESCRIPTION_TERMS = ("紧急", "无法工作", "无法连接", "完全", "全部", "崩溃", "死机")
HIGH_DESCRIPTION_TERMS = ("故障", "错误", "异常", "不能", "无法", "失败")
LOW_DESCRIPTION_TERMS = ("咨询", "询问", "了解", "问题", "请问")

TITLE_LIMIT = 30


@dataclass(frozen=True)
class TicketDetection:
    category: TicketCategory
    priority: Priority


def _contains_any(text: str, terms: tuple) -> bool:
    return any(term in text for term in terms)


def detect_ticket(message: str) -> Optional[TicketDetection]:
    """Classify ``message`` as an IT fault, an HR request, or neither.

    IT keywords are checked first, so a message that matches both sets is
    treated as an IT ticket.
    """

    text = message.lower()

    it_hits = sum(1 for keyword in IT_KEYWORDS if keyword in text)
    if it_hits:
        if _contains_any(text, IT_URGENT_TERMS):
            priority: Priority = "urgent"
        elif it_hits >= 2 or _contains_any(text, IT_HIGH_TERMS):
            priority = "high"
        else:
            priority = "medium"
        return TicketDetection(category="it", priority=priority)

    if _contains_any(text, HR_KEYWORDS):
        priority = "medium" if _contains_any(text, HR_URGENT_TERMS) else "low"
        return TicketDetection(category="hr", priority=priority)

    return None


def extract_ticket_info(message: str) -> tuple[str, str]:
    """Return ``(title, description)`` for a ticket raised from ``message``."""

    title = message if len(message) <= TITLE_LIMIT else message[:TITLE_LIMIT] + "..."
    return title, message


def assess_priority(description: str) -> Priority:
    text = description.lower()
    if _contains_any(text, URGENT_DESCRIPTION_TERMS):
        return "urgent"
    if _contains_any(text, HIGH_DESCRIPTION_TERMS):
        return "high"
    if _contains_any(text, LOW_DESCRIPTION_TERMS):
        return "low"
    return "medium"
