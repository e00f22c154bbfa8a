import pytest

from support_desk.chat.tickets import (
    assess_priority,
    detect_ticket,
    extract_ticket_info,
)
from support_desk.errors import ConfigurationError
from support_desk.storage.tickets import TicketStore


@pytest.mark.parametrize(
    "message, category, priority",
    [
        ("电脑蓝屏了，完全无法工作", "it", "urgent"),
        ("电脑蓝屏了怎么办", "it", "high"),
        ("打印机坏了，网络也连不上", "it", "high"),
        ("打印机没反应", "it", "medium"),
        ("我想申请报销，比较急", "hr", "medium"),
        ("我想申请报销差旅费", "hr", "low"),
        ("VPN无法连接，而且我需要申请权限", "it", "medium"),
    ],
)
def test_detect_ticket(message, category, priority):
    detection = detect_ticket(message)

    assert detection is not None
    assert (detection.category, detection.priority) == (category, priority)


@pytest.mark.parametrize("message", ["请问年假怎么计算", "你好", ""])
def test_plain_questions_do_not_open_tickets(message):
    assert detect_ticket(message) is None


def test_extract_ticket_info_truncates_long_titles():
    message = "我的电脑" * 10

    title, description = extract_ticket_info(message)

    assert title == message[:30] + "..."
    assert description == message
    assert extract_ticket_info("打印机坏了") == ("打印机坏了", "打印机坏了")


@pytest.mark.parametrize(
    "description, priority",
    [
        ("系统崩溃", "urgent"),
        ("登录失败", "high"),
        ("请问如何开通", "low"),
        ("需要一台显示器", "medium"),
    ],
)
def test_assess_priority(description, priority):
    assert assess_priority(description) == priority


def test_ticket_store_crud_and_persistence(tmp_path):
    path = tmp_path / "tickets.json"
    store = TicketStore(path)

    ticket = store.create(title="VPN", description="VPN 连不上", category="it", priority="high")
    assert len(ticket.id) == 6
    assert ticket.status == "pending"

    updated = store.update(ticket.id, status="processing")
    assert updated.status == "processing"
    assert updated.updated_at >= ticket.updated_at
    assert store.update("NOPE00", status="closed") is None

    reloaded = TicketStore(path)
    assert reloaded.load() == 1
    assert reloaded.get(ticket.id).status == "processing"

    assert store.delete(ticket.id) is True
    assert store.delete(ticket.id) is False
    assert len(store) == 0


def test_ticket_store_assesses_missing_priority():
    store = TicketStore()

    ticket = store.create(title="崩溃", description="软件一打开就崩溃", category="it")

    assert ticket.priority == "urgent"


def test_ticket_store_filters_and_stats():
    store = TicketStore()
    store.create(title="a", description="a", category="it", priority="high")
    store.create(title="b", description="b", category="hr", priority="low")
    closed = store.create(title="c", description="c", category="it", priority="low")
    store.update(closed.id, status="closed")

    assert [t.title for t in store.list(category="it")] == ["c", "a"]
    assert [t.title for t in store.list(status="closed")] == ["c"]
    assert [t.title for t in store.list(category="it", priority="low")] == ["c"]

    stats = store.stats()
    assert stats["total"] == 3
    assert stats["byCategory"] == {"hr": 1, "it": 2}
    assert stats["byStatus"]["pending"] == 2
    assert stats["byPriority"]["low"] == 2


def test_ticket_store_rejects_invalid_values():
    store = TicketStore()
    with pytest.raises(ConfigurationError):
        store.create(title="x", description="x", category="finance")
    ticket = store.create(title="x", description="x", category="hr", priority="low")
    with pytest.raises(ConfigurationError):
        store.update(ticket.id, status="archived")
    with pytest.raises(ConfigurationError):
        store.update(ticket.id, category="it")
