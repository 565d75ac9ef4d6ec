"""
Rental Energia - Notifications & Internal Chat Tests
Tests: criação com dedupe, leitura, conversa direta única, contadores de não
lidas e acesso ao chat.
Run: cd backend && pytest tests/test_notifications_chat.py -v
"""

import pytest

import config
from services import internal_chat as chat
from services.internal_chat import ChatAccessError, ChatValidationError
from services.notifications import (
    clamp_limit,
    count_unread,
    create_notification,
    list_notifications,
    mark_all_as_read,
    mark_as_read,
    sanitize_preview,
)
from tests.helpers import create_user, run


# ═══════════════════════════════════════════════════════════════
# 1. NOTIFICAÇÕES
# ═══════════════════════════════════════════════════════════════

class TestNotifications:

    def test_preview(self):
        assert sanitize_preview("  a \n\n b  ") == "a b"
        long_text = "x" * 200
        preview = sanitize_preview(long_text, 20)
        assert len(preview) == 20
        assert preview.endswith("...")

    def test_clamp_limit(self):
        assert clamp_limit(None) == 120
        assert clamp_limit(0) == 1
        assert clamp_limit(1000) == 300

    def test_dedupe_key_updates_instead_of_duplicating(self):
        first = run(create_notification("u1", "TASK_SYSTEM", "A", "m1", dedupe_key="k"))
        second = run(create_notification("u1", "TASK_SYSTEM", "B", "m2", dedupe_key="k"))

        assert first["id"] == second["id"]
        assert second["title"] == "B"
        assert run(config.db.notifications.count_documents({"recipient_user_id": "u1"})) == 1

    def test_same_key_other_recipient(self):
        run(create_notification("u1", "TASK_SYSTEM", "A", "m", dedupe_key="k"))
        run(create_notification("u2", "TASK_SYSTEM", "A", "m", dedupe_key="k"))
        assert run(config.db.notifications.count_documents({})) == 2

    def test_invalid_type(self):
        with pytest.raises(ValueError):
            run(create_notification("u1", "EMAIL", "A", "m"))

    def test_without_recipient(self):
        assert run(create_notification("", "TASK_SYSTEM", "A", "m")) is None

    def test_read_flow(self):
        n1 = run(create_notification("u1", "TASK_SYSTEM", "A", "m"))
        run(create_notification("u1", "TASK_SYSTEM", "B", "m"))
        run(create_notification("u2", "TASK_SYSTEM", "C", "m"))

        assert run(count_unread("u1")) == 2
        assert run(mark_as_read("u1", n1["id"])) is True
        assert run(mark_as_read("u2", n1["id"])) is False
        assert run(count_unread("u1")) == 1

        assert len(run(list_notifications("u1"))) == 1
        assert len(run(list_notifications("u1", include_read=True))) == 2

        assert run(mark_all_as_read("u1")) == 1
        assert run(count_unread("u1")) == 0
        assert run(count_unread("u2")) == 1


# ═══════════════════════════════════════════════════════════════
# 2. CHAT INTERNO
# ═══════════════════════════════════════════════════════════════

class TestInternalChat:

    def test_direct_conversation_is_unique_per_pair(self):
        a = create_user("funcionario_n1", nome="Ana")
        b = create_user("funcionario_n2", nome="Bruno")

        first = run(chat.get_or_create_direct_conversation(a, b["id"]))
        second = run(chat.get_or_create_direct_conversation(b, a["id"]))

        assert first["id"] == second["id"]
        assert run(config.db.chat_participants.count_documents({"conversation_id": first["id"]})) == 2

    def test_message_flow_and_unread(self):
        a = create_user("funcionario_n1", nome="Ana")
        b = create_user("supervisor", nome="Bruno")
        conversation = run(chat.get_or_create_direct_conversation(a, b["id"]))

        message = run(chat.send_message(a, conversation["id"], "  Bom dia  "))
        assert message["body"] == "Bom dia"
        assert message["sender"]["id"] == a["id"]

        assert run(chat.get_unread_total(b)) == 1
        assert run(chat.get_unread_total(a)) == 0

        notes = run(config.db.notifications.find({"recipient_user_id": b["id"]}, {"_id": 0}).to_list(10))
        assert len(notes) == 1
        assert notes[0]["type"] == "INTERNAL_CHAT_MESSAGE"
        assert notes[0]["title"] == "Mensagem interna de Ana"

        listing = run(chat.list_conversations(b))
        assert listing[0]["other_user"]["id"] == a["id"]
        assert listing[0]["unread_count"] == 1
        assert listing[0]["last_message"]["body"] == "Bom dia"

        run(chat.mark_conversation_read(b, conversation["id"]))
        assert run(chat.get_unread_total(b)) == 0
        assert run(count_unread(b["id"])) == 0

    def test_messages_pagination(self):
        a = create_user("funcionario_n1")
        b = create_user("funcionario_n2")
        conversation = run(chat.get_or_create_direct_conversation(a, b["id"]))
        for i in range(5):
            run(config.db.chat_messages.insert_one({
                "id": f"m{i}",
                "conversation_id": conversation["id"],
                "sender_user_id": a["id"],
                "body": f"msg {i}",
                "created_at": f"2026-10-19T10:00:0{i}+00:00",
            }))

        page = run(chat.get_messages(b, conversation["id"], limit=3))
        assert [m["body"] for m in page["messages"]] == ["msg 2", "msg 3", "msg 4"]
        assert page["next_cursor"] == "2026-10-19T10:00:02+00:00"

        older = run(chat.get_messages(b, conversation["id"], limit=3, cursor=page["next_cursor"]))
        assert [m["body"] for m in older["messages"]] == ["msg 0", "msg 1"]
        assert older["next_cursor"] is None

    def test_search_conversations(self):
        a = create_user("funcionario_n1", nome="Ana")
        b = create_user("funcionario_n2", nome="Bruno")
        c = create_user("supervisor", nome="Carla")
        run(chat.get_or_create_direct_conversation(a, b["id"]))
        run(chat.get_or_create_direct_conversation(a, c["id"]))

        found = run(chat.list_conversations(a, search="carl"))
        assert [conv["other_user"]["nome"] for conv in found] == ["Carla"]

    def test_non_participant_denied(self):
        a = create_user("funcionario_n1")
        b = create_user("funcionario_n2")
        outsider = create_user("supervisor")
        conversation = run(chat.get_or_create_direct_conversation(a, b["id"]))
        with pytest.raises(ChatAccessError):
            run(chat.send_message(outsider, conversation["id"], "oi"))

    def test_user_without_chat_access(self):
        seller = create_user("vendedor_externo")
        other = create_user("funcionario_n1")
        with pytest.raises(ChatAccessError):
            run(chat.get_or_create_direct_conversation(seller, other["id"]))

    def test_works_user_has_access(self):
        works = create_user("investidor", department="obras")
        other = create_user("funcionario_n1")
        conversation = run(chat.get_or_create_direct_conversation(works, other["id"]))
        assert conversation["kind"] == "direct"

    def test_validation_errors(self):
        a = create_user("funcionario_n1")
        seller = create_user("vendedor_externo")
        inactive = create_user("funcionario_n2", status="inactive")

        with pytest.raises(ChatValidationError):
            run(chat.get_or_create_direct_conversation(a, a["id"]))
        with pytest.raises(ChatValidationError):
            run(chat.get_or_create_direct_conversation(a, "nao-existe"))
        with pytest.raises(ChatValidationError):
            run(chat.get_or_create_direct_conversation(a, seller["id"]))
        with pytest.raises(ChatValidationError):
            run(chat.get_or_create_direct_conversation(a, inactive["id"]))

    def test_message_length(self):
        a = create_user("funcionario_n1")
        b = create_user("funcionario_n2")
        conversation = run(chat.get_or_create_direct_conversation(a, b["id"]))
        with pytest.raises(ChatValidationError):
            run(chat.send_message(a, conversation["id"], "   "))
        with pytest.raises(ChatValidationError):
            run(chat.send_message(a, conversation["id"], "x" * 2001))

    def test_chat_users_only_eligible(self):
        me = create_user("funcionario_n1", nome="Eu")
        create_user("funcionario_n2", nome="Bia")
        create_user("vendedor_externo", nome="Beto")
        create_user("supervisor", nome="Bruna", status="inactive")

        users = run(chat.list_chat_users(me, search="b"))
        assert [u["nome"] for u in users] == ["Bia"]
