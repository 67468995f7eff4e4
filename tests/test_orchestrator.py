"""End-to-end chat turns through the orchestration engine."""

import asyncio
import json

import pytest

from personachat.constants import (
    AI_CHOICE,
    NEW_CONVERSATION_TITLE,
    SYSTEM_AVATAR,
    THINKING_TEXT,
    UNATTRIBUTED_AVATAR,
)
from personachat.conversation.manager import ConversationManager
from personachat.conversation.models import (
    ConversationSettings,
    PersonaSender,
    SystemSender,
    UnattributedSender,
    UserSender,
)
from personachat.conversation.prompt import AI_CHOICE_INSTRUCTION
from personachat.conversation.storage import APP_VERSION_KEY, CONVERSATIONS_KEY, CURRENT_VERSION
from personachat.errors import (
    ConfigurationError,
    ConversationBusyError,
    ConversationNotFoundError,
    MISSING_API_KEY_MESSAGE,
    NO_ACTIVE_PERSONA_MESSAGE,
    TransientTransportError,
)


def _messages(manager):
    return manager.active_conversation().message_list()


def _no_placeholders(manager):
    return all(not m.placeholder and m.text != THINKING_TEXT for m in _messages(manager))


class TestSinglePersonaTurn:
    """One participant per turn."""

    async def test_reply_is_attributed(self, engine, manager, roster, provider):
        provider.default_stream = ["吴", "军: 你", "好"]

        await engine.send_message(user_text="  你好  ")

        user, reply = _messages(manager)
        assert user.sender == UserSender()
        assert user.text == "你好"
        assert reply.sender == PersonaSender(name="吴军")
        assert reply.text == "你好"
        assert reply.avatar == roster.find_by_name("吴军").avatar
        assert _no_placeholders(manager)
        assert not manager.is_loading(manager.active_id)

    async def test_unresolved_speaker_stays_unattributed(self, engine, manager, provider):
        provider.default_stream = ["随便说点什么"]

        await engine.send_message(user_text="聊聊")

        reply = _messages(manager)[-1]
        assert reply.sender == UnattributedSender()
        assert reply.text == "随便说点什么"
        assert reply.avatar.icon == UNATTRIBUTED_AVATAR["icon"]

    async def test_single_mention_becomes_directive(self, engine, manager, provider):
        provider.default_stream = ["万维钢: 从数据看"]

        await engine.send_message(user_text="@万维钢 你怎么看", next_speaker="吴军")

        assert len(provider.stream_calls) == 1
        prompt = provider.stream_calls[0][0]
        assert "用户指定了由 **万维钢** 来回答" in prompt
        assert _messages(manager)[-1].sender == PersonaSender(name="万维钢")

    async def test_ai_choice_without_user_text(self, engine, manager, provider):
        provider.default_stream = ["贾行家: 我来接着说"]

        await engine.send_message(next_speaker=AI_CHOICE)

        messages = _messages(manager)
        assert len(messages) == 1
        assert messages[0].sender == PersonaSender(name="贾行家")
        assert AI_CHOICE_INSTRUCTION in provider.stream_calls[0][0]

    async def test_model_settings_are_forwarded(self, engine, manager, provider, app_config):
        await engine.send_message(user_text="你好")

        _, model, kwargs = provider.stream_calls[0]
        assert model == app_config.llm.chat_model
        assert kwargs == {"temperature": app_config.llm.chat_temperature, "thinking": True}

    async def test_blank_input_does_nothing(self, engine, manager, provider):
        await engine.send_message(user_text="   ")

        assert _messages(manager) == []
        assert provider.stream_calls == []

    async def test_unknown_conversation(self, engine):
        with pytest.raises(ConversationNotFoundError):
            await engine.send_message("missing", user_text="你好")

    async def test_empty_stream_leaves_no_reply(self, engine, manager, provider):
        provider.default_stream = []

        await engine.send_message(user_text="你好")

        messages = _messages(manager)
        assert len(messages) == 1
        assert messages[0].sender == UserSender()


class TestMultiPersonaTurn:
    """Two or more mentions fan out to one generation each."""

    async def test_each_mentioned_persona_replies(self, engine, manager, provider):
        provider.by_speaker = {
            "吴军": ["吴军: ", "观点一"],
            "万维钢": ["万维钢: 观点二"],
        }

        await engine.send_message(user_text="@吴军 和 @万维钢 这个怎么看？")

        user, first, second = _messages(manager)
        assert user.text == "@吴军 和 @万维钢 这个怎么看？"
        assert first.sender == PersonaSender(name="吴军")
        assert first.text == "观点一"
        assert second.sender == PersonaSender(name="万维钢")
        assert second.text == "观点二"
        assert len(provider.stream_calls) == 2
        assert _no_placeholders(manager)
        assert not manager.is_loading(manager.active_id)

    async def test_participant_failures_are_isolated(self, engine, manager, provider):
        provider.by_speaker = {
            "吴军": ["吴军: 我没事"],
            "万维钢": [ValueError("解析失败")],
        }

        await engine.send_message(user_text="@吴军 @万维钢 说说")

        _, ok, failed = _messages(manager)
        assert ok.sender == PersonaSender(name="吴军")
        assert failed.sender == SystemSender()
        assert failed.text == "解析失败"
        assert failed.avatar.icon == SYSTEM_AVATAR["icon"]

    async def test_placeholders_visible_while_generating(self, engine, manager, provider):
        provider.by_speaker = {
            "吴军": [0.05, "吴军: 慢一点"],
            "万维钢": [0.05, "万维钢: 也慢"],
        }

        turn = asyncio.create_task(engine.send_message(user_text="@吴军 @万维钢 慢慢说"))
        await asyncio.sleep(0.01)
        placeholders = [m for m in _messages(manager) if m.placeholder]
        assert [m.text for m in placeholders] == [THINKING_TEXT, THINKING_TEXT]

        await turn
        assert _no_placeholders(manager)


class TestStreamFailures:
    """How stream errors end up in the conversation."""

    async def test_fallback_before_any_fragment(self, engine, manager, provider):
        provider.stream_scripts = [[TransientTransportError("连接断开")]]

        await engine.send_message(user_text="你好")

        user, reply = _messages(manager)
        assert reply.sender == PersonaSender(name="吴军")
        assert reply.text == "备用回答"
        assert len(provider.calls("fallback")) == 1

    async def test_partial_reply_is_kept_after_error(self, engine, manager, provider):
        provider.stream_scripts = [["吴军: 说到一半", TransientTransportError("中断了")]]

        await engine.send_message(user_text="你好")

        _, partial, error = _messages(manager)
        assert partial.sender == PersonaSender(name="吴军")
        assert partial.text == "说到一半"
        assert error.sender == SystemSender()
        assert error.text == "中断了"
        assert provider.calls("fallback") == []

    async def test_missing_credentials_reported_to_user(self, engine, manager, provider):
        provider.stream_scripts = [ConfigurationError()]

        await engine.send_message(user_text="你好")

        _, error = _messages(manager)
        assert error.sender == SystemSender()
        assert error.text == MISSING_API_KEY_MESSAGE
        assert len(provider.stream_calls) == 1
        assert _no_placeholders(manager)

    async def test_no_active_persona(self, engine, manager, provider):
        manager.update_settings(manager.active_id, ConversationSettings(active_persona_ids=[]))

        await engine.send_message(user_text="有人吗")

        _, error = _messages(manager)
        assert error.sender == SystemSender()
        assert error.text == NO_ACTIVE_PERSONA_MESSAGE
        assert provider.stream_calls == []


class TestLoadingGate:
    """One turn at a time per conversation."""

    async def test_second_send_is_rejected_while_busy(self, engine, manager, provider):
        provider.default_stream = [0.05, "吴军: 慢"]
        conv_id = manager.active_id

        turn = asyncio.create_task(engine.send_message(user_text="一"))
        await asyncio.sleep(0.01)
        assert manager.is_loading(conv_id)

        with pytest.raises(ConversationBusyError):
            await engine.send_message(user_text="二")

        await turn
        assert not manager.is_loading(conv_id)
        assert [m.text for m in _messages(manager)] == ["一", "慢"]

    async def test_conversation_deleted_mid_turn(self, engine, manager, provider):
        provider.default_stream = [0.05, "吴军: 没人听了"]
        conv_id = manager.active_id

        turn = asyncio.create_task(engine.send_message(user_text="你好"))
        await asyncio.sleep(0.01)
        manager.delete_conversation(conv_id)
        await turn

        assert manager.find(conv_id) is None
        assert not manager.is_loading(conv_id)


class TestBackgroundWork:
    """Summaries and titles."""

    async def test_long_messages_get_summaries(self, engine, manager, provider):
        await engine.send_message(user_text="长" * 150)
        await engine.background.drain()

        user = _messages(manager)[0]
        assert user.summary == "这是摘要"
        assert len(provider.calls("summary")) == 1

    async def test_short_messages_are_not_summarized(self, engine, manager, provider):
        await engine.send_message(user_text="短" * 80)
        await engine.background.drain()

        assert _messages(manager)[0].summary is None
        assert provider.calls("summary") == []

    async def test_summary_failure_is_swallowed(self, engine, manager, provider):
        provider.replies["summary"] = TransientTransportError()

        await engine.send_message(user_text="长" * 150)
        await engine.background.drain()

        assert _messages(manager)[0].summary is None

    async def test_title_after_enough_messages(self, engine, manager, provider):
        await engine.send_message(user_text="什么是量子计算")
        await engine.background.drain()
        assert manager.active_conversation().title == NEW_CONVERSATION_TITLE
        assert provider.calls("title") == []

        await engine.send_message(user_text="再讲讲")
        await engine.background.drain()

        assert manager.active_conversation().title == "量子计算漫谈"
        title_prompt = provider.calls("title")[0][0]
        assert "用户: 什么是量子计算" in title_prompt

    async def test_title_failure_keeps_default(self, engine, manager, provider):
        provider.replies["title"] = TransientTransportError()

        await engine.send_message(user_text="一")
        await engine.send_message(user_text="二")
        await engine.background.drain()

        assert manager.active_conversation().title == NEW_CONVERSATION_TITLE


class TestDirectionTags:
    """#direction in user input."""

    async def test_tag_sets_direction(self, engine, manager, provider):
        await engine.send_message(user_text="#深入讲讲 黑洞是什么")

        conversation = manager.active_conversation()
        assert conversation.direction == "深入讲讲"
        assert conversation.message_list()[0].text == "黑洞是什么"
        assert "当前方向是：“深入讲讲”" in provider.stream_calls[0][0]

    async def test_tag_only_changes_direction(self, engine, manager, provider):
        await engine.send_message(user_text="#换个视角")

        assert manager.active_conversation().direction == "换个视角"
        assert _messages(manager) == []
        assert provider.stream_calls == []


class TestPersistenceDuringTurn:
    """Thinking placeholders never reach the store."""

    async def test_mid_turn_save_omits_placeholders(self, engine, manager, db, roster, provider, app_config):
        provider.default_stream = [0.1, "吴军: ", 0.1, "好的"]

        turn = asyncio.create_task(engine.send_message(user_text="长" * 150))
        await asyncio.sleep(0.05)
        assert any(m.placeholder for m in _messages(manager))
        exported = json.loads(manager.export_data())

        reloaded = ConversationManager(db, roster, app_config.chat)
        reloaded.load()
        texts = [m.text for m in reloaded.get(manager.active_id).message_list()]
        await turn

        assert texts == ["长" * 150]
        assert THINKING_TEXT not in json.dumps(exported, ensure_ascii=False)

    def test_stale_placeholders_dropped_on_load(self, store, db):
        store.set(
            CONVERSATIONS_KEY,
            [
                {
                    "id": "c1",
                    "messages": [
                        {"id": "m1", "sender": {"kind": "user"}, "text": "你好"},
                        {"id": "thinking-1", "sender": {"kind": "ai"}, "text": THINKING_TEXT, "placeholder": True},
                    ],
                }
            ],
        )
        store.set(APP_VERSION_KEY, CURRENT_VERSION)

        (conversation,) = db.get_conversations()
        assert [m.id for m in conversation.message_list()] == ["m1"]
