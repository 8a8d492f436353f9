import pydantic
import pytest

from chat_relay.client.conversation import Conversation, TurnInProgressError
from chat_relay.models import ChatMessage


def test_begin_turn_appends_user_and_placeholder():
    conversation = Conversation([ChatMessage(role="assistant", content="Welcome")])
    token = conversation.begin_turn("  Hi  ")

    assert conversation.loading
    assert [m.content for m in conversation.messages] == ["Welcome", "Hi", ""]
    assert token.request_messages[-1] == ChatMessage(role="user", content="Hi")
    assert token.payload() == {
        "messages": [
            {"role": "assistant", "content": "Welcome"},
            {"role": "user", "content": "Hi"},
        ]
    }


def test_only_one_turn_at_a_time():
    conversation = Conversation()
    token = conversation.begin_turn("first")
    with pytest.raises(TurnInProgressError):
        conversation.begin_turn("second")

    conversation.finish_turn(token)
    assert not conversation.loading
    conversation.begin_turn("second")


def test_blank_message_is_rejected():
    with pytest.raises(ValueError):
        Conversation().begin_turn("   ")


def test_fragments_grow_trailing_assistant_message():
    conversation = Conversation()
    token = conversation.begin_turn("Hi")
    placeholder = conversation.messages[-1]

    assert conversation.apply_fragment(token, "Hel")
    assert conversation.apply_fragment(token, "lo")
    assert not conversation.apply_fragment(token, "")
    conversation.finish_turn(token)

    assert conversation.messages[-1] == ChatMessage(role="assistant", content="Hello")
    assert placeholder.content == ""
    assert conversation.history() == [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
    ]


def test_stale_fragments_are_dropped_after_reset():
    conversation = Conversation()
    token = conversation.begin_turn("Hi")
    conversation.reset()

    assert not conversation.apply_fragment(token, "late")
    assert conversation.messages == ()
    assert not conversation.loading


def test_fragments_for_finished_turn_are_dropped():
    conversation = Conversation()
    first = conversation.begin_turn("one")
    conversation.apply_fragment(first, "A")
    conversation.finish_turn(first)
    second = conversation.begin_turn("two")

    assert not conversation.apply_fragment(first, "stale")
    assert conversation.apply_fragment(second, "B")
    assert [m.content for m in conversation.messages] == ["one", "A", "two", "B"]


def test_fail_turn_replaces_empty_placeholder_with_error():
    conversation = Conversation()
    token = conversation.begin_turn("Hi")
    conversation.fail_turn(token, "Upstream error")

    assert not conversation.loading
    assert conversation.history() == [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Error: Upstream error"},
    ]


def test_fail_turn_keeps_partial_reply():
    conversation = Conversation()
    token = conversation.begin_turn("Hi")
    conversation.apply_fragment(token, "Hal")
    conversation.fail_turn(token, "connection reset")

    assert [m.content for m in conversation.messages] == ["Hi", "Hal", "Error: connection reset"]


def test_fail_turn_with_stale_token_is_ignored():
    conversation = Conversation()
    token = conversation.begin_turn("Hi")
    conversation.reset()
    conversation.fail_turn(token, "late failure")
    assert conversation.messages == ()


def test_assistant_note_waits_for_turn_to_finish():
    conversation = Conversation()
    token = conversation.begin_turn("Hi")
    with pytest.raises(TurnInProgressError):
        conversation.add_assistant_note("(Summary) ...")

    conversation.finish_turn(token)
    conversation.add_assistant_note("(Summary) ...")
    assert conversation.messages[-1].content == "(Summary) ..."


def test_messages_are_immutable():
    message = ChatMessage(role="user", content="Hi")
    with pytest.raises(pydantic.ValidationError):
        message.content = "changed"
    assert message.extend("!") == ChatMessage(role="user", content="Hi!")


def test_fragment_without_trailing_assistant_is_dropped(monkeypatch):
    conversation = Conversation()
    token = conversation.begin_turn("Hi")
    monkeypatch.setattr(conversation, "_messages", conversation.messages[:-1])

    assert not conversation.apply_fragment(token, "orphan")
    assert conversation.history() == [{"role": "user", "content": "Hi"}]
    assert conversation.loading
