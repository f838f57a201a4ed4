import random

import pytest

from streamwithai.core.history import ConversationHistory


def test_length_is_bounded_and_oldest_evicted_first() -> None:
    history = ConversationHistory(max_length=5)
    rng = random.Random(42)
    appended: list[str] = []
    for index in range(200):
        sender = rng.choice(["user", "ai"])
        text = f"message {index}"
        history.append(sender, text)
        appended.append(text)
        assert len(history) <= 5
        assert [entry.text for entry in history] == appended[-5:]


def test_blank_messages_are_ignored_and_text_trimmed() -> None:
    history = ConversationHistory()
    assert history.append("user", "   ") is None
    assert history.append("user", None) is None
    entry = history.append("user", "  salut  ")
    assert entry is not None and entry.text == "salut"
    assert len(history) == 1


def test_to_model_format_maps_roles_in_order() -> None:
    history = ConversationHistory()
    history.append("user", "hi")
    history.append("ai", "hello")
    assert history.to_model_format() == [
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]


def test_unknown_sender_is_rejected() -> None:
    history = ConversationHistory()
    with pytest.raises(ValueError):
        history.append("system", "nope")  # type: ignore[arg-type]


def test_resize_keeps_most_recent_entries() -> None:
    history = ConversationHistory(max_length=10)
    for index in range(6):
        history.append("user", str(index))
    history.resize(3)
    assert [entry.text for entry in history] == ["3", "4", "5"]
    assert history.max_length == 3
    with pytest.raises(ValueError):
        history.resize(0)


def test_stats_export_and_clear() -> None:
    history = ConversationHistory()
    history.append("user", "abcd")
    history.append("ai", "ab")

    stats = history.stats()
    assert stats["total_messages"] == 2
    assert stats["user_messages"] == 1
    assert stats["ai_messages"] == 1
    assert stats["average_length"] == 3.0

    exported = history.export()
    assert exported["total_messages"] == 2
    assert exported["messages"][0]["sender"] == "user"
    assert "T" in exported["messages"][0]["date"]

    history.clear()
    assert len(history) == 0
    assert history.stats()["oldest"] is None
