"""Tests for conversation practice replies."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from speaksmart.conversation.analysis import analyze_grammar, analyze_vocabulary
from speaksmart.conversation.prompts import (
    CHAT_TEMPERATURE,
    VOICE_PROMPT_LINE,
    build_quiz_messages,
    build_system_prompt,
)
from speaksmart.conversation.service import (
    MAX_HISTORY_UTTERANCES,
    RATE_LIMITED_MESSAGE,
    TROUBLE_MESSAGE,
    ConversationService,
)
from speaksmart.errors import GenerationFailed, QuotaOrRateLimitError, UserInputError
from speaksmart.models.activity import QuizTopic
from speaksmart.models.session import ConversationMode, LearningSession, Utterance


def _chain(reply="Nice to meet you!", error=None):
    chain = MagicMock()
    chain.complete = AsyncMock(return_value=reply, side_effect=error)
    return chain


class TestPrompts:
    def test_voice_adds_line(self):
        assert VOICE_PROMPT_LINE in build_system_prompt(ConversationMode.VOICE)
        assert VOICE_PROMPT_LINE not in build_system_prompt(ConversationMode.CONVERSATION)
        assert build_system_prompt(ConversationMode.PRONUNCIATION) == build_system_prompt()

    def test_quiz_messages_include_avoid_list(self):
        messages = build_quiz_messages(QuizTopic.GRAMMAR, 5, avoid=["Old question?"])
        assert messages[0]["role"] == "system"
        assert "Generate 5 multiple-choice quiz questions for English Grammar" in messages[1]["content"]
        assert "Old question?" in messages[1]["content"]

    def test_reading_prompt_asks_for_passage(self):
        messages = build_quiz_messages(QuizTopic.READING, 5)
        assert "1 passage and 5 questions" in messages[1]["content"]


class TestAnalysis:
    def test_grammar_full_marks(self):
        assert analyze_grammar("The weather is lovely today.") == 100

    def test_grammar_minimum(self):
        assert analyze_grammar("ok") == 70

    def test_vocabulary_levels(self):
        assert analyze_vocabulary("hi hi") == "Beginner"
        assert analyze_vocabulary("I like green tea") == "Intermediate"
        assert analyze_vocabulary(
            "Yesterday my curious neighbour explained quantum physics using colourful kitchen spoons"
        ) == "Advanced"


class TestConversationService:
    async def test_reply(self):
        chain = _chain()
        reply = await ConversationService(chain).reply("Hello, I am Ana.")

        assert reply.response == "Nice to meet you!"
        assert not reply.fallback
        messages = chain.complete.call_args.args[0]
        assert messages[0]["role"] == "system"
        assert messages[-1] == {"role": "user", "content": "Hello, I am Ana."}
        assert chain.complete.call_args.kwargs["temperature"] == CHAT_TEMPERATURE

    async def test_empty_message(self):
        with pytest.raises(UserInputError):
            await ConversationService(_chain()).reply("   ")

    async def test_rate_limited_apology(self):
        service = ConversationService(_chain(error=QuotaOrRateLimitError("quota")))
        reply = await service.reply("Hello there")
        assert reply.response == RATE_LIMITED_MESSAGE
        assert reply.fallback

    async def test_failure_apology(self):
        service = ConversationService(_chain(error=GenerationFailed("down")))
        reply = await service.reply("Hello there")
        assert reply.response == TROUBLE_MESSAGE
        assert reply.grammar_score >= 70

    async def test_history_is_bounded(self):
        chain = _chain()
        history = [Utterance(role="user", text=f"m{i}") for i in range(30)]
        await ConversationService(chain).reply("latest", history=history)
        messages = chain.complete.call_args.args[0]
        assert len(messages) == 1 + MAX_HISTORY_UTTERANCES + 1
        assert messages[1]["content"] == "m10"


class TestReplyInSession:
    async def test_history_grows(self):
        session = LearningSession(session_id="s1", uid="u1")
        service = ConversationService(_chain())
        await service.reply_in_session(session, "Hello!")
        assert [u.role for u in session.utterances] == ["user", "assistant"]
        assert session.activity_log[-1].type == "chat"

    async def test_apology_not_recorded(self):
        session = LearningSession(session_id="s1", uid="u1")
        service = ConversationService(_chain(error=GenerationFailed("down")))
        await service.reply_in_session(session, "Hello!")
        assert session.utterances == []
