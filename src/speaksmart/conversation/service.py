"""Conversation practice: AI replies with a running history."""

import structlog
from pydantic import BaseModel

from speaksmart.conversation.analysis import analyze_grammar, analyze_vocabulary
from speaksmart.conversation.chain import ProviderChain
from speaksmart.conversation.prompts import CHAT_TEMPERATURE, build_system_prompt
from speaksmart.errors import GenerationFailed, QuotaOrRateLimitError, UserInputError
from speaksmart.models.session import ConversationMode, LearningSession, Utterance

logger = structlog.get_logger()

RATE_LIMITED_MESSAGE = (
    "The AI is rate-limited right now. Please try again in a minute or check API billing."
)
TROUBLE_MESSAGE = "I'm having trouble connecting right now. Please try again!"

MAX_HISTORY_UTTERANCES = 20


class ChatReply(BaseModel):
    response: str
    grammar_score: int
    vocabulary_level: str
    fallback: bool = False


class ConversationService:
    """Produces tutor replies. Provider failures become a fixed apology."""

    def __init__(self, chain: ProviderChain):
        self.chain = chain

    def _messages(
        self, text: str, mode: ConversationMode, history: list[Utterance]
    ) -> list[dict[str, str]]:
        messages = [{"role": "system", "content": build_system_prompt(mode)}]
        for utterance in history[-MAX_HISTORY_UTTERANCES:]:
            role = "assistant" if utterance.role == "assistant" else "user"
            messages.append({"role": role, "content": utterance.text})
        messages.append({"role": "user", "content": text})
        return messages

    async def reply(
        self,
        text: str,
        mode: ConversationMode = ConversationMode.CONVERSATION,
        history: list[Utterance] | None = None,
    ) -> ChatReply:
        text = text.strip()
        if not text:
            raise UserInputError("Message cannot be empty")

        grammar = analyze_grammar(text)
        vocabulary = analyze_vocabulary(text)
        try:
            response = await self.chain.complete(
                self._messages(text, mode, history or []), temperature=CHAT_TEMPERATURE
            )
        except QuotaOrRateLimitError:
            logger.warning("chat_rate_limited", mode=mode)
            return ChatReply(
                response=RATE_LIMITED_MESSAGE,
                grammar_score=grammar,
                vocabulary_level=vocabulary,
                fallback=True,
            )
        except GenerationFailed as e:
            logger.error("chat_failed", mode=mode, error=str(e))
            return ChatReply(
                response=TROUBLE_MESSAGE,
                grammar_score=grammar,
                vocabulary_level=vocabulary,
                fallback=True,
            )
        return ChatReply(response=response, grammar_score=grammar, vocabulary_level=vocabulary)

    async def reply_in_session(
        self,
        session: LearningSession,
        text: str,
        mode: ConversationMode = ConversationMode.CONVERSATION,
    ) -> ChatReply:
        """Reply using and extending the session's history.

        Apologies are not added to the history.
        """
        reply = await self.reply(text, mode=mode, history=session.utterances)
        if not reply.fallback:
            session.add_utterance("user", text.strip())
            session.add_utterance("assistant", reply.response)
        session.log_activity("chat", mode=str(mode), fallback=reply.fallback)
        return reply
