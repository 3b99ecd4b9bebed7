"""Prompt templates for conversation practice and quiz generation."""

import json

from speaksmart.models.activity import QuizTopic
from speaksmart.models.session import ConversationMode

TUTOR_PROMPT_LINES = [
    "You are an expert English tutor and friendly AI conversation partner.",
    "Goals: hold natural conversation, correct grammar subtly, encourage.",
    "Style: concise, human-like, supportive; avoid long paragraphs; ask short follow-ups.",
]

VOICE_PROMPT_LINE = "Optimize for being read aloud: short sentences, clear phrasing."

CHAT_TEMPERATURE = 0.7
QUIZ_TEMPERATURE = 0.8


def build_system_prompt(mode: ConversationMode = ConversationMode.CONVERSATION) -> str:
    lines = list(TUTOR_PROMPT_LINES)
    if mode == ConversationMode.VOICE:
        lines.append(VOICE_PROMPT_LINE)
    return " ".join(lines)


_QUESTION_SHAPE = """\
[
  {
    "question": "Question text here",
    "options": ["Option A", "Option B", "Option C", "Option D"],
    "correctIndex": 0,
    "explanation": "Brief explanation of the correct answer"
  }
]"""

_READING_SHAPE = """\
[
  {
    "passage": "Full passage text here...",
    "question": "Question about the passage",
    "options": ["Option A", "Option B", "Option C", "Option D"],
    "correctIndex": 0,
    "explanation": "Brief explanation"
  }
]"""

# (system prompt, focus line) per topic
_QUIZ_TOPICS: dict[QuizTopic, tuple[str, str]] = {
    QuizTopic.GRAMMAR: (
        "You are an expert English grammar teacher. Generate clear, educational quiz questions.",
        "Topics to cover: tenses, subject-verb agreement, articles, prepositions, conditionals.\n"
        "Make questions practical and relevant to everyday English usage.",
    ),
    QuizTopic.VOCABULARY: (
        "You are an expert English vocabulary teacher. Generate clear, educational quiz questions.",
        "Focus on: word meanings, synonyms, antonyms, word usage in context.\n"
        "Use intermediate to advanced vocabulary words.",
    ),
    QuizTopic.IDIOMS: (
        "You are an expert English idioms and phrases teacher. "
        "Generate clear, practical quiz questions.",
        "Focus on: common idioms, phrasal verbs, expressions, their meanings and usage.\n"
        "Use commonly used idioms and phrases that are practical for learners.",
    ),
}

_READING_SYSTEM = (
    "You are an expert English reading comprehension teacher. "
    "Generate engaging passages and thoughtful questions."
)
_GENERAL_SYSTEM = "You are an expert English teacher. Generate clear, educational quiz questions."


def _avoid_line(avoid: list[str]) -> str:
    if not avoid:
        return ""
    return f"\nDo not repeat or closely paraphrase these questions: {json.dumps(avoid)}."


def build_quiz_messages(
    topic: QuizTopic, count: int, avoid: list[str] | None = None
) -> list[dict[str, str]]:
    """Chat messages asking for ``count`` questions as a JSON array."""
    avoid = avoid or []
    if topic == QuizTopic.READING:
        system = _READING_SYSTEM
        prompt = (
            f"Generate a reading comprehension exercise with 1 passage and {count} questions.\n"
            "Create an interesting passage (150-200 words) on a general topic "
            "(science, history, culture, technology, etc.).\n"
            f"Then create {count} multiple-choice questions based on the passage.\n\n"
            f"Return ONLY a valid JSON array with this exact structure:\n{_READING_SHAPE}\n\n"
            f"All {count} questions should have the SAME passage text.\n"
            "Make questions test comprehension, inference, and vocabulary from the passage."
        )
    else:
        system, focus = _QUIZ_TOPICS.get(topic, (_GENERAL_SYSTEM, ""))
        prompt = (
            f"Generate {count} multiple-choice quiz questions for {topic.label}.\n"
            f"{focus}\n\n"
            f"Return ONLY a valid JSON array with this exact structure:\n{_QUESTION_SHAPE}"
        )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": prompt + _avoid_line(avoid)},
    ]
