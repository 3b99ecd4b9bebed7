"""Quiz question generation with a deterministic local fallback."""

import json
import random
import re

import structlog
from pydantic import ValidationError

from speaksmart.conversation.chain import ProviderChain
from speaksmart.conversation.prompts import QUIZ_TEMPERATURE, build_quiz_messages
from speaksmart.errors import GenerationFailed, GenerationFormatError, QuotaOrRateLimitError
from speaksmart.models.activity import Question, QuizTopic

logger = structlog.get_logger()

_CODE_FENCE = re.compile(r"```[a-zA-Z]*\n([\s\S]*?)```")
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


def parse_questions(text: str) -> list[Question]:
    """Extract a JSON array of questions from model output.

    The array may be wrapped in prose or a markdown code fence.

    Raises:
        GenerationFormatError: No array found, or an item is not a valid question.
    """
    fence = _CODE_FENCE.search(text)
    if fence:
        text = fence.group(1)
    match = _JSON_ARRAY.search(text)
    if not match:
        raise GenerationFormatError("Invalid response format")
    try:
        items = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise GenerationFormatError(f"Invalid JSON: {e}") from e
    if not isinstance(items, list) or not items:
        raise GenerationFormatError("Expected a non-empty JSON array")
    try:
        questions = [Question.model_validate(item) for item in items]
    except ValidationError as e:
        raise GenerationFormatError(f"Invalid question: {e}") from e
    for q in questions:
        if not 0 <= q.correct_index < len(q.options):
            raise GenerationFormatError(f"correctIndex out of range: {q.question!r}")
    return questions


# -- local generators --------------------------------------------------------

_TEMPLATES = [
    ("Grammar: She ___ to the office (#{i}).",
     ["go", "goes", "going", "gone"], 1, "Third person singular uses goes."),
    ('Vocabulary: Synonym of "happy" (#{i})?',
     ["sad", "angry", "joyful", "tired"], 2, "Joyful is a synonym."),
    ("Article: I saw ___ elephant (#{i}).",
     ["a", "an", "the", "no article"], 1, "Use an before vowel sound."),
    ("Preposition: He is good ___ math (#{i}).",
     ["at", "in", "on", "for"], 0, "We say good at."),
    ("Tense: They ___ dinner when I called (#{i}).",
     ["have", "had", "were having", "are having"], 2, "Past continuous."),
    ("Collocation: I need to ___ my homework (#{i}).",
     ["make", "do", "did", "done"], 1, "Do homework."),
]

READING_PASSAGES = [
    "Passage A: Emma moved to a small coastal town where mornings began with the scent of "
    "salt and fresh bread. She worked at a library that overlooked the harbor, recommending "
    "stories to sailors and tourists. Over time, Emma learned the names of gulls by their "
    "calls and the rhythm of the tides by the shadows on the pier. Though she missed the "
    "city's noise, the town's quiet routine became her comfort, especially the afternoons "
    "when sunlight pooled like warm honey across the reading tables.",
    "Passage B: In a crowded market, Arun sold hand-carved wooden clocks, each designed with "
    "a hidden twist: a star that rotated at midnight, a sparrow that chirped on the hour, a "
    "moon that glowed softly. Customers would linger, entranced by the steady tick and the "
    "scent of cedar. He believed time should feel crafted, not consumed. When a traveler "
    'asked why the smallest clock cost the most, Arun smiled and said, "Because it reminds '
    'you to slow down."',
    "Passage C: The old bridge had outlived three floods and a dozen winters. Children biked "
    "across it in summers, counting boards by the thrum under their tires. Some said the "
    "bridge creaked with stories: letters slipped between planks, lanterns swinging on "
    "foggy nights, promises made and kept. When the town proposed a steel replacement, the "
    "council room filled with voices, not angry but pleading, as if losing the bridge meant "
    "losing the way the town remembered itself.",
]

_READING_TEMPLATES = [
    ("What is the main idea of this passage? (#{i})",
     ["Daily routine", "Central theme", "Historical event", "Scientific discovery"], 1,
     "Identifies the central theme."),
    ("Which detail is explicitly mentioned? (#{i})",
     ["A festival", "A specific smell", "A broken clock", "A storm"], 1,
     "Direct detail from the passage."),
    ("What can be inferred from the passage? (#{i})",
     ["The narrator dislikes the town", "The setting is coastal", "Time moves faster here",
      "The bridge is new"], 1,
     "Inference consistent with context."),
    ("What does the phrase imply in context? (#{i})",
     ["Literal description", "Metaphor or mood", "Mathematical term", "Random aside"], 1,
     "Vocabulary-in-context."),
    ("What is the tone of the passage? (#{i})",
     ["Ironic", "Technical", "Reflective", "Hostile"], 2,
     "Overall tone is reflective."),
]


def local_template_questions(
    topic: QuizTopic,
    count: int,
    avoid: list[str] | None = None,
    rng: random.Random | None = None,
) -> list[Question]:
    """Shuffled questions from a fixed template pool, skipping ``avoid``."""
    rng = rng or random.Random()
    avoid_set = set(avoid or [])
    pool = []
    for i in range(1, count * 3 + 1):
        text, options, correct, explanation = _TEMPLATES[i % len(_TEMPLATES)]
        question = f"[{topic.label}] {text.format(i=i)}"
        if question in avoid_set:
            continue
        pool.append(Question(
            question=question,
            options=list(options),
            correct_index=correct,
            explanation=explanation,
        ))
    rng.shuffle(pool)
    return pool[:count]


def local_reading_questions(count: int, avoid: list[str] | None = None) -> list[Question]:
    """Five questions per built-in passage, starting with a passage not yet used."""
    avoid_set = set(avoid or [])
    items: list[Question] = []
    index = 1
    for passage in READING_PASSAGES:
        for text, options, correct, explanation in _READING_TEMPLATES:
            question = text.format(i=index)
            if question in avoid_set:
                question += " (alt)"
            items.append(Question(
                question=question,
                options=list(options),
                correct_index=correct,
                explanation=explanation,
                passage=passage,
            ))
            index += 1
    fresh = [q for q in items if not q.question.endswith(" (alt)")]
    rest = [q for q in items if q.question.endswith(" (alt)")]
    return (fresh + rest)[:count]


def local_questions(
    topic: QuizTopic, count: int, avoid: list[str] | None = None, rng: random.Random | None = None
) -> list[Question]:
    if topic == QuizTopic.READING:
        return local_reading_questions(count, avoid)
    return local_template_questions(topic, count, avoid, rng)


class QuestionGenerator:
    """Generates question sets through the provider chain.

    Any provider failure or unparseable output falls back to the local
    generators, so generation never fails.

    Args:
        chain: Ordered chat providers. ``None`` always uses local questions.
        count: Questions per set.
        rng: Random source for the local generator.
    """

    def __init__(
        self,
        chain: ProviderChain | None = None,
        count: int = 5,
        rng: random.Random | None = None,
    ):
        self.chain = chain
        self.count = count
        self.rng = rng or random.Random()

    async def generate(self, topic: QuizTopic, avoid: list[str] | None = None) -> list[Question]:
        avoid = avoid or []
        questions: list[Question] = []
        if self.chain is not None:
            try:
                text = await self.chain.complete(
                    build_quiz_messages(topic, self.count, avoid), temperature=QUIZ_TEMPERATURE
                )
                avoid_set = set(avoid)
                questions = [q for q in parse_questions(text) if q.question not in avoid_set]
            except (GenerationFailed, QuotaOrRateLimitError) as e:
                logger.warning("question_generation_failed", topic=topic, error=str(e))

        if not questions:
            logger.info("using_local_questions", topic=topic, count=self.count)
            questions = local_questions(topic, self.count, avoid, self.rng)

        questions = questions[: self.count]
        for index, question in enumerate(questions, start=1):
            question.id = index
        return questions
