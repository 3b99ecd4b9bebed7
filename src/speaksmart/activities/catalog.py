"""The fixed daily activity catalog."""

from speaksmart.models.activity import ActivityDefinition, ActivityKind, QuizTopic

DAILY_ACTIVITIES: list[ActivityDefinition] = [
    ActivityDefinition(
        id="daily-1",
        title="Grammar Quiz",
        description="Test your knowledge of English grammar rules",
        kind=ActivityKind.QUIZ,
        topic=QuizTopic.GRAMMAR,
        duration_minutes=10,
        points=100,
    ),
    ActivityDefinition(
        id="daily-2",
        title="Vocabulary Challenge",
        description="Learn 10 new words and their usage",
        kind=ActivityKind.QUIZ,
        topic=QuizTopic.VOCABULARY,
        duration_minutes=15,
        points=100,
    ),
    ActivityDefinition(
        id="daily-3",
        title="Reading Comprehension",
        description="Understand short passages and answer questions",
        kind=ActivityKind.QUIZ,
        topic=QuizTopic.READING,
        duration_minutes=12,
        points=120,
    ),
    ActivityDefinition(
        id="daily-4",
        title="Idioms & Phrases",
        description="Learn common English idioms and their meanings",
        kind=ActivityKind.QUIZ,
        topic=QuizTopic.IDIOMS,
        duration_minutes=12,
        points=120,
    ),
    ActivityDefinition(
        id="daily-5",
        title="Speaking Practice",
        description="Practice pronunciation with AI feedback",
        kind=ActivityKind.SPEAKING,
        topic=QuizTopic.SPEAKING,
        duration_minutes=20,
        points=150,
        required_minutes=20,
    ),
    ActivityDefinition(
        id="daily-6",
        title="Conversation Challenge",
        description="Complete a full conversation scenario",
        kind=ActivityKind.CONVERSATION,
        topic=QuizTopic.CONVERSATION,
        duration_minutes=25,
        points=200,
        required_minutes=20,
        scenario="At a Restaurant",
        prompts=[
            "Greet the waiter",
            "Order your food",
            "Ask about the menu",
            "Request the bill",
        ],
    ),
]

_BY_ID = {activity.id: activity for activity in DAILY_ACTIVITIES}

_ACHIEVEMENT_TITLES = {
    "daily-1": "Grammar Mastery",
    "daily-2": "Vocabulary Pro",
    "daily-3": "Reading Champ",
    "daily-4": "Idioms & Phrases Star",
}

# Checked in order against descriptive activity ids.
_TOPIC_KEYWORDS: list[tuple[tuple[str, ...], QuizTopic]] = [
    (("grammar",), QuizTopic.GRAMMAR),
    (("vocab",), QuizTopic.VOCABULARY),
    (("read",), QuizTopic.READING),
    (("idiom", "phrase"), QuizTopic.IDIOMS),
    (("speaking",), QuizTopic.SPEAKING),
    (("conversation",), QuizTopic.CONVERSATION),
]


def get_activity(activity_id: str) -> ActivityDefinition | None:
    return _BY_ID.get(activity_id)


def resolve_topic(activity_id: str) -> QuizTopic:
    """Map an activity id to its question topic.

    Catalog ids map directly; other ids are matched by keyword, falling back
    to general English.
    """
    activity = _BY_ID.get(activity_id)
    if activity is not None:
        return activity.topic
    lowered = activity_id.lower()
    for keywords, topic in _TOPIC_KEYWORDS:
        if any(k in lowered for k in keywords):
            return topic
    return QuizTopic.GENERAL


def achievement_title(activity_id: str) -> str:
    title = _ACHIEVEMENT_TITLES.get(activity_id)
    if title:
        return title
    return f"{resolve_topic(activity_id).label} Completed"
