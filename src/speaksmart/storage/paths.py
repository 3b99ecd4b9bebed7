"""Document paths used by the application."""

USERS = "users"
DAILY_ACTIVITIES = "dailyActivities"
LESSONS = "lessons"
PASSWORD_RESET_REQUESTS = "passwordResetRequests"


def user_path(uid: str) -> str:
    return f"{USERS}/{uid}"


def daily_activities_collection(uid: str) -> str:
    return f"{USERS}/{uid}/{DAILY_ACTIVITIES}"


def daily_activity_id(date_key: str, activity_id: str) -> str:
    return f"{date_key}_{activity_id}"


def daily_activity_path(uid: str, date_key: str, activity_id: str) -> str:
    return f"{daily_activities_collection(uid)}/{daily_activity_id(date_key, activity_id)}"


def date_key_of(record_id: str) -> str:
    """Date part of a ``{dateKey}_{activityId}`` record id."""
    return record_id.split("_", 1)[0]


def activity_id_of(record_id: str) -> str:
    parts = record_id.split("_", 1)
    return parts[1] if len(parts) > 1 else ""


def lesson_path(uid: str, lesson_id: str) -> str:
    return f"{USERS}/{uid}/{LESSONS}/{lesson_id}"


def reset_request_path(request_id: str) -> str:
    return f"{PASSWORD_RESET_REQUESTS}/{request_id}"
