"""User profile persistence on top of the document store."""

import structlog

from speaksmart.models.user_profile import DEFAULT_DISPLAY_NAME, DEFAULT_LEVEL, UserProfile
from speaksmart.storage.document_store import SERVER_TIMESTAMP, DocumentStore
from speaksmart.storage.paths import USERS, user_path

logger = structlog.get_logger()


async def load_profile(store: DocumentStore, uid: str) -> UserProfile | None:
    snap = await store.get(user_path(uid))
    if not snap.exists:
        return None
    data = snap.to_dict()
    data.setdefault("uid", uid)
    return UserProfile.model_validate(data)


async def ensure_profile(
    store: DocumentStore,
    uid: str,
    email: str | None,
    display_name: str | None = None,
    photo_url: str | None = None,
) -> UserProfile:
    """Return the stored profile, creating it with defaults on first sign-in."""
    existing = await load_profile(store, uid)
    if existing is not None:
        return existing

    await store.set(user_path(uid), {
        "uid": uid,
        "displayName": display_name or DEFAULT_DISPLAY_NAME,
        "email": email,
        "photoURL": photo_url,
        "createdAt": SERVER_TIMESTAMP,
        "level": DEFAULT_LEVEL,
        "streak": 0,
        "totalLessons": 0,
        "hoursLearned": 0,
    })
    logger.info("profile_created", uid=uid)
    return await load_profile(store, uid)


async def list_profiles(store: DocumentStore) -> list[UserProfile]:
    profiles = []
    for snap in await store.list_collection(USERS):
        data = snap.to_dict()
        data.setdefault("uid", snap.id)
        profiles.append(UserProfile.model_validate(data))
    return profiles


async def find_profile_by_email(store: DocumentStore, email: str) -> UserProfile | None:
    matches = await store.query(USERS, {"email": email})
    if not matches:
        return None
    data = matches[0].to_dict()
    data.setdefault("uid", matches[0].id)
    return UserProfile.model_validate(data)
