from __future__ import annotations

from app.schemas.profile import ReaderSettings, UnknownWordEntry, UserProfile
from app.services.kv_store import KeyValueStore


PROFILE_KEY = "user_profile"
SETTINGS_KEY = "reader_settings"
KNOWN_WORDS_KEY = "known_words"
UNKNOWN_WORDS_KEY = "unknown_words"
NOTEBOOK_KEY = "vocabulary_notebook"
WORD_SET_FIELDS = {"known_words", "unknown_words"}


class UserStore:
    """Profile fields and settings live in the sync scope, word sets in the local scope.

    The vocabulary notebook (unknown words with their context) is local too.
    """

    def __init__(self, sync_store: KeyValueStore, local_store: KeyValueStore) -> None:
        self.sync_store = sync_store
        self.local_store = local_store

    async def load_profile(self) -> UserProfile:
        raw = await self.sync_store.get(PROFILE_KEY, {})
        known = await self.local_store.get(KNOWN_WORDS_KEY, [])
        unknown = await self.local_store.get(UNKNOWN_WORDS_KEY, [])
        return UserProfile.model_validate({**raw, "known_words": known, "unknown_words": unknown})

    async def save_profile(self, profile: UserProfile, *, include_words: bool = True) -> None:
        await self.sync_store.set(PROFILE_KEY, profile.model_dump(mode="json", exclude=WORD_SET_FIELDS))
        if include_words:
            await self.local_store.set(KNOWN_WORDS_KEY, sorted(profile.known_words))
            await self.local_store.set(UNKNOWN_WORDS_KEY, sorted(profile.unknown_words))

    async def load_settings(self) -> ReaderSettings:
        raw = await self.sync_store.get(SETTINGS_KEY, {})
        return ReaderSettings.model_validate(raw)

    async def save_settings(self, settings: ReaderSettings) -> None:
        await self.sync_store.set(SETTINGS_KEY, settings.model_dump(mode="json"))

    async def load_notebook(self) -> list[UnknownWordEntry]:
        raw = await self.local_store.get(NOTEBOOK_KEY, [])
        return [UnknownWordEntry.model_validate(item) for item in raw]

    async def save_notebook(self, entries: list[UnknownWordEntry]) -> None:
        await self.local_store.set(NOTEBOOK_KEY, [entry.model_dump(mode="json") for entry in entries])
