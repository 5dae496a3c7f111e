from enum import Enum
from typing import List, Optional
from kaspa_curator.config import settings
from kaspa_curator.models.posts import AuthorFrequency, FewShotExample, GoldExampleType, PostRecord
from kaspa_curator.services.database import Database
from kaspa_curator.services.logger import logger

PREVIOUS_RESPONSE_ID_KEY = "previousResponseId"


class ConversationMemoryMode(str, Enum):
    OFF = "off"          # every call starts fresh
    SESSION = "session"  # chain within one run only
    PERSIST = "persist"  # chain across runs through the config table

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ConversationMemoryMode":
        value = (raw or "").strip().lower()
        if value in ("persist", "on", "true", "1", "yes"):
            return cls.PERSIST
        if value in ("session", "fresh"):
            return cls.SESSION
        return cls.OFF


def to_few_shot(record: PostRecord) -> FewShotExample:
    return FewShotExample(
        text=record.text,
        response=record.judge_quote,
        correction=record.gold_example_correction if record.gold_example_type is GoldExampleType.BAD else None,
        type=record.gold_example_type,
    )


async def load_few_shot_examples(db: Database) -> List[FewShotExample]:
    """Current gold examples, newest first, as the prompt composer expects them."""
    records = await db.gold_examples()
    return [to_few_shot(r) for r in records if r.gold_example_type is not None]


async def author_frequency(db: Database, username: str) -> AuthorFrequency:
    return await db.author_frequency(username)


class CalibrationSession:
    """
    The conversation handle threaded through consecutive judge calls.
    ``advance`` is called after every call; in persist mode the new handle is
    written immediately so a crash mid-batch keeps the chain.
    """

    def __init__(self, db: Database, mode: ConversationMemoryMode, handle: Optional[str] = None):
        self.db = db
        self.mode = mode
        self.handle = handle

    @classmethod
    async def open(cls, db: Database, mode: Optional[ConversationMemoryMode] = None) -> "CalibrationSession":
        mode = mode or ConversationMemoryMode.parse(settings.CONVERSATION_MEMORY)
        handle = None
        if mode is ConversationMemoryMode.PERSIST:
            handle = await db.get_config(PREVIOUS_RESPONSE_ID_KEY)
            if handle:
                logger.info(f"Resuming calibration chain from {handle}")
        return cls(db, mode, handle)

    @property
    def previous_call_handle(self) -> Optional[str]:
        return None if self.mode is ConversationMemoryMode.OFF else self.handle

    async def advance(self, call_handle: Optional[str]) -> Optional[str]:
        if self.mode is ConversationMemoryMode.OFF or not call_handle:
            return self.handle
        self.handle = call_handle
        if self.mode is ConversationMemoryMode.PERSIST:
            await self.db.set_config(PREVIOUS_RESPONSE_ID_KEY, call_handle)
        return self.handle
