import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional
from pydantic import BaseModel
from kaspa_curator.config import settings
from kaspa_curator.errors import InvalidTransitionError, MalformedResponseError, ReevaluationRejectedError
from kaspa_curator.models.posts import PostRecord, RawPost
from kaspa_curator.services.database import Database, db
from kaspa_curator.services.llm import build_oracle
from kaspa_curator.services.logger import logger
from kaspa_curator.tools.base_adapter import SourceAdapter
from kaspa_curator.tools.calibration import CalibrationSession, ConversationMemoryMode, load_few_shot_examples
from kaspa_curator.tools.evaluator import TweetJudge
from kaspa_curator.tools.kaspa_news_adapter import KaspaNewsAdapter
from kaspa_curator.tools.x_adapter import XSearchAdapter


class BatchSummary(BaseModel):
    received: int = 0
    ingested: int = 0
    already_judged: int = 0
    excluded: int = 0
    approved: int = 0
    rejected: int = 0
    quick_rejected: int = 0
    skipped_malformed: int = 0


def _dedupe(posts: List[RawPost]) -> List[RawPost]:
    seen = set()
    unique = []
    for post in posts:
        if post.id in seen:
            continue
        seen.add(post.id)
        unique.append(post)
    return unique


class Pipeline:
    def __init__(
        self,
        database: Database,
        judge: TweetJudge,
        sources: Optional[List[SourceAdapter]] = None,
        memory_mode: Optional[ConversationMemoryMode] = None,
        quick_filter_enabled: Optional[bool] = None,
        call_delay: Optional[float] = None,
        excluded_author: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.db = database
        self.judge = judge
        self.sources = sources or []
        self.memory_mode = memory_mode or ConversationMemoryMode.parse(settings.CONVERSATION_MEMORY)
        self.quick_filter_enabled = settings.QUICK_FILTER_ENABLED if quick_filter_enabled is None else quick_filter_enabled
        self.call_delay = settings.JUDGE_CALL_DELAY_SECONDS if call_delay is None else call_delay
        excluded = settings.EXCLUDED_AUTHOR if excluded_author is None else excluded_author
        self.excluded_author = (excluded or "").lower() or None
        self._sleep = sleep

    async def run_pipeline(self) -> BatchSummary:
        """Fetches from every source concurrently, then judges the merged batch."""
        if not self.sources:
            logger.warning("No sources configured! Nothing to judge.")
            return BatchSummary()

        results = await asyncio.gather(*(s.fetch_posts() for s in self.sources), return_exceptions=True)

        posts = []
        for source, res in zip(self.sources, results):
            if isinstance(res, list):
                posts.extend(res)
            else:
                logger.error(f"Adapter {source.name} failed: {res}")

        logger.info(f"Fetched {len(posts)} posts from {len(self.sources)} sources")
        return await self.run_batch(posts)

    def _is_excluded(self, post: RawPost) -> bool:
        author = post.author_username
        return bool(self.excluded_author and author and author.lower() == self.excluded_author)

    async def run_batch(self, posts: List[RawPost]) -> BatchSummary:
        summary = BatchSummary(received=len(posts))
        unique = _dedupe(posts)

        # Phase 1: record every post before any judging
        for post in unique:
            await self.db.upsert_raw(post.id, post.text, post.url, post.author_username, post.created_at)
        summary.ingested = len(unique)

        # Phase 2: pick the posts that still need a verdict
        pending = []
        for post in unique:
            if self._is_excluded(post):
                summary.excluded += 1
            elif await self.db.has_model_decision(post.id):
                summary.already_judged += 1
            else:
                pending.append(post)

        if not pending:
            logger.info(f"No new posts to judge ({summary.already_judged} already judged, {summary.excluded} excluded)")
            return summary

        examples = await load_few_shot_examples(self.db)
        session = await CalibrationSession.open(self.db, self.memory_mode)
        logger.info(f"Judging {len(pending)} posts with {len(examples)} gold examples (memory: {session.mode.value})")

        # Phase 3: strictly sequential, the calibration chain needs a total order
        for i, post in enumerate(pending):
            if i and self.call_delay > 0:
                await self._sleep(self.call_delay)

            if self.quick_filter_enabled:
                try:
                    screen = await self.judge.quick_filter(post.text)
                except MalformedResponseError as e:
                    summary.skipped_malformed += 1
                    logger.warning(f"Skipping {post.id}, quick filter reply malformed: {e}")
                    continue
                if not screen.approved:
                    await self.db.upsert_decision(
                        post.id, post.text, post.url, f"Rejected: {screen.rejection_reason}",
                        False, 0, post.author_username,
                    )
                    summary.quick_rejected += 1
                    logger.debug(f"Quick-rejected {post.id}: {screen.rejection_reason}")
                    continue

            try:
                decision = await self.judge.evaluate(post.text, examples, session.previous_call_handle)
            except MalformedResponseError as e:
                await session.advance(e.call_handle)
                summary.skipped_malformed += 1
                logger.warning(f"Skipping {post.id}: {e}")
                continue

            await session.advance(decision.call_handle)
            await self.db.upsert_decision(
                post.id, post.text, post.url, decision.quote,
                decision.approved, decision.score, post.author_username,
            )
            if decision.approved:
                summary.approved += 1
                logger.info(f"Approved {post.id} (percentile {decision.score})")
            else:
                summary.rejected += 1
                logger.info(f"Rejected {post.id}")

        logger.info(
            f"Batch complete: {summary.approved} approved, {summary.rejected} rejected, "
            f"{summary.skipped_malformed} skipped (malformed)"
        )
        return summary

    async def reevaluate_post(self, post_id: str) -> Optional[PostRecord]:
        """
        Runs the judge again on a stored post. Only unjudged and approved posts
        may be re-evaluated; an approved post that comes back rejected raises
        ReevaluationRejectedError and keeps its stored verdict.
        Returns None when the post does not exist.
        """
        record = await self.db.get_post(post_id)
        if record is None:
            return None
        if record.model_approved is False:
            raise InvalidTransitionError(f"Post {post_id} was rejected by the model and cannot be re-evaluated")

        examples = await load_few_shot_examples(self.db)
        session = await CalibrationSession.open(self.db, self.memory_mode)
        try:
            decision = await self.judge.evaluate(record.text, examples, session.previous_call_handle)
        except MalformedResponseError as e:
            await session.advance(e.call_handle)
            raise
        await session.advance(decision.call_handle)

        if record.model_approved and not decision.approved:
            raise ReevaluationRejectedError(post_id, decision.quote)

        await self.db.upsert_decision(
            record.id, record.text, record.url, decision.quote,
            decision.approved, decision.score, record.author_username,
        )
        logger.info(f"Re-evaluated {post_id}: approved={decision.approved} score={decision.score}")
        return await self.db.get_post(post_id)


def build_sources(names: Optional[List[str]] = None) -> List[SourceAdapter]:
    registry: Dict[str, Callable[[], SourceAdapter]] = {
        KaspaNewsAdapter.name: KaspaNewsAdapter,
        XSearchAdapter.name: XSearchAdapter,
    }
    sources = []
    for name in names if names is not None else settings.SOURCES:
        if name not in registry:
            raise ValueError(f"Unknown source: {name}")
        sources.append(registry[name]())
    return sources


def build_pipeline(database: Optional[Database] = None) -> Pipeline:
    """Wires a pipeline from settings: oracle, judge and configured sources."""
    judge = TweetJudge(
        build_oracle(),
        reasoning_effort=settings.JUDGE_REASONING_EFFORT,
        quick_filter_effort=settings.QUICK_FILTER_REASONING_EFFORT,
    )
    return Pipeline(database or db, judge, build_sources())
