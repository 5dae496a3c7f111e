import aiosqlite
from kaspa_curator.config import settings
from kaspa_curator.services.logger import logger
from kaspa_curator.services.migrations import apply_migrations
from kaspa_curator.errors import InvalidInputError
from kaspa_curator.models.posts import (
    AuthorFrequency,
    DecisionFilter,
    GoldExampleType,
    HumanDecision,
    PostFilters,
    PostPage,
    PostQuery,
    PostRecord,
    SortField,
    SortOrder,
    frequency_state_for,
)
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Tuple

POST_COLUMNS = (
    "id, text, quote, url, author_username, approved, score, human_decision, "
    "gold_example_type, gold_example_correction, created_at, updated_at"
)

SORT_COLUMNS = {
    SortField.ACTIVITY: "COALESCE(updated_at, created_at)",
    SortField.SCORE: "score",
    SortField.CREATED_AT: "created_at",
    SortField.UPDATED_AT: "updated_at",
}

# A post counts towards author frequency when a human approved it, or the
# model approved it and no human has weighed in.
APPROVED_SQL = "(human_decision = 'APPROVED' OR (human_decision IS NULL AND approved = 1))"


def format_ts(value: datetime) -> str:
    """Timestamps are stored as naive UTC text so they compare lexically."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(sep=" ", timespec="microseconds")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def build_where(filters: PostFilters) -> Tuple[str, list]:
    clauses = []
    params = []

    if filters.model_approved is DecisionFilter.UNSET:
        clauses.append("approved IS NULL")
    elif filters.model_approved is not None:
        clauses.append("approved = ?")
        params.append(1 if filters.model_approved is DecisionFilter.APPROVED else 0)

    if filters.human_decision is DecisionFilter.UNSET:
        clauses.append("human_decision IS NULL")
    elif filters.human_decision is not None:
        clauses.append("human_decision = ?")
        params.append(filters.human_decision.value)

    if filters.has_model_decision is not None:
        clauses.append("approved IS NOT NULL" if filters.has_model_decision else "approved IS NULL")

    if filters.gold_example_type is not None:
        clauses.append("gold_example_type = ?")
        params.append(filters.gold_example_type.value)

    if filters.has_gold_example is not None:
        clauses.append("gold_example_type IS NOT NULL" if filters.has_gold_example else "gold_example_type IS NULL")

    return (f"WHERE {' AND '.join(clauses)}" if clauses else ""), params


def build_order(query: PostQuery) -> str:
    direction = "ASC" if query.order is SortOrder.ASC else "DESC"
    column = SORT_COLUMNS[query.sort]
    if query.sort is SortField.UPDATED_AT:
        # Never-updated rows go last in either direction
        return f"ORDER BY updated_at IS NULL, {column} {direction}, id {direction}"
    return f"ORDER BY {column} {direction}, id {direction}"


class Database:
    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else settings.db_path

    async def init(self):
        settings.ensure_dirs()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self.get_connection() as conn:
            await conn.execute("PRAGMA journal_mode = WAL")
            result = await apply_migrations(conn)
        logger.info(
            f"Database initialized at {self.db_path} "
            f"({result.applied_count} migrations applied, {result.total} known)"
        )

    def get_connection(self):
        return aiosqlite.connect(self.db_path)

    async def _fetch_posts(self, sql: str, params=()) -> List[PostRecord]:
        async with self.get_connection() as conn:
            conn.row_factory = aiosqlite.Row
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [PostRecord.from_row(row) for row in rows]

    async def _write(self, sql: str, params=()) -> int:
        async with self.get_connection() as conn:
            cursor = await conn.execute(sql, params)
            await conn.commit()
            return cursor.rowcount

    # -- ingestion and judging -------------------------------------------

    async def upsert_raw(
        self,
        id: str,
        text: str,
        url: str,
        author_username: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ):
        """Records ingestion metadata. Judgment, human and gold fields are never touched."""
        now = format_ts(utcnow())
        await self._write(
            """
            INSERT INTO posts (id, text, quote, url, author_username, created_at)
            VALUES (?, ?, '', ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                text = CASE WHEN posts.approved IS NULL THEN excluded.text ELSE posts.text END,
                url = excluded.url,
                author_username = COALESCE(excluded.author_username, posts.author_username),
                updated_at = CASE
                    WHEN (posts.approved IS NULL AND posts.text IS NOT excluded.text)
                      OR posts.url IS NOT excluded.url
                      OR (excluded.author_username IS NOT NULL
                          AND posts.author_username IS NOT excluded.author_username)
                    THEN ? ELSE posts.updated_at END
            """,
            (id, text, url, author_username, format_ts(created_at) if created_at else now, now),
        )

    async def upsert_decision(
        self,
        id: str,
        text: str,
        url: str,
        judge_quote: str,
        approved: bool,
        score: int,
        author_username: Optional[str] = None,
    ):
        """Writes the full judged state. Human and gold fields survive re-judging."""
        if not approved:
            score = 0
        elif not 0 <= score <= 100:
            raise InvalidInputError(f"Score must be 0-100, got {score}")

        now = format_ts(utcnow())
        await self._write(
            """
            INSERT INTO posts (id, text, quote, url, approved, score, author_username, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                text = excluded.text,
                quote = excluded.quote,
                url = excluded.url,
                approved = excluded.approved,
                score = excluded.score,
                author_username = COALESCE(excluded.author_username, posts.author_username),
                updated_at = excluded.updated_at
            """,
            (id, text, judge_quote, url, 1 if approved else 0, score, author_username, now, now),
        )

    # -- lookups -----------------------------------------------------------

    async def get_post(self, id: str) -> Optional[PostRecord]:
        rows = await self._fetch_posts(f"SELECT {POST_COLUMNS} FROM posts WHERE id = ?", (id,))
        return rows[0] if rows else None

    async def exists(self, id: str) -> bool:
        async with self.get_connection() as conn:
            cursor = await conn.execute("SELECT 1 FROM posts WHERE id = ?", (id,))
            return await cursor.fetchone() is not None

    async def has_model_decision(self, id: str) -> bool:
        async with self.get_connection() as conn:
            cursor = await conn.execute(
                "SELECT 1 FROM posts WHERE id = ? AND approved IS NOT NULL", (id,)
            )
            return await cursor.fetchone() is not None

    async def list_posts(
        self,
        filters: Optional[PostFilters] = None,
        query: Optional[PostQuery] = None,
    ) -> PostPage:
        filters = filters or PostFilters()
        query = query or PostQuery()
        where, params = build_where(filters)

        async with self.get_connection() as conn:
            cursor = await conn.execute(f"SELECT COUNT(*) FROM posts {where}", params)
            total = (await cursor.fetchone())[0]

        offset = (query.page - 1) * query.page_size
        records = await self._fetch_posts(
            f"SELECT {POST_COLUMNS} FROM posts {where} {build_order(query)} LIMIT ? OFFSET ?",
            [*params, query.page_size, offset],
        )
        return PostPage(records=records, total=total, page=query.page, page_size=query.page_size)

    # -- human review --------------------------------------------------------

    async def set_human_decision(self, id: str, decision: Optional[HumanDecision]) -> bool:
        changed = await self._write(
            "UPDATE posts SET human_decision = ?, updated_at = ? WHERE id = ?",
            (decision.value if decision else None, format_ts(utcnow()), id),
        )
        return changed > 0

    async def set_gold_example(
        self,
        id: str,
        gold_type: Optional[GoldExampleType],
        correction: Optional[str],
    ) -> bool:
        # Only BAD examples keep a correction
        if gold_type is not GoldExampleType.BAD:
            correction = None
        changed = await self._write(
            """
            UPDATE posts
            SET gold_example_type = ?, gold_example_correction = ?, updated_at = ?
            WHERE id = ?
            """,
            (gold_type.value if gold_type else None, correction, format_ts(utcnow()), id),
        )
        return changed > 0

    async def gold_examples(self, gold_type: Optional[GoldExampleType] = None) -> List[PostRecord]:
        """Gold examples, most recently updated first."""
        if gold_type is None:
            return await self._fetch_posts(
                f"""
                SELECT {POST_COLUMNS} FROM posts
                WHERE gold_example_type IS NOT NULL
                ORDER BY COALESCE(updated_at, created_at) DESC, id DESC
                """
            )
        return await self._fetch_posts(
            f"""
            SELECT {POST_COLUMNS} FROM posts
            WHERE gold_example_type = ?
            ORDER BY COALESCE(updated_at, created_at) DESC, id DESC
            """,
            (gold_type.value,),
        )

    async def author_frequency(self, username: str, now: Optional[datetime] = None) -> AuthorFrequency:
        now = now or utcnow()
        async with self.get_connection() as conn:
            cursor = await conn.execute(
                f"""
                SELECT
                    COALESCE(SUM(CASE WHEN created_at >= ? THEN 1 ELSE 0 END), 0),
                    COUNT(*)
                FROM posts
                WHERE author_username = ? COLLATE NOCASE
                  AND created_at >= ? AND created_at <= ?
                  AND {APPROVED_SQL}
                """,
                (
                    format_ts(now - timedelta(days=7)),
                    username,
                    format_ts(now - timedelta(days=30)),
                    format_ts(now),
                ),
            )
            last_7, last_30 = await cursor.fetchone()

        return AuthorFrequency(
            username=username,
            posts_last_7_days=last_7,
            posts_last_30_days=last_30,
            frequency_state=frequency_state_for(last_7, last_30),
        )

    # -- author backfill -------------------------------------------------------

    async def posts_missing_author(self, human_approved_only: bool = True) -> List[PostRecord]:
        where = "(author_username IS NULL OR author_username = '')"
        if human_approved_only:
            where += " AND human_decision = 'APPROVED'"
        return await self._fetch_posts(
            f"SELECT {POST_COLUMNS} FROM posts WHERE {where} ORDER BY created_at DESC"
        )

    async def set_author_username(self, id: str, username: str) -> bool:
        changed = await self._write(
            "UPDATE posts SET author_username = ?, updated_at = ? WHERE id = ?",
            (username, format_ts(utcnow()), id),
        )
        return changed > 0

    # -- config side table -------------------------------------------------------

    async def get_config(self, key: str, default: Optional[str] = None) -> Optional[str]:
        async with self.get_connection() as conn:
            cursor = await conn.execute("SELECT value FROM config WHERE key = ?", (key,))
            row = await cursor.fetchone()
            return row[0] if row else default

    async def set_config(self, key: str, value: Optional[str]):
        if value is None:
            await self._write("DELETE FROM config WHERE key = ?", (key,))
            return
        await self._write(
            "INSERT OR REPLACE INTO config (key, value, updated_at) VALUES (?, ?, ?)",
            (key, value, format_ts(utcnow())),
        )

db = Database()
