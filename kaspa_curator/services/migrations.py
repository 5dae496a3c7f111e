"""
Append-only schema evolution for the decision store.

Every step is recorded in ``schema_migrations`` once applied. A step whose
effect is already visible in the schema (databases created before the ledger
existed) is recorded without being run, so repeated startups never rewrite
anything.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, Set
import aiosqlite
from kaspa_curator.services.logger import logger

MIGRATIONS_TABLE = "schema_migrations"

NOW_SQL = "(strftime('%Y-%m-%d %H:%M:%f', 'now'))"

ColumnMap = Dict[str, aiosqlite.Row]


@dataclass(frozen=True)
class Migration:
    filename: str
    sql: str
    is_applied: Callable[[Set[str], ColumnMap], bool]


@dataclass
class MigrationResult:
    applied_count: int
    recorded_count: int
    total: int


def _has_column(name: str) -> Callable[[Set[str], ColumnMap], bool]:
    return lambda tables, columns: name in columns


def _approved_is_nullable(tables: Set[str], columns: ColumnMap) -> bool:
    approved = columns.get("approved")
    return approved is not None and approved["notnull"] == 0


MIGRATIONS: List[Migration] = [
    Migration(
        "001_create_posts_table",
        f"""
        CREATE TABLE IF NOT EXISTS posts (
            id TEXT PRIMARY KEY,
            text TEXT NOT NULL,
            quote TEXT NOT NULL,
            url TEXT NOT NULL,
            approved INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT {NOW_SQL},
            human_decision TEXT DEFAULT NULL CHECK(human_decision IN ('APPROVED','REJECTED'))
        );
        """,
        lambda tables, columns: "posts" in tables,
    ),
    Migration(
        "002_add_score",
        "ALTER TABLE posts ADD COLUMN score INTEGER NOT NULL DEFAULT 0;",
        _has_column("score"),
    ),
    Migration(
        # SQLite cannot relax NOT NULL in place, so the table is rebuilt
        "003_make_approved_nullable",
        f"""
        CREATE TABLE posts_new (
            id TEXT PRIMARY KEY,
            text TEXT NOT NULL,
            quote TEXT NOT NULL DEFAULT '',
            url TEXT NOT NULL,
            approved INTEGER DEFAULT NULL,
            score INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT {NOW_SQL},
            human_decision TEXT DEFAULT NULL CHECK(human_decision IN ('APPROVED','REJECTED'))
        );
        INSERT INTO posts_new (id, text, quote, url, approved, score, created_at, human_decision)
        SELECT id, text, COALESCE(quote, ''), url, approved, COALESCE(score, 0), created_at, human_decision
        FROM posts;
        DROP TABLE posts;
        ALTER TABLE posts_new RENAME TO posts;
        """,
        _approved_is_nullable,
    ),
    Migration(
        "004_add_updated_at",
        "ALTER TABLE posts ADD COLUMN updated_at TEXT DEFAULT NULL;",
        _has_column("updated_at"),
    ),
    Migration(
        "005_add_gold_example_type",
        """
        ALTER TABLE posts ADD COLUMN gold_example_type TEXT DEFAULT NULL
            CHECK(gold_example_type IN ('GOOD','BAD'));
        CREATE INDEX IF NOT EXISTS idx_posts_gold_example ON posts(gold_example_type)
            WHERE gold_example_type IS NOT NULL;
        """,
        _has_column("gold_example_type"),
    ),
    Migration(
        "006_add_gold_example_correction",
        "ALTER TABLE posts ADD COLUMN gold_example_correction TEXT DEFAULT NULL;",
        _has_column("gold_example_correction"),
    ),
    Migration(
        "007_add_author_username",
        """
        ALTER TABLE posts ADD COLUMN author_username TEXT DEFAULT NULL;
        CREATE INDEX IF NOT EXISTS idx_posts_author ON posts(author_username)
            WHERE author_username IS NOT NULL;
        """,
        _has_column("author_username"),
    ),
    Migration(
        "008_create_config_table",
        f"""
        CREATE TABLE IF NOT EXISTS config (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT {NOW_SQL}
        );
        """,
        lambda tables, columns: "config" in tables,
    ),
]


async def _table_names(conn: aiosqlite.Connection) -> Set[str]:
    cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row[0] for row in await cursor.fetchall()}


async def _post_columns(conn: aiosqlite.Connection) -> ColumnMap:
    conn.row_factory = aiosqlite.Row
    cursor = await conn.execute("PRAGMA table_info(posts)")
    rows = await cursor.fetchall()
    return {row["name"]: row for row in rows}


async def _recorded(conn: aiosqlite.Connection) -> Set[str]:
    cursor = await conn.execute(f"SELECT filename FROM {MIGRATIONS_TABLE}")
    return {row[0] for row in await cursor.fetchall()}


async def apply_migrations(conn: aiosqlite.Connection, migrations: List[Migration] = MIGRATIONS) -> MigrationResult:
    """Brings the schema up to date. Safe to call on every startup."""
    await conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
            filename TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL DEFAULT {NOW_SQL}
        )
        """
    )
    recorded = await _recorded(conn)
    applied = 0
    probed = 0

    for migration in migrations:
        if migration.filename in recorded:
            continue

        if migration.is_applied(await _table_names(conn), await _post_columns(conn)):
            await conn.execute(
                f"INSERT OR IGNORE INTO {MIGRATIONS_TABLE} (filename) VALUES (?)",
                (migration.filename,),
            )
            await conn.commit()
            probed += 1
            logger.debug(f"Schema already has {migration.filename}, recording it")
            continue

        logger.info(f"Running migration {migration.filename}")
        # Step and ledger entry commit together
        script = (
            "BEGIN;\n"
            f"{migration.sql}\n"
            f"INSERT INTO {MIGRATIONS_TABLE} (filename) VALUES ('{migration.filename}');\n"
            "COMMIT;"
        )
        try:
            await conn.executescript(script)
        except Exception:
            if conn.in_transaction:
                await conn.rollback()
            logger.error(f"Migration {migration.filename} failed")
            raise
        applied += 1

    return MigrationResult(applied_count=applied, recorded_count=probed, total=len(migrations))
