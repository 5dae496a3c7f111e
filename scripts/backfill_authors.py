import asyncio
import sys
import argparse
from pathlib import Path
from typing import Dict, List, Optional

# Add project root to sys.path
project_root = Path(__file__).resolve().parent.parent
sys.path.append(str(project_root))

from kaspa_curator.config import settings
from kaspa_curator.models.posts import author_from_url
from kaspa_curator.services.database import Database, db
from kaspa_curator.services.logger import logger
from kaspa_curator.tools.kaspa_news_adapter import KaspaNewsAdapter
from kaspa_curator.tools.x_adapter import XSearchAdapter

async def resolve_authors(
    ids: List[str],
    news: Optional[KaspaNewsAdapter] = None,
    x: Optional[XSearchAdapter] = None,
) -> Dict[str, str]:
    """kaspa.news first, then the X API for whatever is still unknown."""
    found: Dict[str, str] = {}
    wanted = set(ids)

    if news is not None:
        try:
            found.update({k: v for k, v in (await news.author_map()).items() if k in wanted})
        except Exception as e:
            logger.warning(f"kaspa.news lookup failed: {e}")

    missing = [i for i in ids if i not in found]
    if missing and x is not None:
        for post in await x.fetch_by_ids(missing):
            if post.author and post.author.username != "unknown":
                found[post.id] = post.author.username
    return found

async def backfill(
    database: Database,
    dry_run: bool = False,
    news: Optional[KaspaNewsAdapter] = None,
    x: Optional[XSearchAdapter] = None,
) -> int:
    await database.init()
    records = await database.posts_missing_author(human_approved_only=True)
    print(f"{len(records)} approved tweets without an author")
    if not records:
        return 0

    authors = {r.id: author_from_url(r.url) for r in records if author_from_url(r.url)}
    unresolved = [r.id for r in records if r.id not in authors]
    if unresolved:
        authors.update(await resolve_authors(unresolved, news, x))

    updated = 0
    for record in records:
        username = authors.get(record.id)
        if not username:
            print(f"  {record.id}: no author found")
            continue
        print(f"  {record.id}: @{username}{' (dry run)' if dry_run else ''}")
        if not dry_run and await database.set_author_username(record.id, username):
            updated += 1

    print(f"Updated {updated} tweets")
    return updated

def main():
    parser = argparse.ArgumentParser(description="Fill in missing author handles for approved tweets")
    parser.add_argument("--dry-run", action="store_true", help="Show what would change without writing")
    args = parser.parse_args()

    x = XSearchAdapter() if settings.X_BEARER_TOKEN else None
    asyncio.run(backfill(db, args.dry_run, KaspaNewsAdapter(), x))

if __name__ == "__main__":
    main()
