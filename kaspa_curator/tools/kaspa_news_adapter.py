import httpx
from typing import List, Optional
from kaspa_curator.config import settings
from kaspa_curator.models.posts import RawAuthor, RawPost
from kaspa_curator.services.logger import logger
from kaspa_curator.tools.base_adapter import SourceAdapter

class KaspaNewsAdapter(SourceAdapter):
    name = "kaspa_news"

    def __init__(self, url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.url = url or settings.KASPA_NEWS_URL
        self._client = client

    async def fetch_posts(self) -> List[RawPost]:
        logger.info(f"Fetching kaspa.news tweets from {self.url}")
        if self._client is not None:
            payload = await self._get(self._client)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                payload = await self._get(client)

        posts = []
        for entry in payload.get("tweets") or []:
            post = self._to_post(entry)
            if post:
                posts.append(post)

        logger.info(f"Found {len(posts)} kaspa.news tweets")
        return posts

    async def _get(self, client: httpx.AsyncClient) -> dict:
        resp = await client.get(self.url, headers={"Accept": "application/json"})
        if resp.status_code != 200:
            raise RuntimeError(f"Failed to fetch kaspa tweets: {resp.status_code} {resp.reason_phrase}")
        return resp.json()

    def _to_post(self, entry: dict) -> Optional[RawPost]:
        if not entry.get("id") or not entry.get("text"):
            logger.debug(f"Skipping kaspa.news entry without id/text: {entry!r}"[:200])
            return None
        author = entry.get("author") or {}
        username = author.get("username")
        return RawPost(
            id=str(entry["id"]),
            text=entry["text"],
            url=entry.get("url") or f"https://x.com/{username or 'i'}/status/{entry['id']}",
            author=RawAuthor(username=username) if username else None,
        )

    async def author_map(self) -> dict:
        """Tweet id -> author username for every entry that carries one."""
        return {p.id: p.author.username for p in await self.fetch_posts() if p.author}
