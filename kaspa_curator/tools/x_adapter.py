import httpx
from typing import Dict, List, Optional
from kaspa_curator.config import settings
from kaspa_curator.models.posts import RawAuthor, RawPost
from kaspa_curator.services.logger import logger
from kaspa_curator.tools.base_adapter import SourceAdapter

TWEET_FIELDS = {
    "tweet.fields": "author_id,created_at",
    "expansions": "author_id",
    "user.fields": "username",
}
LOOKUP_CHUNK = 100  # X API v2 accepts at most 100 ids per lookup


def _users(payload: dict) -> Dict[str, str]:
    return {u["id"]: u["username"] for u in (payload.get("includes") or {}).get("users", [])}


def _to_post(tweet: dict, users: Dict[str, str]) -> RawPost:
    username = users.get(tweet.get("author_id", ""), "unknown")
    return RawPost(
        id=tweet["id"],
        text=tweet["text"],
        url=f"https://x.com/{username}/status/{tweet['id']}",
        author=RawAuthor(username=username),
        created_at=tweet.get("created_at"),
    )


class XSearchAdapter(SourceAdapter):
    name = "x"
    BASE_URL = "https://api.x.com/2"

    def __init__(
        self,
        bearer_token: Optional[str] = None,
        query: Optional[str] = None,
        max_results: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.bearer_token = bearer_token or settings.X_BEARER_TOKEN
        if not self.bearer_token:
            raise ValueError("Missing X_BEARER_TOKEN for the X source")
        self.query = query or settings.X_SEARCH_QUERY
        self.max_results = settings.X_MAX_RESULTS if max_results is None else max_results
        self._client = client

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers={"Authorization": f"Bearer {self.bearer_token}"},
            timeout=30.0,
        )

    async def fetch_posts(self) -> List[RawPost]:
        if self.max_results <= 0:
            return []
        logger.info(f"Searching X for {self.query!r} (max {self.max_results})")
        if self._client is not None:
            posts = await self._search(self._client)
        else:
            async with self._new_client() as client:
                posts = await self._search(client)
        logger.info(f"Found {len(posts)} X posts")
        return posts

    async def _search(self, client: httpx.AsyncClient) -> List[RawPost]:
        per_request = min(max(self.max_results, 10), 100)
        posts: List[RawPost] = []
        seen = set()
        next_token = None

        while len(posts) < self.max_results:
            params = {"query": self.query, "max_results": per_request, **TWEET_FIELDS}
            if next_token:
                params["next_token"] = next_token
            resp = await client.get("/tweets/search/recent", params=params)
            resp.raise_for_status()
            payload = resp.json()
            users = _users(payload)

            for tweet in payload.get("data") or []:
                if len(posts) >= self.max_results:
                    break
                if tweet["id"] in seen:
                    continue
                seen.add(tweet["id"])
                posts.append(_to_post(tweet, users))

            next_token = (payload.get("meta") or {}).get("next_token")
            if not next_token:
                break
        return posts

    async def fetch_by_ids(self, ids: List[str]) -> List[RawPost]:
        if not ids:
            return []
        if self._client is not None:
            return await self._lookup(self._client, ids)
        async with self._new_client() as client:
            return await self._lookup(client, ids)

    async def _lookup(self, client: httpx.AsyncClient, ids: List[str]) -> List[RawPost]:
        posts = []
        for start in range(0, len(ids), LOOKUP_CHUNK):
            chunk = ids[start:start + LOOKUP_CHUNK]
            resp = await client.get("/tweets", params={"ids": ",".join(chunk), **TWEET_FIELDS})
            resp.raise_for_status()
            payload = resp.json()
            users = _users(payload)
            posts.extend(_to_post(t, users) for t in payload.get("data") or [])
        return posts
