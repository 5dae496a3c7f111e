import secrets
from contextlib import asynccontextmanager
from functools import lru_cache
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Optional

from kaspa_curator.config import settings
from kaspa_curator.errors import (
    InvalidInputError,
    InvalidTransitionError,
    MalformedResponseError,
    ProviderError,
    ReevaluationRejectedError,
)
from kaspa_curator.models.posts import (
    DecisionFilter,
    PostFilters,
    PostPage,
    PostQuery,
    parse_gold_example_type,
    parse_human_decision,
    validate_gold_example,
)
from kaspa_curator.services.database import Database, db
from kaspa_curator.services.logger import logger
from kaspa_curator.tools.calibration import author_frequency
from kaspa_curator.workflows.pipeline import Pipeline, build_pipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    await db.init()
    if not settings.ADMIN_PASSWORD:
        logger.warning("ADMIN_PASSWORD is not set, review endpoints are open")
    yield

app = FastAPI(title="Kaspa Curator Review API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db() -> Database:
    return db


@lru_cache()
def get_pipeline() -> Pipeline:
    return build_pipeline(db)


def require_admin(password: Optional[str]):
    expected = settings.ADMIN_PASSWORD
    if not expected:
        return
    if not password or not secrets.compare_digest(password.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


def page_response(page: PostPage) -> dict:
    return {
        "tweets": [r.model_dump(mode="json") for r in page.records],
        "total": page.total,
        "page": page.page,
        "pageSize": page.page_size,
        "hasNextPage": page.has_next_page,
    }


def bad_request(e: InvalidInputError):
    return HTTPException(status_code=400, detail=str(e))


class HumanDecisionRequest(BaseModel):
    decision: Optional[str] = None
    password: Optional[str] = None


class GoldExampleRequest(BaseModel):
    type: Optional[str] = None
    correction: Optional[str] = None
    password: Optional[str] = None


class AdminRequest(BaseModel):
    password: Optional[str] = None


@app.get("/api/status")
async def get_status():
    return {"status": "ok", "version": "1.0.0"}


@app.get("/api/tweets")
async def list_tweets(request: Request, password: Optional[str] = None, store: Database = Depends(get_db)):
    require_admin(password)
    params = dict(request.query_params)
    try:
        filters = PostFilters.from_params(params)
        query = PostQuery.from_params(params)
    except InvalidInputError as e:
        raise bad_request(e)
    return page_response(await store.list_posts(filters, query))


@app.get("/api/approved")
async def list_approved(request: Request, store: Database = Depends(get_db)):
    params = dict(request.query_params)
    try:
        query = PostQuery.from_params(params)
    except InvalidInputError as e:
        raise bad_request(e)
    filters = PostFilters(model_approved=DecisionFilter.APPROVED)
    return page_response(await store.list_posts(filters, query))


@app.get("/api/tweets/{post_id}")
async def get_tweet(post_id: str, password: Optional[str] = None, store: Database = Depends(get_db)):
    require_admin(password)
    record = await store.get_post(post_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Tweet not found")
    return record.model_dump(mode="json")


@app.post("/api/tweets/{post_id}/human-decision")
async def set_human_decision(post_id: str, req: HumanDecisionRequest, store: Database = Depends(get_db)):
    require_admin(req.password)
    try:
        decision = parse_human_decision(req.decision)
    except InvalidInputError as e:
        raise bad_request(e)
    if not await store.set_human_decision(post_id, decision):
        raise HTTPException(status_code=404, detail="Tweet not found")
    return (await store.get_post(post_id)).model_dump(mode="json")


@app.post("/api/tweets/{post_id}/gold-example")
async def set_gold_example(post_id: str, req: GoldExampleRequest, store: Database = Depends(get_db)):
    require_admin(req.password)
    try:
        gold_type, correction = validate_gold_example(req.type, req.correction)
    except InvalidInputError as e:
        raise bad_request(e)
    if not await store.set_gold_example(post_id, gold_type, correction):
        raise HTTPException(status_code=404, detail="Tweet not found")
    return (await store.get_post(post_id)).model_dump(mode="json")


@app.post("/api/tweets/{post_id}/reevaluate")
async def reevaluate_tweet(post_id: str, req: AdminRequest, pipeline: Pipeline = Depends(get_pipeline)):
    require_admin(req.password)
    try:
        record = await pipeline.reevaluate_post(post_id)
    except (InvalidTransitionError, ReevaluationRejectedError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MalformedResponseError as e:
        logger.warning(f"Malformed re-evaluation reply for {post_id}: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except ProviderError as e:
        logger.error(f"Re-evaluation of {post_id} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    if record is None:
        raise HTTPException(status_code=404, detail="Tweet not found")
    return record.model_dump(mode="json")


@app.get("/api/gold-examples")
async def list_gold_examples(
    type: Optional[str] = None,
    password: Optional[str] = None,
    store: Database = Depends(get_db),
):
    require_admin(password)
    try:
        gold_type = parse_gold_example_type(type)
    except InvalidInputError as e:
        raise bad_request(e)
    records = await store.gold_examples(gold_type)
    return {"examples": [r.model_dump(mode="json") for r in records]}


@app.get("/api/authors/{username}/frequency")
async def get_author_frequency(username: str, store: Database = Depends(get_db)):
    freq = await author_frequency(store, username)
    return {
        "username": freq.username,
        "postsLast7Days": freq.posts_last_7_days,
        "postsLast30Days": freq.posts_last_30_days,
        "frequencyState": freq.frequency_state.value,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
