from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum
import re

from kaspa_curator.errors import InvalidInputError

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

_STATUS_URL = re.compile(r"^https?://(?:www\.)?(?:x|twitter)\.com/([A-Za-z0-9_]+)/status/", re.IGNORECASE)


class HumanDecision(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class GoldExampleType(str, Enum):
    GOOD = "GOOD"
    BAD = "BAD"


class DecisionFilter(str, Enum):
    """Tri-state filter value shared by model approval and human decision."""
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    UNSET = "UNSET"


class FrequencyState(str, Enum):
    FRESH = "fresh"
    HOT = "hot"
    WARM = "warm"
    HEALTHY = "healthy"


class SortField(str, Enum):
    ACTIVITY = "activity"
    SCORE = "score"
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


def _parse_enum(enum_cls, value: Optional[str], field: str):
    if value is None or value == "" or value == "all":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidInputError(f"Invalid {field}: {value!r}. Use one of: {allowed}")


def _parse_flag(value: Optional[str], field: str) -> Optional[bool]:
    if value is None or value == "" or value == "all":
        return None
    lowered = str(value).lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise InvalidInputError(f"Invalid {field}: {value!r}. Use true or false")


def author_from_url(url: str) -> Optional[str]:
    match = _STATUS_URL.match(url or "")
    # x.com/i/status/<id> is the anonymous form
    if not match or match.group(1).lower() == "i":
        return None
    return match.group(1)


class RawAuthor(BaseModel):
    username: str


class RawPost(BaseModel):
    """A candidate post as handed over by a source adapter."""
    id: str
    text: str
    url: str
    author: Optional[RawAuthor] = None
    created_at: Optional[datetime] = None

    @property
    def author_username(self) -> Optional[str]:
        if self.author and self.author.username and self.author.username != "unknown":
            return self.author.username
        return author_from_url(self.url)


class PostRecord(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: str
    text: str
    url: str
    author_username: Optional[str] = None
    judge_quote: str = ""
    model_approved: Optional[bool] = None
    score: int = 0
    human_decision: Optional[HumanDecision] = None
    gold_example_type: Optional[GoldExampleType] = None
    gold_example_correction: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "PostRecord":
        approved = row["approved"]
        return cls(
            id=row["id"],
            text=row["text"],
            url=row["url"],
            author_username=row["author_username"],
            judge_quote=row["quote"] or "",
            model_approved=None if approved is None else bool(approved),
            score=row["score"] or 0,
            human_decision=row["human_decision"],
            gold_example_type=row["gold_example_type"],
            gold_example_correction=row["gold_example_correction"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]) if row["updated_at"] else None,
        )


class JudgeDecision(BaseModel):
    quote: str
    approved: bool
    score: int = Field(ge=0, le=100)
    call_handle: Optional[str] = None


class QuickFilterResult(BaseModel):
    approved: bool
    rejection_reason: Optional[str] = None


class FewShotExample(BaseModel):
    text: str
    response: str
    correction: Optional[str] = None
    type: GoldExampleType


class PostFilters(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_approved: Optional[DecisionFilter] = None
    human_decision: Optional[DecisionFilter] = None
    has_model_decision: Optional[bool] = None
    gold_example_type: Optional[GoldExampleType] = None
    has_gold_example: Optional[bool] = None

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "PostFilters":
        """Builds filters from raw query-string values, rejecting unknown ones."""
        approved = params.get("approved")
        # Legacy boolean spelling of the approval filter
        if approved in ("true", "false"):
            approved = "APPROVED" if approved == "true" else "REJECTED"
        return cls(
            model_approved=_parse_enum(DecisionFilter, approved, "approved"),
            human_decision=_parse_enum(DecisionFilter, params.get("humanDecision"), "humanDecision"),
            has_model_decision=_parse_flag(params.get("hasModelDecision"), "hasModelDecision"),
            gold_example_type=_parse_enum(GoldExampleType, params.get("goldExampleType"), "goldExampleType"),
            has_gold_example=_parse_flag(params.get("hasGoldExample"), "hasGoldExample"),
        )


class PostQuery(BaseModel):
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    sort: SortField = SortField.ACTIVITY
    order: SortOrder = SortOrder.DESC

    @field_validator("page")
    @classmethod
    def floor_page(cls, value: int) -> int:
        return max(value, 1)

    @field_validator("page_size")
    @classmethod
    def clamp_page_size(cls, value: int) -> int:
        return min(max(value, 1), MAX_PAGE_SIZE)

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "PostQuery":
        try:
            page = int(params.get("page") or 1)
            page_size = int(params.get("pageSize") or DEFAULT_PAGE_SIZE)
        except (TypeError, ValueError):
            raise InvalidInputError("page and pageSize must be integers")
        return cls(
            page=page,
            page_size=page_size,
            sort=_parse_enum(SortField, params.get("sort"), "sort") or SortField.ACTIVITY,
            order=_parse_enum(SortOrder, params.get("order"), "order") or SortOrder.DESC,
        )


class PostPage(BaseModel):
    records: List[PostRecord]
    total: int
    page: int
    page_size: int

    @computed_field
    @property
    def has_next_page(self) -> bool:
        return self.page * self.page_size < self.total


class AuthorFrequency(BaseModel):
    username: str
    posts_last_7_days: int
    posts_last_30_days: int
    frequency_state: FrequencyState


def parse_human_decision(value: Optional[str]) -> Optional[HumanDecision]:
    """None/empty clears the decision; anything else must be APPROVED or REJECTED."""
    if value is None or value == "" or value == "UNSET":
        return None
    try:
        return HumanDecision(value)
    except ValueError:
        raise InvalidInputError("Invalid decision. Use APPROVED or REJECTED.")


def validate_gold_example(type_value: Optional[str], correction: Optional[str]):
    """Returns the (type, correction) pair to store, or raises InvalidInputError."""
    gold_type = _parse_enum(GoldExampleType, type_value, "type")
    if gold_type is GoldExampleType.BAD:
        if not correction or not correction.strip():
            raise InvalidInputError("BAD gold examples need a correction")
        return gold_type, correction.strip()
    return gold_type, None


def frequency_state_for(posts_last_7_days: int, posts_last_30_days: int) -> FrequencyState:
    if posts_last_7_days == 0 and posts_last_30_days == 0:
        return FrequencyState.FRESH
    if posts_last_7_days >= 2:
        return FrequencyState.HOT
    if posts_last_30_days >= 3:
        return FrequencyState.WARM
    return FrequencyState.HEALTHY


def parse_gold_example_type(value: Optional[str]) -> Optional[GoldExampleType]:
    return _parse_enum(GoldExampleType, value, "type")
