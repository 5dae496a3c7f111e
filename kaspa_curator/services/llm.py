import asyncio
import re
import ollama
import openai
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt
from kaspa_curator.config import settings
from kaspa_curator.errors import FatalProviderError, ProviderError, TransientProviderError
from kaspa_curator.services.logger import logger

T = TypeVar("T")

MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 3.0

QUOTA_MARKERS = ("insufficient_quota", "billing_hard_limit_reached", "billing", "hard limit")

_RETRY_HINT = re.compile(r"try again in ([\d.]+)\s*s", re.IGNORECASE)


def parse_retry_hint(message: str) -> Optional[float]:
    """Pulls the "try again in N s" hint out of a provider message."""
    match = _RETRY_HINT.search(message or "")
    if not match:
        return None
    try:
        return max(0.0, float(match.group(1)))
    except ValueError:
        return None


def _retry_delay(retry_state: RetryCallState) -> float:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    hint = getattr(error, "retry_after", None)
    if hint is None:
        return DEFAULT_RETRY_DELAY
    return max(0.0, float(hint))


def _log_retry(context: str):
    def before_sleep(retry_state: RetryCallState):
        logger.warning(
            f"Rate limited ({context}), waiting {retry_state.next_action.sleep:.1f}s "
            f"before retry {retry_state.attempt_number + 1}/{MAX_ATTEMPTS}..."
        )
    return before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    context: str,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    max_attempts: int = MAX_ATTEMPTS,
) -> T:
    """
    Runs an oracle call, retrying only transient rate limits.
    Quota exhaustion and any other error propagate on the first attempt;
    exhausting the attempts re-raises the last rate-limit error.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=_retry_delay,
        retry=retry_if_exception_type(TransientProviderError),
        before_sleep=_log_retry(context),
        sleep=sleep,
        reraise=True,
    )
    result = None
    async for attempt in retrying:
        with attempt:
            result = await operation()
    return result


@dataclass
class OracleReply:
    output_text: str
    call_id: Optional[str] = None


class Oracle(ABC):
    """The external judge. Adapters must translate every provider error into a ProviderError kind."""

    @abstractmethod
    async def respond(
        self,
        system_instruction: str,
        user_text: str,
        reasoning_effort: str,
        continuation_handle: Optional[str] = None,
    ) -> OracleReply:
        pass


def classify_openai_error(error: Exception) -> ProviderError:
    if isinstance(error, openai.RateLimitError):
        fields = " ".join(
            str(part or "").lower()
            for part in (getattr(error, "code", None), getattr(error, "type", None), getattr(error, "message", None))
        )
        if any(marker in fields for marker in QUOTA_MARKERS):
            return FatalProviderError(str(error))
        hint = parse_retry_hint(getattr(error, "message", "") or str(error))
        if hint is None:
            header = error.response.headers.get("retry-after") if error.response is not None else None
            try:
                hint = max(0.0, float(header)) if header else None
            except ValueError:
                hint = None
        return TransientProviderError(str(error), retry_after=hint)
    return ProviderError(str(error))


class OpenAIOracle(Oracle):
    """Judge backed by the OpenAI Responses API, which supports response chaining."""

    def __init__(self, client: Optional[openai.AsyncOpenAI] = None, model: Optional[str] = None):
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise ProviderError("Missing OPENAI_API_KEY environment variable.")
            client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        self.client = client
        self.model = model or settings.JUDGE_MODEL

    async def respond(self, system_instruction, user_text, reasoning_effort, continuation_handle=None) -> OracleReply:
        extra = {"previous_response_id": continuation_handle} if continuation_handle else {}
        try:
            response = await self.client.responses.create(
                model=self.model,
                input=[
                    {"role": "system", "content": system_instruction},
                    {"role": "user", "content": user_text},
                ],
                reasoning={"effort": reasoning_effort},
                truncation="auto",
                **extra,
            )
        except openai.OpenAIError as e:
            raise classify_openai_error(e) from e
        return OracleReply(output_text=(response.output_text or "").strip(), call_id=response.id)


class OllamaOracle(Oracle):
    """Local judge. Ollama keeps no server-side conversation, so handles are ignored."""

    def __init__(self, client: Optional[ollama.AsyncClient] = None, model: Optional[str] = None):
        self.client = client or ollama.AsyncClient(host=settings.OLLAMA_BASE_URL)
        self.model = model or settings.OLLAMA_MODEL

    async def respond(self, system_instruction, user_text, reasoning_effort, continuation_handle=None) -> OracleReply:
        try:
            response = await self.client.chat(model=self.model, messages=[
                {'role': 'system', 'content': system_instruction},
                {'role': 'user', 'content': user_text},
            ], options={'temperature': 0.1})
        except ollama.ResponseError as e:
            if e.status_code == 429:
                raise TransientProviderError(str(e), retry_after=parse_retry_hint(e.error)) from e
            raise ProviderError(str(e)) from e
        except Exception as e:
            raise ProviderError(f"Ollama request failed: {e}") from e
        return OracleReply(output_text=(response['message']['content'] or "").strip(), call_id=None)


def build_oracle(provider: Optional[str] = None) -> Oracle:
    provider = (provider or settings.JUDGE_PROVIDER).lower()
    if provider == "openai":
        return OpenAIOracle()
    elif provider == "ollama":
        return OllamaOracle()
    else:
        raise ValueError(f"Unknown judge provider: {provider}")
