import asyncio
import re
from typing import List, Optional
from kaspa_curator.errors import MalformedResponseError
from kaspa_curator.models.posts import FewShotExample, JudgeDecision, QuickFilterResult
from kaspa_curator.services.llm import Oracle, with_retry
from kaspa_curator.services.logger import logger
from kaspa_curator.tools.prompts import BASE_PROMPT, QUICK_FILTER_PROMPT, compose_prompt

APPROVED_MARKER = "Approved"
REJECTED_MARKER = "Rejected"

_PERCENTILE = re.compile(r"Percentile:\s*(\d+)", re.IGNORECASE)
_REJECTED_PREFIX = re.compile(r"^Rejected:?\s*", re.IGNORECASE)


def _verdict(text: str, call_handle: Optional[str]) -> bool:
    """True for approved, False for rejected; anything else is malformed."""
    if not text:
        raise MalformedResponseError("Empty response from model", text, call_handle)
    if text.startswith(APPROVED_MARKER):
        return True
    if text.startswith(REJECTED_MARKER):
        return False
    raise MalformedResponseError(
        f'Response must start with "Approved" or "Rejected", got: "{text[:50]}..."',
        text,
        call_handle,
    )


def parse_decision(text: str, call_handle: Optional[str] = None) -> JudgeDecision:
    text = (text or "").strip()
    approved = _verdict(text, call_handle)
    score = 0
    if approved:
        match = _PERCENTILE.search(text)
        if not match:
            raise MalformedResponseError(
                f'Approved response missing Percentile field: "{text[:100]}..."', text, call_handle
            )
        score = int(match.group(1))
        if not 0 <= score <= 100:
            raise MalformedResponseError(f"Percentile must be 0-100, got: {score}", text, call_handle)
    return JudgeDecision(quote=text, approved=approved, score=score, call_handle=call_handle)


def parse_quick_filter(text: str) -> QuickFilterResult:
    text = (text or "").strip()
    approved = _verdict(text, None)
    if approved:
        return QuickFilterResult(approved=True)
    return QuickFilterResult(approved=False, rejection_reason=_REJECTED_PREFIX.sub("", text).strip())


class TweetJudge:
    """Asks the oracle for a verdict and holds it to the output contract."""

    def __init__(
        self,
        oracle: Oracle,
        base_prompt: str = BASE_PROMPT,
        quick_filter_prompt: str = QUICK_FILTER_PROMPT,
        reasoning_effort: str = "high",
        quick_filter_effort: str = "low",
        sleep=asyncio.sleep,
    ):
        self.oracle = oracle
        self.base_prompt = base_prompt
        self.quick_filter_prompt = quick_filter_prompt
        self.reasoning_effort = reasoning_effort
        self.quick_filter_effort = quick_filter_effort
        self._sleep = sleep

    async def evaluate(
        self,
        post_text: str,
        examples: Optional[List[FewShotExample]] = None,
        previous_call_handle: Optional[str] = None,
    ) -> JudgeDecision:
        system_prompt = compose_prompt(self.base_prompt, examples or [])
        reply = await with_retry(
            lambda: self.oracle.respond(
                system_prompt, post_text, self.reasoning_effort, previous_call_handle
            ),
            "full evaluation",
            sleep=self._sleep,
        )
        decision = parse_decision(reply.output_text, reply.call_id)
        logger.debug(f"Judge verdict: approved={decision.approved} score={decision.score}")
        return decision

    async def quick_filter(self, post_text: str) -> QuickFilterResult:
        reply = await with_retry(
            lambda: self.oracle.respond(self.quick_filter_prompt, post_text, self.quick_filter_effort),
            "quick filter",
            sleep=self._sleep,
        )
        return parse_quick_filter(reply.output_text)
