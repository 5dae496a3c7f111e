"""Shared test doubles: a scripted oracle, a recording sleep and post builders."""

from typing import List, Optional

from kaspa_curator.models.posts import RawAuthor, RawPost
from kaspa_curator.services.llm import Oracle, OracleReply


class StubOracle(Oracle):
    """
    Replays scripted replies in order. An Exception entry is raised instead of
    returned. Every call is recorded for assertions.
    """

    def __init__(self, replies: List = None, default: Optional[str] = None):
        self.replies = list(replies or [])
        self.default = default
        self.calls = []

    async def respond(self, system_instruction, user_text, reasoning_effort, continuation_handle=None):
        self.calls.append({
            "system": system_instruction,
            "user": user_text,
            "effort": reasoning_effort,
            "handle": continuation_handle,
        })
        if self.replies:
            reply = self.replies.pop(0)
        elif self.default is not None:
            reply = self.default
        else:
            raise AssertionError("StubOracle ran out of replies")
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, OracleReply):
            return reply
        return OracleReply(output_text=reply, call_id=f"resp_{len(self.calls)}")


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def make_post(post_id: str, text: str = None, username: Optional[str] = "alice", created_at=None) -> RawPost:
    return RawPost(
        id=post_id,
        text=text or f"kaspa post {post_id}",
        url=f"https://x.com/{username or 'i'}/status/{post_id}",
        author=RawAuthor(username=username) if username else None,
        created_at=created_at,
    )
