"""Tests for prompt composition."""

from kaspa_curator.models.posts import FewShotExample, GoldExampleType
from kaspa_curator.tools.prompts import BASE_PROMPT, EXAMPLE_TEXT_LIMIT, compose_prompt


def example(kind, n, correction=None, text=None):
    return FewShotExample(
        text=text or f"{kind.value.lower()} tweet {n}",
        response=f"raw verdict {kind.value} {n}",
        correction=correction,
        type=kind,
    )


class TestComposePrompt:

    def test_no_examples_returns_base_unchanged(self):
        assert compose_prompt(BASE_PROMPT, []) == BASE_PROMPT

    def test_caps_each_type_at_five_in_given_order(self):
        examples = [example(GoldExampleType.GOOD, i) for i in range(6)]
        examples += [example(GoldExampleType.BAD, i) for i in range(6)]

        prompt = compose_prompt("base", examples)

        for i in range(5):
            assert f"good tweet {i}" in prompt
            assert f"bad tweet {i}" in prompt
        assert "good tweet 5" not in prompt
        assert "bad tweet 5" not in prompt
        assert prompt.index("good tweet 0") < prompt.index("good tweet 4")
        assert prompt.startswith("base")

    def test_bad_example_prefers_correction(self):
        prompt = compose_prompt("base", [
            example(GoldExampleType.BAD, 1, correction="should reject: price talk"),
            example(GoldExampleType.BAD, 2),
        ])
        assert "should reject: price talk" in prompt
        assert "raw verdict BAD 1" not in prompt
        assert "raw verdict BAD 2" in prompt

    def test_good_example_always_shows_raw_verdict(self):
        prompt = compose_prompt("base", [example(GoldExampleType.GOOD, 1, correction="ignored")])
        assert "raw verdict GOOD 1" in prompt
        assert "ignored" not in prompt

    def test_long_text_truncated_with_marker(self):
        long_text = "k" * (EXAMPLE_TEXT_LIMIT + 50)
        prompt = compose_prompt("base", [example(GoldExampleType.GOOD, 1, text=long_text)])
        assert "k" * EXAMPLE_TEXT_LIMIT + "..." in prompt
        assert "k" * (EXAMPLE_TEXT_LIMIT + 1) not in prompt

    def test_short_text_not_marked(self):
        prompt = compose_prompt("base", [example(GoldExampleType.GOOD, 1, text="short one")])
        assert '"short one"' in prompt
