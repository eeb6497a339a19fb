import pytest

from aether_pipeline.agent.orchestrator import split_persona_prefix

PERSONAS = ["samara", "vanessa", "claude"]


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("Claude, what changed?", ("claude", "what changed?")),
        ("vanessa: plan my week", ("vanessa", "plan my week")),
        ("What did Claude say?", (None, "What did Claude say?")),
        ("", (None, "")),
    ],
)
def test_split_persona_prefix(message: str, expected: tuple[str | None, str]) -> None:
    assert split_persona_prefix(message, PERSONAS) == expected


def test_split_persona_prefix_keeps_multiline_body_verbatim() -> None:
    message = "Claude, fix this:\n```\nx = 1\n\n    y = 2\n```"

    assert split_persona_prefix(message, PERSONAS) == ("claude", "fix this:\n```\nx = 1\n\n    y = 2\n```")


def test_split_persona_prefix_on_its_own_line() -> None:
    assert split_persona_prefix("  Vanessa:\nline one\n  line two", PERSONAS) == ("vanessa", "line one\n  line two")
