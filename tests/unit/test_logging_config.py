import logging

from aether_pipeline.errors import PersonaModelMismatch, user_facing_message
from aether_pipeline.obs.logging_config import ColorFormatter, setup_logging


def test_setup_logging_installs_single_colour_handler() -> None:
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging("DEBUG")

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, ColorFormatter)
        assert root.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)


def test_formatter_includes_level_tag_and_logger_name() -> None:
    record = logging.LogRecord("aether_pipeline.routing", logging.WARNING, __file__, 1, "%s failed", ("openai/gpt-4o",), None)

    line = ColorFormatter().format(record)

    assert "WARN" in line
    assert "aether_pipeline.routing: openai/gpt-4o failed" in line


def test_routing_error_serialises_with_category() -> None:
    error = PersonaModelMismatch("Claude Code model can only be used with Claude persona")

    assert error.to_dict()["category"] == "mismatch"
    assert user_facing_message(error) == (
        "Persona/model mismatch: Claude Code model can only be used with Claude persona"
    )
    assert user_facing_message(ValueError("x")) == "An unexpected error occurred. Please try again."
