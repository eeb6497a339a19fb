import logging
from pathlib import Path

import pytest

from aether_pipeline.personas.registry import PersonaLoadError, PersonaRegistry, split_frontmatter


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def personas_dir(tmp_path: Path) -> Path:
    root = tmp_path / "personas"
    _write(root / "Samara" / "Samara.md", "---\nname: Samara\navatar: samara.png\n---\nSpeak plainly.\n")
    _write(root / "Samara" / "tone.md", "Warm, never saccharine.")
    _write(root / "Samara" / "boundaries.md", "No medical advice.")
    _write(root / "vlad" / "vlad.md", "---\nname: Vlad\nmodel: fireworks/llama-70b\n---\n")
    _write(root / "ghost" / "notes.md", "no main file here")
    _write(root / "broken" / "broken.md", "name: Broken\n")
    _write(root / "README.md", "not a persona folder")
    return root


def test_loads_one_profile_per_folder(personas_dir: Path) -> None:
    registry = PersonaRegistry.from_directory(personas_dir)

    assert registry.all_persona_ids() == ["samara", "vlad"]
    vlad = registry.get("VLAD")
    assert vlad is not None
    assert vlad.name == "Vlad"
    assert vlad.model == "fireworks/llama-70b"
    assert vlad.behavior_rules == ""


def test_behavior_rules_concatenate_extra_files_in_name_order(personas_dir: Path) -> None:
    samara = PersonaRegistry.from_directory(personas_dir).get("samara")

    assert samara is not None
    assert samara.model is None
    assert samara.behavior_rules == (
        "Speak plainly.\n\n"
        "--- FILE: boundaries.md ---\nNo medical advice.\n\n"
        "--- FILE: tone.md ---\nWarm, never saccharine."
    )


def test_broken_folders_are_logged_and_skipped(personas_dir: Path, caplog) -> None:
    with caplog.at_level(logging.ERROR, logger="aether_pipeline.personas.registry"):
        registry = PersonaRegistry.from_directory(personas_dir)

    assert registry.get("ghost") is None
    assert registry.get("broken") is None
    messages = [record.getMessage() for record in caplog.records]
    assert any("ghost" in message for message in messages)
    assert any("broken" in message for message in messages)


def test_missing_directory_loads_nothing(tmp_path: Path) -> None:
    registry = PersonaRegistry.from_directory(tmp_path / "absent")

    assert registry.personas == {}


def test_reload_picks_up_new_folders(personas_dir: Path) -> None:
    registry = PersonaRegistry.from_directory(personas_dir)
    _write(personas_dir / "vanessa" / "vanessa.md", "---\nname: Vanessa\n---\nPlan the week.")

    registry.load()

    assert "vanessa" in registry.all_persona_ids()


@pytest.mark.parametrize(
    "text",
    ["no frontmatter", "---\nname: X\n", "---\n- a\n- b\n---\nbody"],
)
def test_split_frontmatter_rejects_malformed_documents(text: str) -> None:
    with pytest.raises(PersonaLoadError):
        split_frontmatter(text)
