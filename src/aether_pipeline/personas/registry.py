"""Persona discovery from a folder-per-persona markdown layout.

    personas/
      samara/
        samara.md        <- YAML frontmatter (name, optional model) + rules
        strategy.md      <- any further .md files, appended in name order
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from aether_pipeline.types import PersonaProfile

logger = logging.getLogger(__name__)

_DELIMITER = "---"


class PersonaLoadError(ValueError):
    """A persona folder exists but cannot be turned into a profile."""


class PersonaRegistry:
    """Loads `PersonaProfile`s keyed by lowercase folder name.

    A broken persona folder is logged and skipped; the rest still load.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._personas: dict[str, PersonaProfile] = {}

    @classmethod
    def from_directory(cls, path: str | Path) -> "PersonaRegistry":
        registry = cls(path)
        registry.load()
        return registry

    @property
    def personas(self) -> dict[str, PersonaProfile]:
        return dict(self._personas)

    def load(self) -> None:
        if not self.path.is_dir():
            logger.warning("Personas folder not found at %s", self.path)
            self._personas = {}
            return

        discovered: dict[str, PersonaProfile] = {}
        for folder in sorted(item for item in self.path.iterdir() if item.is_dir()):
            try:
                profile = load_persona_folder(folder)
            except (OSError, PersonaLoadError, yaml.YAMLError) as exc:
                logger.error("Error loading persona %s: %s", folder.name, exc)
                continue
            discovered[profile.id] = profile
        self._personas = discovered
        logger.info("Loaded %d personas from %s", len(discovered), self.path)

    def get(self, persona_id: str) -> PersonaProfile | None:
        return self._personas.get(persona_id.lower())

    def all_persona_ids(self) -> list[str]:
        return sorted(self._personas)


def load_persona_folder(folder: Path) -> PersonaProfile:
    main_file = folder / f"{folder.name}.md"
    if not main_file.is_file():
        raise PersonaLoadError(f"Persona file not found for {folder.name}")

    frontmatter, body = split_frontmatter(main_file.read_text(encoding="utf-8"))
    name = frontmatter.get("name")
    if not name:
        raise PersonaLoadError(f"Missing 'name' in frontmatter of {main_file}")

    sections = [body] if body else []
    for extra in sorted(folder.glob("*.md")):
        if extra == main_file:
            continue
        content = extra.read_text(encoding="utf-8").strip()
        if content:
            sections.append(f"--- FILE: {extra.name} ---\n{content}")

    model = frontmatter.get("model")
    return PersonaProfile(
        id=folder.name.lower(),
        name=str(name),
        behavior_rules="\n\n".join(sections),
        model=str(model) if model else None,
    )


def split_frontmatter(content: str) -> tuple[dict, str]:
    """Return `(frontmatter_mapping, body)` for a `---`-delimited document."""
    lines = content.splitlines()
    if not lines or lines[0].strip() != _DELIMITER:
        raise PersonaLoadError("Persona file has no frontmatter block")
    try:
        end = next(index for index, line in enumerate(lines[1:], start=1) if line.strip() == _DELIMITER)
    except StopIteration:
        raise PersonaLoadError("Unterminated frontmatter block") from None

    data = yaml.safe_load("\n".join(lines[1:end])) or {}
    if not isinstance(data, dict):
        raise PersonaLoadError("Frontmatter must be a mapping")
    return data, "\n".join(lines[end + 1 :]).strip()
