"""Prompt composer: fills the per-stage prompt templates."""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).parent.parent / "prompts" / "v1"
_MAX_FIELD_CHARS = 24_000  # ~6k tokens per substituted field
# JSON documents, substituted whole and never cut
_JSON_FIELDS = frozenset({"tickets", "repo_snapshot"})

# Only bare identifiers in braces are placeholders; the JSON examples in the
# templates never match.
_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@lru_cache(maxsize=None)
def _load_template(role: str) -> str:
    """Load a prompt template by role name."""
    path = _PROMPTS_DIR / f"{role}.md"
    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {path}")
    return path.read_text()


def _truncate(text: str, max_chars: int, *, role: str = "", name: str = "") -> str:
    if len(text) <= max_chars:
        return text
    logger.warning(
        "Prompt %s: truncating %s from %d to %d chars", role, name, len(text), max_chars,
    )
    return text[:max_chars] + "\n... (truncated)"


def placeholders(role: str) -> set[str]:
    """Names of the placeholders a template expects."""
    return set(_PLACEHOLDER_RE.findall(_load_template(role)))


class PromptComposer:
    """Renders ``prompts/v1/<role>.md`` with values taken from pipeline state.

    Every placeholder must be supplied; extra values are ignored. Long text
    values are cut to ``_MAX_FIELD_CHARS`` with a warning; JSON values are not.
    """

    def render(self, role: str, **fields: object) -> str:
        template = _load_template(role)
        missing = placeholders(role) - fields.keys()
        if missing:
            raise KeyError(f"Prompt '{role}' is missing values for: {', '.join(sorted(missing))}")

        def _sub(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in fields:
                return match.group(0)
            value = str(fields[name])
            if name in _JSON_FIELDS:
                return value
            return _truncate(value, _MAX_FIELD_CHARS, role=role, name=name)

        # Single pass so substituted text is never re-scanned for placeholders.
        return _PLACEHOLDER_RE.sub(_sub, template)
