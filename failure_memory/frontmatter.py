"""YAML frontmatter serialize/deserialize pair for note documents."""

from __future__ import annotations

import re

import yaml

_FRONTMATTER = re.compile(r"\A---\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)


def split(text: str) -> tuple[dict | None, str]:
    """Split a note into ``(metadata, body)``.

    ``metadata`` is ``None`` when the note has no frontmatter block. Raises
    ``ValueError`` when the block exists but is not a YAML mapping.
    """

    match = _FRONTMATTER.match(text)
    if not match:
        return None, text

    try:
        meta = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        raise ValueError("malformed frontmatter") from exc

    if meta is None:
        meta = {}
    if not isinstance(meta, dict):
        raise ValueError("frontmatter must be a mapping")
    return meta, text[match.end():]


def join(meta: dict, body: str) -> str:
    """Render ``meta`` as a frontmatter block followed by ``body``."""

    block = yaml.safe_dump(meta, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{block}---\n{body}"
