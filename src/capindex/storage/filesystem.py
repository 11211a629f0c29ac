"""Element store over a portfolio directory.

Layout: ``<root>/<folder>/<name>.md`` (``skills/``, ``memories/`` ...) with optional YAML frontmatter, or
``<name>.yaml`` / ``<name>.yml`` for structured elements such as memories.
"""

import logging
import re
from pathlib import Path
from typing import Any

import yaml

from ..errors import ElementReadError
from ..models import ElementRef, ElementType, format_element_id, parse_element_id
from .base import ElementStoreBase

logger = logging.getLogger(__name__)

ELEMENT_SUFFIXES = (".md", ".yaml", ".yml")
FRONTMATTER_FIELDS = ("name", "description", "keywords", "tags", "triggers")

_FRONTMATTER = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)


class FilesystemElementStore(ElementStoreBase):
    """Reads elements from per-type folders under a portfolio root."""

    def __init__(self, root: str | Path):
        super().__init__()
        self.root = Path(root).expanduser()

    def init_layout(self) -> list[Path]:
        """Create the per-type folders. Returns the folders created."""
        created = []
        for element_type in ElementType:
            folder = self.root / element_type.folder
            if not folder.exists():
                folder.mkdir(parents=True, exist_ok=True)
                created.append(folder)
        return created

    def list_elements(self) -> list[ElementRef]:
        refs = []
        for element_type in ElementType:
            folder = self.root / element_type.folder
            if not folder.is_dir():
                continue
            # one element per name; the first suffix in ELEMENT_SUFFIXES wins, as in path_for
            chosen: dict[str, Path] = {}
            for path in sorted(folder.iterdir(), key=_suffix_rank):
                if path.name.startswith(".") or path.suffix.lower() not in ELEMENT_SUFFIXES:
                    continue
                if not path.is_file():
                    continue
                if path.stem in chosen:
                    logger.warning(
                        "Ignoring %s: element %s is already defined by %s",
                        path,
                        format_element_id(element_type.value, path.stem),
                        chosen[path.stem].name,
                    )
                    continue
                chosen[path.stem] = path
            for name, path in chosen.items():
                try:
                    modified = path.stat().st_mtime
                except FileNotFoundError:
                    continue
                refs.append(ElementRef(type=element_type.value, name=name, modified=modified))
        refs.sort(key=lambda r: r.id)
        return refs

    def path_for(self, element_id: str) -> Path:
        try:
            element_type, name = parse_element_id(element_id)
        except ValueError as e:
            raise ElementReadError(element_id, str(e)) from None
        try:
            folder = self.root / ElementType(element_type).folder
        except ValueError:
            raise ElementReadError(element_id, f"unknown element type {element_type!r}") from None
        for suffix in ELEMENT_SUFFIXES:
            candidate = folder / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
        raise ElementReadError(element_id, "no such element")

    def read_content(self, element_id: str) -> str:
        path = self.path_for(element_id)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ElementReadError(element_id, str(e)) from e

        if path.suffix.lower() == ".md":
            return _markdown_text(text, element_id)
        return _yaml_text(text, element_id)


def _markdown_text(text: str, element_id: str) -> str:
    """Frontmatter name/description/keywords/tags/triggers followed by the body."""
    fm_match = _FRONTMATTER.match(text)
    if not fm_match:
        return text

    parts: list[str] = []
    try:
        fm = yaml.safe_load(fm_match.group(1)) or {}
    except yaml.YAMLError as e:
        logger.warning("Ignoring malformed frontmatter in %s: %s", element_id, e)
        fm = {}
    if isinstance(fm, dict):
        for key in FRONTMATTER_FIELDS:
            parts.extend(_strings(fm.get(key)))
    parts.append(text[fm_match.end():])
    return "\n".join(p for p in parts if p)


def _yaml_text(text: str, element_id: str) -> str:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ElementReadError(element_id, f"invalid YAML: {e}") from e
    return "\n".join(_strings(data))


def _strings(value: Any) -> list[str]:
    """Flatten every string (and scalar) found in a YAML value."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        out = []
        for v in value.values():
            out.extend(_strings(v))
        return out
    if isinstance(value, (list, tuple)):
        out = []
        for v in value:
            out.extend(_strings(v))
        return out
    return [str(value)]


def _suffix_rank(path: Path) -> tuple[str, int]:
    suffix = path.suffix.lower()
    rank = ELEMENT_SUFFIXES.index(suffix) if suffix in ELEMENT_SUFFIXES else len(ELEMENT_SUFFIXES)
    return (path.stem, rank)
