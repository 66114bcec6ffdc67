# ingest/policy_loader.py
"""
Policy document loader.

Reads one policy per file from a folder. Supported formats are plain text,
markdown with optional YAML front matter, JSON, YAML and PDF.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import yaml

from policies.exceptions import ConflictError, LoadError
from policies.models import LoadWarning, Policy
from .pdf_loader import load_pdf_text

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".txt", ".md", ".json", ".yaml", ".yml", ".pdf")

_FRONT_MATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_RESERVED_FIELDS = {"id", "title", "body", "text"}


class PolicyParseError(Exception):
    """A single policy file could not be turned into a Policy."""
    pass


def normalize_identifier(raw: str) -> str:
    """Lowercase, collapse runs of non-alphanumerics to '-', trim dashes."""
    return _NON_ALNUM.sub("-", raw.strip().lower()).strip("-")


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise PolicyParseError(f"not valid UTF-8 text ({e.reason})") from e
    except OSError as e:
        raise PolicyParseError(f"unreadable ({e.strerror or e})") from e


def _fields_from_mapping(data: Any) -> Tuple[Optional[Any], Optional[str], str, Dict[str, Any]]:
    if not isinstance(data, dict):
        raise PolicyParseError("expected an object with a 'body' field")

    body = data.get("body", data.get("text"))
    if not isinstance(body, str) or not body.strip():
        raise PolicyParseError("missing or empty 'body'")

    title = data.get("title")
    if title is not None and not isinstance(title, str):
        raise PolicyParseError("'title' must be a string")

    metadata = {k: v for k, v in data.items() if k not in _RESERVED_FIELDS}
    return data.get("id"), title, body.strip(), metadata


def _parse_text(path: Path):
    text = _read_text(path).strip()
    if not text:
        raise PolicyParseError("empty document")
    title = next(line.strip() for line in text.splitlines() if line.strip())
    return None, title, text, {}


def _parse_markdown(path: Path):
    text = _read_text(path)
    front: Dict[str, Any] = {}

    match = _FRONT_MATTER.match(text)
    if match:
        try:
            loaded = yaml.safe_load(match.group(1)) or {}
        except yaml.YAMLError as e:
            raise PolicyParseError(f"malformed front matter: {e}") from e
        if not isinstance(loaded, dict):
            raise PolicyParseError("front matter must be a mapping")
        front = loaded
        text = text[match.end():]

    body = text.strip()
    if not body:
        raise PolicyParseError("empty document")

    title = front.get("title")
    if title is None:
        heading = next((line[2:].strip() for line in body.splitlines() if line.startswith("# ")), None)
        title = heading or path.stem
    elif not isinstance(title, str):
        raise PolicyParseError("'title' must be a string")

    metadata = {k: v for k, v in front.items() if k not in _RESERVED_FIELDS}
    return front.get("id"), title, body, metadata


def _parse_json(path: Path):
    try:
        data = json.loads(_read_text(path))
    except json.JSONDecodeError as e:
        raise PolicyParseError(f"malformed JSON: {e}") from e
    return _fields_from_mapping(data)


def _parse_yaml(path: Path):
    try:
        data = yaml.safe_load(_read_text(path))
    except yaml.YAMLError as e:
        raise PolicyParseError(f"malformed YAML: {e}") from e
    return _fields_from_mapping(data)


def _parse_pdf(path: Path):
    try:
        text = load_pdf_text(str(path))
    except Exception as e:
        raise PolicyParseError(f"unreadable PDF: {e}") from e
    if not text.strip():
        raise PolicyParseError("PDF contains no extractable text")
    return None, path.stem, text.strip(), {}


_PARSERS: Dict[str, Callable[[Path], Tuple[Optional[Any], Optional[str], str, Dict[str, Any]]]] = {
    ".txt": _parse_text,
    ".md": _parse_markdown,
    ".json": _parse_json,
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
    ".pdf": _parse_pdf,
}


class PolicyStore:
    """
    Enumerates and parses policy documents from a directory.

    In non-strict mode a file that fails to parse is skipped and recorded in
    ``warnings``; in strict mode the first such file aborts the load.
    Duplicate identifiers always abort the load.
    """

    def __init__(self, strict_parsing: bool = False, extensions: Iterable[str] = DEFAULT_EXTENSIONS):
        self.strict_parsing = strict_parsing
        self.extensions = tuple(e.lower() for e in extensions)
        unsupported = [e for e in self.extensions if e not in _PARSERS]
        if unsupported:
            raise ValueError(f"Unsupported policy file extensions: {unsupported}")
        self.warnings: List[LoadWarning] = []

    def load(self, path: str) -> List[Policy]:
        """
        Load every policy document in ``path``.

        Raises:
            LoadError: If the folder is unreadable, a file fails in strict mode,
                or no valid documents are found
            ConflictError: If two documents share an identifier
        """
        self.warnings = []
        folder = Path(path)
        if not folder.exists():
            raise LoadError(f"Policy folder does not exist: {folder}")
        if not folder.is_dir():
            raise LoadError(f"Policy path is not a directory: {folder}")

        try:
            entries = sorted(folder.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise LoadError(f"Cannot read policy folder {folder}: {e}") from e

        policies: List[Policy] = []
        sources: Dict[str, str] = {}
        warnings: List[LoadWarning] = []

        for file_path in entries:
            if file_path.name.startswith(".") or not file_path.is_file():
                continue
            suffix = file_path.suffix.lower()
            if suffix not in self.extensions:
                logger.debug(f"Ignoring {file_path.name}: unsupported extension")
                continue

            try:
                policy = self._parse_file(file_path, suffix)
            except PolicyParseError as e:
                if self.strict_parsing:
                    raise LoadError(f"Failed to parse policy file {file_path}: {e}") from e
                warnings.append(LoadWarning(path=str(file_path), reason=str(e)))
                logger.warning(f"Skipping policy file {file_path.name}: {e}")
                continue

            if policy.id in sources:
                raise ConflictError(
                    f'Duplicate policy id "{policy.id}" in {sources[policy.id]} and {file_path}'
                )
            sources[policy.id] = str(file_path)
            policies.append(policy)

        self.warnings = warnings

        if not policies:
            raise LoadError(f"No valid policy documents found in {folder}")

        logger.info(f"Loaded {len(policies)} policies from {folder} "
                    f"({len(warnings)} skipped)")
        return policies

    @staticmethod
    def _parse_file(file_path: Path, suffix: str) -> Policy:
        explicit_id, title, body, metadata = _PARSERS[suffix](file_path)

        if explicit_id is not None:
            if not isinstance(explicit_id, (str, int)) or isinstance(explicit_id, bool):
                raise PolicyParseError("'id' must be a string or integer")
            policy_id = str(explicit_id).strip()
        else:
            policy_id = normalize_identifier(file_path.stem)
        if not policy_id:
            raise PolicyParseError("cannot derive a policy identifier")

        return Policy(
            id=policy_id,
            title=(title or file_path.stem).strip(),
            body=body,
            source_path=str(file_path),
            metadata=metadata,
        )
