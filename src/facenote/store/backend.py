"""Durable document substrate: one YAML-frontmatter markdown file per document.

Layout:
    <root>/
    ├── VERSION                 # schema version (additive upgrades only)
    ├── .journal.json           # present only while a commit is being applied
    ├── people/<id>.md          # frontmatter fields, memo as the markdown body
    ├── groupCounts/<group>.md
    └── quizSettings/current.md

A commit stages every write into a temp file, records the pending renames in
the journal, then applies them. A crash mid-apply is rolled forward by
``recover()``; an error mid-apply restores the original files.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union
from urllib.parse import quote, unquote

import frontmatter
import yaml

from facenote.errors import NotPersistedError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_JOURNAL = ".journal.json"
_SUFFIX = ".md"
_TMP_SUFFIX = ".tmp"


@dataclass(frozen=True)
class Put:
    collection: str
    key: str
    doc: dict


@dataclass(frozen=True)
class Delete:
    collection: str
    key: str


@dataclass(frozen=True)
class Clear:
    collection: str


Op = Union[Put, Delete, Clear]


class DocumentBackend:
    """Keyed document collections on the local filesystem. Synchronous; callers offload I/O."""

    def __init__(self, root: Path, collections: dict[str, str | None]) -> None:
        self.root = root
        # collection name -> field stored as the markdown body (or None)
        self._collections = dict(collections)

    # ── Initialization & recovery ─────────────────────────────

    def ensure_initialized(self) -> None:
        """Create directories and the VERSION marker. Idempotent."""
        for name in self._collections:
            (self.root / name).mkdir(parents=True, exist_ok=True)

        version_file = self.root / "VERSION"
        if not version_file.exists():
            version_file.write_text(f"{SCHEMA_VERSION}\n", encoding="utf-8")
            return
        try:
            found = int(version_file.read_text(encoding="utf-8").strip())
        except ValueError:
            found = 0
        if found < SCHEMA_VERSION:
            # Additive upgrades: new collections are created above, rows are not rewritten.
            logger.info("Upgrading store schema %d -> %d", found, SCHEMA_VERSION)
            version_file.write_text(f"{SCHEMA_VERSION}\n", encoding="utf-8")

    def recover(self) -> bool:
        """Finish a commit interrupted by a crash. Returns True if one was rolled forward."""
        journal = self.root / _JOURNAL
        recovered = False
        if journal.exists():
            try:
                entries = json.loads(journal.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning("Discarding unreadable commit journal %s", journal)
                entries = []
            for entry in entries:
                path = self.root / entry["path"]
                tmp = self.root / entry["tmp"] if entry.get("tmp") else None
                if tmp is None:
                    path.unlink(missing_ok=True)
                elif tmp.exists():
                    os.replace(tmp, path)
            journal.unlink()
            recovered = bool(entries)
            if recovered:
                logger.warning("Rolled forward interrupted commit (%d writes)", len(entries))

        (self.root / (_JOURNAL + _TMP_SUFFIX)).unlink(missing_ok=True)
        # Temp files without a journal belong to commits that never started applying
        for name in self._collections:
            for stray in (self.root / name).glob(f"*{_TMP_SUFFIX}"):
                stray.unlink()
        return recovered

    # ── Paths & serialization ─────────────────────────────────

    def _path(self, collection: str, key: str) -> Path:
        if collection not in self._collections:
            raise KeyError(f"Unknown collection: {collection}")
        name = quote(key, safe="")
        if name.startswith("."):
            name = "%2E" + name[1:]
        return self.root / collection / f"{name}{_SUFFIX}"

    def _render(self, collection: str, doc: dict) -> str:
        meta = dict(doc)
        body_field = self._collections[collection]
        body = meta.pop(body_field, None) if body_field else None
        if body and body != body.strip():
            # frontmatter strips the body on load; keep such text in the metadata
            meta[body_field] = body
            body = None
        post = frontmatter.Post(body or "", **meta)
        return frontmatter.dumps(post, sort_keys=False) + "\n"

    def _parse(self, collection: str, path: Path) -> dict | None:
        try:
            post = frontmatter.loads(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, ValueError) as e:
            logger.warning("Skipping malformed document %s: %s", path, e)
            return None
        doc = dict(post.metadata)
        body_field = self._collections[collection]
        if body_field and body_field not in doc:
            doc[body_field] = post.content or None
        return doc

    # ── Reads ─────────────────────────────────────────────────

    def read_all(self, collection: str) -> dict[str, dict]:
        """Return every document in a collection, keyed by document key."""
        directory = self.root / collection
        docs: dict[str, dict] = {}
        if not directory.is_dir():
            return docs
        for path in sorted(directory.glob(f"*{_SUFFIX}")):
            doc = self._parse(collection, path)
            if doc is not None:
                docs[unquote(path.name[: -len(_SUFFIX)])] = doc
        return docs

    def read(self, collection: str, key: str) -> dict | None:
        path = self._path(collection, key)
        if not path.exists():
            return None
        return self._parse(collection, path)

    # ── Writes ────────────────────────────────────────────────

    def _plan(self, ops: list[Op]) -> dict[Path, str | None]:
        """Resolve ops to final file contents; None means delete. Later ops win."""
        plan: dict[Path, str | None] = {}
        for op in ops:
            if isinstance(op, Put):
                plan[self._path(op.collection, op.key)] = self._render(op.collection, op.doc)
            elif isinstance(op, Delete):
                plan[self._path(op.collection, op.key)] = None
            elif isinstance(op, Clear):
                if op.collection not in self._collections:
                    raise KeyError(f"Unknown collection: {op.collection}")
                for path in (self.root / op.collection).glob(f"*{_SUFFIX}"):
                    plan[path] = None
            else:
                raise TypeError(f"Unknown op: {op!r}")
        return plan

    def commit(self, ops: list[Op]) -> None:
        """Apply all ops or none of them. Raises NotPersistedError on failure."""
        plan = self._plan(ops)
        if not plan:
            return

        staged: list[tuple[Path, Path | None]] = []
        try:
            for path, text in plan.items():
                if text is None:
                    staged.append((path, None))
                    continue
                tmp = path.with_name(path.name + _TMP_SUFFIX)
                tmp.write_text(text, encoding="utf-8")
                staged.append((path, tmp))
            originals = {path: path.read_bytes() if path.exists() else None for path, _ in staged}
            self._write_journal(staged)
        except OSError as e:
            self._discard(staged)
            raise NotPersistedError(f"Could not stage write under {self.root}: {e}") from e

        try:
            for path, tmp in staged:
                if tmp is None:
                    path.unlink(missing_ok=True)
                else:
                    os.replace(tmp, path)
        except OSError as e:
            self._restore(originals)
            self._discard(staged)
            (self.root / _JOURNAL).unlink(missing_ok=True)
            raise NotPersistedError(f"Could not apply write under {self.root}: {e}") from e

        (self.root / _JOURNAL).unlink(missing_ok=True)

    def _write_journal(self, staged: list[tuple[Path, Path | None]]) -> None:
        entries = [
            {
                "path": str(path.relative_to(self.root)),
                "tmp": str(tmp.relative_to(self.root)) if tmp else None,
            }
            for path, tmp in staged
        ]
        journal = self.root / _JOURNAL
        tmp_journal = journal.with_name(journal.name + _TMP_SUFFIX)
        tmp_journal.write_text(json.dumps(entries, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_journal, journal)

    def _discard(self, staged: list[tuple[Path, Path | None]]) -> None:
        for _, tmp in staged:
            if tmp is not None:
                try:
                    tmp.unlink(missing_ok=True)
                except OSError as e:
                    logger.error("Failed to remove staged file %s: %s", tmp, e)

    def _restore(self, originals: dict[Path, bytes | None]) -> None:
        for path, content in originals.items():
            try:
                if content is None:
                    path.unlink(missing_ok=True)
                else:
                    path.write_bytes(content)
            except OSError as e:
                logger.error("Failed to restore %s after aborted commit: %s", path, e)
