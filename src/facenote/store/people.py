"""People store: Person records plus the denormalized group-count index.

Both collections are written by the same commit, so a caller never observes
a person whose group is missing from (or miscounted in) ``groupCounts``.
Records are loaded once into an in-memory index when the store opens and
updated after every successful commit; reads never touch the disk.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from collections import Counter
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable

from facenote.errors import NotFoundError, NotPersistedError
from facenote.models import (
    MEMORIZATION_STATES,
    MemorizationState,
    Person,
    PersonDraft,
    QuizSettings,
    normalize_group,
)
from facenote.store.backend import Clear, Delete, DocumentBackend, Op, Put

logger = logging.getLogger(__name__)

PEOPLE = "people"
GROUP_COUNTS = "groupCounts"
QUIZ_SETTINGS = "quizSettings"

_SETTINGS_KEY = "current"
_UPDATABLE_FIELDS = frozenset({"name", "group", "memo", "photo", "state", "streak"})


def _new_id() -> str:
    return str(uuid.uuid4())


def _parse_timestamp(value) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return None


def _person_to_doc(person: Person) -> dict:
    return {
        "id": person.id,
        "name": person.name,
        "group": person.group,
        "state": person.state,
        "streak": person.streak,
        "created_at": person.created_at.isoformat(),
        "updated_at": person.updated_at.isoformat(),
        "photo": person.photo,
        "memo": person.memo,
    }


def _person_from_doc(key: str, doc: dict) -> Person | None:
    created_at = _parse_timestamp(doc.get("created_at"))
    if created_at is None:
        logger.warning("Skipping person %s without created_at", key)
        return None
    state = doc.get("state", "untried")
    if state not in MEMORIZATION_STATES:
        state = "untried"
    return Person(
        id=str(doc.get("id") or key),
        name=str(doc.get("name", "")),
        photo=doc.get("photo") or "",
        group=normalize_group(str(doc["group"]) if doc.get("group") is not None else None),
        memo=doc.get("memo") or None,
        state=state,
        streak=max(0, int(doc.get("streak", 0) or 0)),
        created_at=created_at,
        updated_at=_parse_timestamp(doc.get("updated_at")) or created_at,
    )


def _count_groups(people: Iterable[Person]) -> dict[str, int]:
    return dict(Counter(p.group for p in people if p.group))


def _check_state(state: str) -> None:
    if state not in MEMORIZATION_STATES:
        raise ValueError(f"Invalid memorization state: {state!r}")


def _check_streak(streak: int) -> None:
    if streak < 0:
        raise ValueError(f"Streak must be non-negative, got {streak}")


class PeopleStore:
    """Durable roster with group counts and quiz settings."""

    def __init__(
        self,
        root: Path,
        *,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
        default_settings: QuizSettings | None = None,
    ) -> None:
        self.root = root
        self._backend = DocumentBackend(
            root,
            {PEOPLE: "memo", GROUP_COUNTS: None, QUIZ_SETTINGS: None},
        )
        self._clock = clock or datetime.now
        self._id_factory = id_factory or _new_id
        self._default_settings = default_settings or QuizSettings()
        self._people: dict[str, Person] = {}
        self._groups: dict[str, int] = {}
        self._settings_doc: dict | None = None
        self._opened = False
        self._open_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()  # serializes mutations

    # ── Opening ───────────────────────────────────────────────

    async def _run(self, func, *args):
        """Run blocking substrate I/O in the default executor."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args))
        except OSError as e:
            raise NotPersistedError(f"Store unavailable at {self.root}: {e}") from e

    async def open(self) -> None:
        """Initialize directories, recover interrupted commits, load records. Idempotent."""
        if self._opened:
            return
        async with self._open_lock:
            if self._opened:
                return
            await self._run(self._load)
            self._opened = True
            logger.info("Opened people store at %s (%d people)", self.root, len(self._people))

    def _load(self) -> None:
        self._backend.ensure_initialized()
        self._backend.recover()

        people: dict[str, Person] = {}
        for key, doc in self._backend.read_all(PEOPLE).items():
            person = _person_from_doc(key, doc)
            if person is not None:
                people[person.id] = person

        stored = {
            key: int(doc.get("count", 0) or 0)
            for key, doc in self._backend.read_all(GROUP_COUNTS).items()
        }
        expected = _count_groups(people.values())
        if stored != expected:
            logger.warning(
                "Group index out of sync with people (%d rows, expected %d); rewriting",
                len(stored),
                len(expected),
            )
            ops: list[Op] = [Clear(GROUP_COUNTS)]
            ops += [Put(GROUP_COUNTS, g, {"group": g, "count": c}) for g, c in expected.items()]
            self._backend.commit(ops)

        self._people = people
        self._groups = expected
        self._settings_doc = self._backend.read(QUIZ_SETTINGS, _SETTINGS_KEY)

    # ── Internal helpers ──────────────────────────────────────

    def _require(self, person_id: str) -> Person:
        person = self._people.get(person_id)
        if person is None:
            raise NotFoundError(person_id)
        return person

    def _group_ops(self, before: str | None, after: str | None) -> tuple[list[Op], dict[str, int]]:
        """Index writes for a person moving from group ``before`` to ``after``."""
        counts = dict(self._groups)
        ops: list[Op] = []
        if before == after:
            return ops, counts
        if before:
            remaining = counts.get(before, 0) - 1
            if remaining <= 0:
                counts.pop(before, None)
                ops.append(Delete(GROUP_COUNTS, before))
            else:
                counts[before] = remaining
                ops.append(Put(GROUP_COUNTS, before, {"group": before, "count": remaining}))
        if after:
            counts[after] = counts.get(after, 0) + 1
            ops.append(Put(GROUP_COUNTS, after, {"group": after, "count": counts[after]}))
        return ops, counts

    async def _commit(self, ops: list[Op]) -> None:
        await self._run(self._backend.commit, ops)

    # ── Person CRUD ───────────────────────────────────────────

    async def create_person(self, draft: PersonDraft) -> str:
        """Register a new person as ``untried`` with streak 0. Returns the new id."""
        await self.open()
        async with self._write_lock:
            now = self._clock()
            person = Person(
                id=self._id_factory(),
                name=draft.name,
                photo=draft.photo or "",
                group=normalize_group(draft.group),
                memo=draft.memo or None,
                created_at=now,
                updated_at=now,
            )
            if person.id in self._people:
                raise NotPersistedError(f"Duplicate person id rejected: {person.id}")
            ops, counts = self._group_ops(None, person.group)
            await self._commit([Put(PEOPLE, person.id, _person_to_doc(person)), *ops])
            self._people[person.id] = person
            self._groups = counts
        logger.info("Created person %s (%s)", person.id, person.name)
        return person.id

    async def update_person(self, person_id: str, **changes) -> Person:
        """Merge ``changes`` onto a person. Moving between groups adjusts both counts."""
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        if "group" in changes:
            changes["group"] = normalize_group(changes["group"])
        if "memo" in changes:
            changes["memo"] = changes["memo"] or None
        if "photo" in changes:
            changes["photo"] = changes["photo"] or ""
        if "state" in changes:
            _check_state(changes["state"])
        if "streak" in changes:
            _check_streak(changes["streak"])

        await self.open()
        async with self._write_lock:
            current = self._require(person_id)
            updated = replace(current, **changes, updated_at=self._clock())
            ops, counts = self._group_ops(current.group, updated.group)
            await self._commit([Put(PEOPLE, person_id, _person_to_doc(updated)), *ops])
            self._people[person_id] = updated
            self._groups = counts
        logger.info("Updated person %s (%s)", person_id, ", ".join(sorted(changes)))
        return updated

    async def update_memorization_state(
        self,
        person_id: str,
        state: MemorizationState,
        streak: int | None = None,
    ) -> Person:
        """Write quiz progress only. ``streak=None`` keeps the stored value."""
        _check_state(state)
        if streak is not None:
            _check_streak(streak)

        await self.open()
        async with self._write_lock:
            current = self._require(person_id)
            updated = replace(
                current,
                state=state,
                streak=current.streak if streak is None else streak,
                updated_at=self._clock(),
            )
            await self._commit([Put(PEOPLE, person_id, _person_to_doc(updated))])
            self._people[person_id] = updated
        logger.debug("Person %s -> %s (streak=%d)", person_id, updated.state, updated.streak)
        return updated

    async def delete_person(self, person_id: str) -> None:
        """Remove a person and release its group count."""
        await self.open()
        async with self._write_lock:
            current = self._require(person_id)
            ops, counts = self._group_ops(current.group, None)
            await self._commit([Delete(PEOPLE, person_id), *ops])
            del self._people[person_id]
            self._groups = counts
        logger.info("Deleted person %s (%s)", person_id, current.name)

    async def get_person(self, person_id: str) -> Person:
        await self.open()
        return self._require(person_id)

    # ── Queries ───────────────────────────────────────────────

    async def list_people(
        self,
        group: str | None = None,
        exclude_memorized: bool = False,
    ) -> list[Person]:
        """Snapshot of matching people, newest first."""
        await self.open()
        group = normalize_group(group)
        people = [
            p
            for p in self._people.values()
            if (group is None or p.group == group) and not (exclude_memorized and p.is_memorized)
        ]
        people.sort(key=lambda p: (p.created_at, p.id), reverse=True)
        return people

    async def count_all(self) -> int:
        await self.open()
        return len(self._people)

    async def count_unmemorized(self) -> int:
        await self.open()
        return sum(1 for p in self._people.values() if not p.is_memorized)

    async def list_top_groups(self, limit: int = 10) -> list[str]:
        """Group names by member count (desc), then name (asc)."""
        await self.open()
        if limit <= 0:
            return []
        ranked = sorted(self._groups.items(), key=lambda item: (-item[1], item[0]))
        return [name for name, _ in ranked[:limit]]

    async def group_counts(self) -> dict[str, int]:
        await self.open()
        return dict(self._groups)

    # ── Quiz settings ─────────────────────────────────────────

    async def save_quiz_settings(self, settings: QuizSettings) -> None:
        """Persist mode and auto-promotion; session filters are not stored."""
        doc = {"mode": settings.mode, "auto_promotion": settings.auto_promotion}
        await self.open()
        async with self._write_lock:
            await self._commit([Put(QUIZ_SETTINGS, _SETTINGS_KEY, doc)])
            self._settings_doc = doc
        logger.info("Saved quiz settings (mode=%s, auto_promotion=%s)", settings.mode, settings.auto_promotion)

    async def load_quiz_settings(self) -> QuizSettings:
        await self.open()
        default = self._default_settings
        if self._settings_doc is None:
            return QuizSettings(mode=default.mode, auto_promotion=default.auto_promotion)
        try:
            return QuizSettings(
                mode=self._settings_doc.get("mode", default.mode),
                auto_promotion=self._settings_doc.get("auto_promotion", default.auto_promotion),
            )
        except ValueError as e:
            logger.warning("Ignoring invalid stored quiz settings: %s", e)
            return QuizSettings(mode=default.mode, auto_promotion=default.auto_promotion)

    # ── Reset ─────────────────────────────────────────────────

    async def clear_all(self) -> None:
        """Delete every person, group count and saved setting."""
        await self.open()
        async with self._write_lock:
            await self._commit([Clear(PEOPLE), Clear(GROUP_COUNTS), Clear(QUIZ_SETTINGS)])
            removed = len(self._people)
            self._people = {}
            self._groups = {}
            self._settings_doc = None
        logger.info("Cleared store (%d people removed)", removed)
