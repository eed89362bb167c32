"""QuizEngine: drives one quiz session against the people store.

Loading -> questioning -> answered -> questioning ... -> complete.
Correct answers are written back through the store in the background; the
session moves on without waiting for the write.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING

from facenote.models import QuizSettings, QuizTarget
from facenote.quiz.session import (
    AnswerResult,
    QuizPhase,
    QuizQuestion,
    QuizSession,
    answer,
    next_question,
)

if TYPE_CHECKING:
    from facenote.models import Person
    from facenote.store.people import PeopleStore

logger = logging.getLogger(__name__)


class QuizEngine:
    """Stateful quiz session over a filtered snapshot of the roster."""

    def __init__(
        self,
        store: PeopleStore,
        *,
        rng: random.Random | None = None,
        target: QuizTarget = "all",
        group: str | None = None,
    ) -> None:
        self._store = store
        self._rng = rng or random.Random()
        self._session = QuizSession(settings=QuizSettings(target=target, group=group))
        self._last_result: AnswerResult | None = None
        self._pending: set[asyncio.Task] = set()
        self._failures: list[BaseException] = []

    # ── State ─────────────────────────────────────────────────

    @property
    def phase(self) -> QuizPhase:
        return self._session.phase

    @property
    def settings(self) -> QuizSettings:
        return self._session.settings

    @property
    def current_question(self) -> QuizQuestion | None:
        return self._session.current

    @property
    def last_result(self) -> AnswerResult | None:
        return self._last_result

    @property
    def is_complete(self) -> bool:
        return self._session.complete

    @property
    def answered_count(self) -> int:
        return len(self._session.answered_ids)

    @property
    def total(self) -> int:
        return len(self._session.snapshot)

    # ── Loading ───────────────────────────────────────────────

    async def _fetch(self, settings: QuizSettings) -> list[Person]:
        return await self._store.list_people(
            group=settings.group,
            exclude_memorized=settings.target == "unmemorized",
        )

    def _reset(self, settings: QuizSettings, snapshot: list[Person]) -> QuizQuestion | None:
        self._session = QuizSession(settings=settings, snapshot=snapshot)
        self._last_result = None
        logger.info(
            "Quiz session started (mode=%s, auto_promotion=%s, %d people)",
            settings.mode,
            settings.auto_promotion,
            len(snapshot),
        )
        return next_question(self._session, self._rng)

    async def _settle(self) -> None:
        """Let scheduled progress writes land before the roster is re-read.

        Failures stay queued for ``drain()``.
        """
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def start(self) -> QuizQuestion | None:
        """Load saved settings and the filtered roster, then ask the first question."""
        await self._settle()
        filters = self._session.settings
        settings, snapshot = await asyncio.gather(
            self._store.load_quiz_settings(),
            self._fetch(filters),
        )
        # Saved settings carry no filters; the session keeps its own
        settings.target = filters.target
        settings.group = filters.group
        return self._reset(settings, snapshot)

    async def apply_settings(self, settings: QuizSettings) -> QuizQuestion | None:
        """Save new settings and restart the session under them."""
        await self._settle()
        await self._store.save_quiz_settings(settings)
        snapshot = await self._fetch(settings)
        return self._reset(settings, snapshot)

    # ── Answering ─────────────────────────────────────────────

    def select_answer(self, person_id: str) -> AnswerResult | None:
        """Score the current question. Returns None if there is nothing to answer."""
        result = answer(self._session, person_id)
        if result is None:
            return None
        self._last_result = result
        if result.correct:
            self._schedule_write(result)
        logger.debug(
            "Answered %s: %s",
            result.question.correct_id,
            "correct" if result.correct else "wrong",
        )
        return result

    def advance(self) -> QuizQuestion | None:
        """Move to the next question; None once everyone has been asked."""
        if self._session.phase == "questioning":
            return self._session.current
        if self._session.phase in ("idle", "complete"):
            return None
        question = next_question(self._session, self._rng)
        if question is None:
            logger.info("Quiz session complete (%d answered)", self.answered_count)
        return question

    # ── Background writes ─────────────────────────────────────

    def _schedule_write(self, result: AnswerResult) -> None:
        task = asyncio.get_running_loop().create_task(
            self._store.update_memorization_state(
                result.question.correct_id,
                result.state,
                result.streak,
            )
        )
        self._pending.add(task)
        task.add_done_callback(self._on_write_done)

    def _on_write_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._failures.append(exc)
            logger.error("Failed to save quiz progress: %s", exc)

    async def drain(self) -> None:
        """Wait for outstanding progress writes; re-raise the first failure."""
        await self._settle()
        if self._failures:
            failure = self._failures[0]
            self._failures.clear()
            raise failure
