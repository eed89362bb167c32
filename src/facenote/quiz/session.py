"""Quiz session state and the transitions that drive it.

A session holds a snapshot of the filtered roster and the ids already asked.
Every function here works only on the session it is given and takes its
random source explicitly, so tests can replay a session with a seeded RNG.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Literal

from facenote.imaging import placeholder_image
from facenote.models import MemorizationState, Person, QuizMode, QuizSettings

OPTION_COUNT = 4
PLACEHOLDER_PREFIX = "placeholder-"
PLACEHOLDER_NAMES = ("Taro Sato", "Hanako Suzuki", "Ken Takahashi", "Misaki Tanaka")

QuizPhase = Literal["idle", "questioning", "answered", "complete"]


@dataclass(frozen=True)
class QuizQuestion:
    """One question: the person asked about and four options in display order."""

    target: Person
    options: tuple[Person, ...]
    mode: QuizMode

    @property
    def correct_id(self) -> str:
        return self.target.id


@dataclass(frozen=True)
class AnswerResult:
    """Outcome of answering the current question."""

    question: QuizQuestion
    chosen_id: str
    correct: bool
    state: MemorizationState
    streak: int


@dataclass
class QuizSession:
    settings: QuizSettings
    snapshot: list[Person] = field(default_factory=list)
    answered_ids: set[str] = field(default_factory=set)
    current: QuizQuestion | None = None
    chosen_id: str | None = None
    complete: bool = False

    @property
    def phase(self) -> QuizPhase:
        if self.complete:
            return "complete"
        if self.current is None:
            return "idle"
        if self.chosen_id is None:
            return "questioning"
        return "answered"


def is_placeholder(person_id: str) -> bool:
    return person_id.startswith(PLACEHOLDER_PREFIX)


def make_placeholder(index: int, now: datetime | None = None) -> Person:
    now = now or datetime.now()
    return Person(
        id=f"{PLACEHOLDER_PREFIX}{index}",
        name=PLACEHOLDER_NAMES[index % len(PLACEHOLDER_NAMES)],
        photo=placeholder_image(150, 150),
        group="",
        memo="",
        state="untried",
        streak=0,
        created_at=now,
        updated_at=now,
    )


def remaining_pool(session: QuizSession) -> list[Person]:
    return [p for p in session.snapshot if p.id not in session.answered_ids]


def build_options(target: Person, snapshot: list[Person], rng: random.Random) -> list[Person]:
    """Target plus decoys from the whole snapshot, padded with placeholders, shuffled."""
    others = [p for p in snapshot if p.id != target.id]
    decoys = rng.sample(others, min(len(others), OPTION_COUNT - 1))
    options = [target, *decoys]
    needed = OPTION_COUNT - len(options)
    options += [make_placeholder(i) for i in range(needed)]
    options = options[:OPTION_COUNT]
    rng.shuffle(options)
    return options


def next_question(session: QuizSession, rng: random.Random) -> QuizQuestion | None:
    """Ask someone not yet asked this session, or mark the session complete."""
    session.chosen_id = None
    pool = remaining_pool(session)
    if not pool:
        session.current = None
        session.complete = True
        return None
    target = rng.choice(pool)
    session.current = QuizQuestion(
        target=target,
        options=tuple(build_options(target, session.snapshot, rng)),
        mode=session.settings.mode,
    )
    return session.current


def promote(state: MemorizationState, streak: int, threshold: int | None) -> MemorizationState:
    """State after a correct answer brought the run to ``streak``.

    A memorized person whose run restarted drops back to ``learning`` until
    the run reaches the threshold again.
    """
    if threshold is None:
        return state
    if streak >= threshold:
        return "memorized"
    if streak >= 1:
        return "learning"
    return state


def answer(session: QuizSession, chosen_id: str) -> AnswerResult | None:
    """Score ``chosen_id`` against the current question. Ignored once answered."""
    question = session.current
    if question is None or session.chosen_id is not None:
        return None

    target = question.target
    session.chosen_id = chosen_id
    session.answered_ids.add(target.id)

    if chosen_id != target.id:
        return AnswerResult(question, chosen_id, False, target.state, target.streak)

    streak = target.streak + 1
    state = promote(target.state, streak, session.settings.threshold)
    session.snapshot = [
        replace(p, state=state, streak=streak) if p.id == target.id else p
        for p in session.snapshot
    ]
    return AnswerResult(question, chosen_id, True, state, streak)
