"""Plain data shared by the store and the quiz engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, get_args

MemorizationState = Literal["untried", "learning", "memorized"]
QuizMode = Literal["face-to-name", "name-to-face"]
QuizTarget = Literal["all", "unmemorized"]

MEMORIZATION_STATES: tuple[str, ...] = get_args(MemorizationState)
QUIZ_MODES: tuple[str, ...] = get_args(QuizMode)
QUIZ_TARGETS: tuple[str, ...] = get_args(QuizTarget)
AUTO_PROMOTION_CHOICES = ("off", "2", "3", "4")


def normalize_group(group: str | None) -> str | None:
    """Blank group labels mean "no group"."""
    if group is None:
        return None
    group = group.strip()
    return group or None


@dataclass(frozen=True)
class Person:
    """A registered person. Instances are snapshots; the store hands out copies."""

    id: str
    name: str
    photo: str
    created_at: datetime
    updated_at: datetime
    group: str | None = None
    memo: str | None = None
    state: MemorizationState = "untried"
    streak: int = 0

    @property
    def is_memorized(self) -> bool:
        return self.state == "memorized"


@dataclass(frozen=True)
class PersonDraft:
    """Fields supplied when registering a person."""

    name: str
    photo: str
    group: str | None = None
    memo: str | None = None


@dataclass
class QuizSettings:
    """Quiz parameters. ``target`` and ``group`` only scope the current session."""

    mode: QuizMode = "face-to-name"
    auto_promotion: str = "off"
    target: QuizTarget = "all"
    group: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.auto_promotion, int):
            self.auto_promotion = str(self.auto_promotion)
        if self.auto_promotion not in AUTO_PROMOTION_CHOICES:
            raise ValueError(f"Invalid auto_promotion: {self.auto_promotion!r}")
        if self.mode not in QUIZ_MODES:
            raise ValueError(f"Invalid quiz mode: {self.mode!r}")
        if self.target not in QUIZ_TARGETS:
            raise ValueError(f"Invalid quiz target: {self.target!r}")
        self.group = normalize_group(self.group)

    @property
    def threshold(self) -> int | None:
        """Consecutive correct answers needed to reach ``memorized``, or None when off."""
        if self.auto_promotion == "off":
            return None
        return int(self.auto_promotion)


@dataclass
class Overview:
    """Everything the home screen shows in one read."""

    people: list[Person] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)
    total: int = 0
    unmemorized: int = 0

    @property
    def first_launch(self) -> bool:
        return self.total == 0
