"""FaceNote hub: the roster-management surface a UI talks to.

Responsibilities:
1. Form validation: a person needs a name and a photo
2. Photo encoding: raw image -> compact data URL before it reaches the store
3. Home overview: people, top groups and counts in one call
4. Manual memorization changes: resets the streak
5. Quiz construction: a QuizEngine bound to the same store
"""

from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path

from facenote.config import FaceNoteConfig, load_config
from facenote.errors import ValidationError
from facenote.imaging import ImageSource, encode_image
from facenote.models import (
    MemorizationState,
    Overview,
    Person,
    PersonDraft,
    QuizSettings,
    QuizTarget,
)
from facenote.quiz.engine import QuizEngine
from facenote.store.people import PeopleStore

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _require_name(name: str | None) -> str:
    if name is None or not name.strip():
        raise ValidationError("Name is required")
    return name.strip()


class FaceNote:
    """Core facade: wires config, store, photo pipeline and quizzes."""

    def __init__(self, config: FaceNoteConfig, *, store: PeopleStore | None = None) -> None:
        self.config = config
        self.store = store or PeopleStore(
            config.store.data_dir,
            default_settings=QuizSettings(
                mode=config.quiz.mode,
                auto_promotion=config.quiz.auto_promotion,
            ),
        )

    @classmethod
    def open(cls, config_path: Path | None = None) -> FaceNote:
        """Load configuration, set up logging and build the hub."""
        config = load_config(config_path)
        setup_logging(config.log_level)
        return cls(config)

    def _encode(self, image: ImageSource) -> str:
        return encode_image(
            image,
            max_size=self.config.image.max_size,
            quality=self.config.image.quality,
        )

    # ── Roster management ────────────────────────────────────

    async def register(
        self,
        name: str,
        image: ImageSource | None,
        *,
        group: str | None = None,
        memo: str | None = None,
    ) -> str:
        """Validate the form, compress the photo and create the person."""
        name = _require_name(name)
        if not image:
            raise ValidationError("Photo is required")
        photo = self._encode(image)
        return await self.store.create_person(
            PersonDraft(name=name, photo=photo, group=group, memo=memo)
        )

    async def edit(
        self,
        person_id: str,
        *,
        image: ImageSource | None = None,
        **changes,
    ) -> Person:
        """Apply form edits; a new image replaces the stored photo."""
        if "name" in changes:
            changes["name"] = _require_name(changes["name"])
        if image:
            changes["photo"] = self._encode(image)
        return await self.store.update_person(person_id, **changes)

    async def set_memorization(self, person_id: str, state: MemorizationState) -> Person:
        """Manual state change from the roster; the streak starts over."""
        return await self.store.update_memorization_state(person_id, state, 0)

    async def remove(self, person_id: str) -> None:
        await self.store.delete_person(person_id)

    async def overview(
        self,
        *,
        group: str | None = None,
        exclude_memorized: bool = False,
    ) -> Overview:
        """Everything the home screen needs, read concurrently."""
        people, groups, total, unmemorized = await asyncio.gather(
            self.store.list_people(group=group, exclude_memorized=exclude_memorized),
            self.store.list_top_groups(),
            self.store.count_all(),
            self.store.count_unmemorized(),
        )
        return Overview(people=people, groups=groups, total=total, unmemorized=unmemorized)

    # ── Quiz ──────────────────────────────────────────────────

    def quiz(
        self,
        *,
        target: QuizTarget = "all",
        group: str | None = None,
        rng: random.Random | None = None,
    ) -> QuizEngine:
        """A new, not yet started quiz over this store."""
        return QuizEngine(self.store, rng=rng, target=target, group=group)

    # ── Reset ─────────────────────────────────────────────────

    async def reset(self) -> None:
        """Erase all people, group counts and quiz settings."""
        await self.store.clear_all()
        logger.warning("All FaceNote data erased")
