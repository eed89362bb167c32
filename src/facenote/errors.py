"""Error taxonomy shared by the store, the quiz engine and the hub."""

from __future__ import annotations


class FaceNoteError(Exception):
    """Base class for all FaceNote errors."""


class NotFoundError(FaceNoteError, KeyError):
    """An operation referenced a person id that does not exist."""

    def __init__(self, person_id: str) -> None:
        super().__init__(person_id)
        self.person_id = person_id

    def __str__(self) -> str:
        return f"Person not found: {self.person_id}"


class NotPersistedError(FaceNoteError):
    """The durable substrate was unavailable or rejected a write."""


class ImageDecodeError(FaceNoteError, ValueError):
    """The image pipeline could not read the given image."""


class ValidationError(FaceNoteError, ValueError):
    """Form input rejected before it reaches the store."""
