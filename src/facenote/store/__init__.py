"""Local persistent store for people, group counts and quiz settings."""

from facenote.store.people import PeopleStore

__all__ = ["PeopleStore"]
