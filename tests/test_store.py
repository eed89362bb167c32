"""Tests for the people store and its group-count index."""

from __future__ import annotations

import random
from collections import Counter
from pathlib import Path
from unittest.mock import patch

import pytest

from facenote.errors import NotFoundError, NotPersistedError
from facenote.models import PersonDraft, QuizSettings
from facenote.store.backend import Put
from facenote.store.people import GROUP_COUNTS, PeopleStore


def draft(name: str, group: str | None = None, memo: str | None = None) -> PersonDraft:
    return PersonDraft(name=name, photo="data:image/jpeg;base64,AAAA", group=group, memo=memo)


async def assert_index_consistent(store: PeopleStore) -> None:
    people = await store.list_people()
    expected = Counter(p.group for p in people if p.group)
    counts = await store.group_counts()
    assert counts == dict(expected)
    assert all(c > 0 for c in counts.values())
    # The persisted rows agree with the in-memory index
    rows = store._backend.read_all(GROUP_COUNTS)
    assert {key: doc["count"] for key, doc in rows.items()} == dict(expected)


class TestCreate:
    @pytest.mark.asyncio
    async def test_initial_fields(self, store: PeopleStore):
        person_id = await store.create_person(draft("Alice", "Sales", "Tall, glasses"))
        person = await store.get_person(person_id)
        assert person.name == "Alice"
        assert person.group == "Sales"
        assert person.memo == "Tall, glasses"
        assert person.state == "untried"
        assert person.streak == 0
        assert person.created_at == person.updated_at

    @pytest.mark.asyncio
    async def test_ids_are_unique_by_default(self, tmp_path: Path):
        store = PeopleStore(tmp_path / "data")
        ids = {await store.create_person(draft(f"P{i}")) for i in range(5)}
        assert len(ids) == 5

    @pytest.mark.asyncio
    async def test_group_count_created_and_incremented(self, store: PeopleStore):
        await store.create_person(draft("Alice", "Sales"))
        assert await store.group_counts() == {"Sales": 1}
        await store.create_person(draft("Bob", "Sales"))
        assert await store.group_counts() == {"Sales": 2}

    @pytest.mark.asyncio
    async def test_blank_group_not_indexed(self, store: PeopleStore):
        person_id = await store.create_person(draft("Alice", "   "))
        assert (await store.get_person(person_id)).group is None
        assert await store.group_counts() == {}

    @pytest.mark.asyncio
    async def test_survives_reopen(self, store: PeopleStore):
        person_id = await store.create_person(draft("Alice", "Sales", "Line one\nLine two"))
        reopened = PeopleStore(store.root)
        person = await reopened.get_person(person_id)
        assert person.name == "Alice"
        assert person.memo == "Line one\nLine two"
        assert person.photo == "data:image/jpeg;base64,AAAA"

    @pytest.mark.asyncio
    async def test_memo_whitespace_survives_reopen(self, store: PeopleStore):
        memo = "met at conf\n\n  - likes tea\n"
        person_id = await store.create_person(draft("Alice", memo=memo))
        live = await store.get_person(person_id)
        reopened = await PeopleStore(store.root).get_person(person_id)
        assert live.memo == reopened.memo == memo

    @pytest.mark.asyncio
    async def test_not_persisted_when_substrate_rejects(self, store: PeopleStore):
        await store.open()
        with patch.object(Path, "write_text", side_effect=PermissionError("read-only")):
            with pytest.raises(NotPersistedError):
                await store.create_person(draft("Alice", "Sales"))
        assert await store.count_all() == 0
        assert await store.group_counts() == {}

    @pytest.mark.asyncio
    async def test_not_persisted_when_root_unusable(self, tmp_path: Path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        store = PeopleStore(blocker / "data")
        with pytest.raises(NotPersistedError):
            await store.create_person(draft("Alice"))


class TestUpdate:
    @pytest.mark.asyncio
    async def test_merges_and_refreshes_updated_at(self, store: PeopleStore):
        person_id = await store.create_person(draft("Alice", "Sales"))
        before = await store.get_person(person_id)
        updated = await store.update_person(person_id, memo="Likes tea")
        assert updated.memo == "Likes tea"
        assert updated.name == "Alice"
        assert updated.created_at == before.created_at
        assert updated.updated_at > before.updated_at

    @pytest.mark.asyncio
    async def test_group_move_adjusts_both_counts(self, store: PeopleStore):
        a = await store.create_person(draft("Alice", "Sales"))
        await store.create_person(draft("Bob", "Sales"))
        await store.update_person(a, group="Engineering")
        assert await store.group_counts() == {"Sales": 1, "Engineering": 1}

    @pytest.mark.asyncio
    async def test_group_move_deletes_empty_row(self, store: PeopleStore):
        a = await store.create_person(draft("Alice", "Sales"))
        await store.update_person(a, group="Engineering")
        assert await store.group_counts() == {"Engineering": 1}
        assert not list((store.root / GROUP_COUNTS).glob("Sales*"))

    @pytest.mark.asyncio
    async def test_update_without_group_keeps_count(self, store: PeopleStore):
        a = await store.create_person(draft("Alice", "Sales"))
        await store.update_person(a, name="Alice Chen")
        assert await store.group_counts() == {"Sales": 1}

    @pytest.mark.asyncio
    async def test_clearing_group(self, store: PeopleStore):
        a = await store.create_person(draft("Alice", "Sales"))
        await store.update_person(a, group="")
        assert (await store.get_person(a)).group is None
        assert await store.group_counts() == {}

    @pytest.mark.asyncio
    async def test_not_found(self, store: PeopleStore):
        with pytest.raises(NotFoundError):
            await store.update_person("missing", name="X")

    @pytest.mark.asyncio
    async def test_unknown_field(self, store: PeopleStore):
        a = await store.create_person(draft("Alice"))
        with pytest.raises(TypeError):
            await store.update_person(a, id="other")

    @pytest.mark.asyncio
    async def test_failed_move_leaves_index_untouched(self, store: PeopleStore):
        a = await store.create_person(draft("Alice", "Sales"))
        with patch.object(Path, "write_text", side_effect=OSError("disk full")):
            with pytest.raises(NotPersistedError):
                await store.update_person(a, group="Engineering")
        assert (await store.get_person(a)).group == "Sales"
        await assert_index_consistent(store)


class TestMemorizationState:
    @pytest.mark.asyncio
    async def test_updates_state_and_streak(self, store: PeopleStore):
        a = await store.create_person(draft("Alice"))
        person = await store.update_memorization_state(a, "learning", 1)
        assert (person.state, person.streak) == ("learning", 1)

    @pytest.mark.asyncio
    async def test_streak_defaults_to_stored(self, store: PeopleStore):
        a = await store.create_person(draft("Alice"))
        await store.update_memorization_state(a, "learning", 2)
        person = await store.update_memorization_state(a, "memorized")
        assert person.streak == 2

    @pytest.mark.asyncio
    async def test_rejects_bad_values(self, store: PeopleStore):
        a = await store.create_person(draft("Alice"))
        with pytest.raises(ValueError):
            await store.update_memorization_state(a, "forgotten", 0)
        with pytest.raises(ValueError):
            await store.update_memorization_state(a, "learning", -1)

    @pytest.mark.asyncio
    async def test_not_found(self, store: PeopleStore):
        with pytest.raises(NotFoundError):
            await store.update_memorization_state("missing", "learning", 1)


class TestDelete:
    @pytest.mark.asyncio
    async def test_deletion_cascades_to_group_counts(self, store: PeopleStore):
        a = await store.create_person(draft("Alice", "Sales"))
        b = await store.create_person(draft("Bob", "Sales"))
        await store.delete_person(a)
        assert await store.group_counts() == {"Sales": 1}
        await store.delete_person(b)
        assert await store.group_counts() == {}

    @pytest.mark.asyncio
    async def test_not_found(self, store: PeopleStore):
        with pytest.raises(NotFoundError):
            await store.delete_person("missing")


class TestQueries:
    @pytest.mark.asyncio
    async def test_newest_first(self, store: PeopleStore):
        for name in ["First", "Second", "Third"]:
            await store.create_person(draft(name))
        assert [p.name for p in await store.list_people()] == ["Third", "Second", "First"]

    @pytest.mark.asyncio
    async def test_filters(self, store: PeopleStore):
        a = await store.create_person(draft("Alice", "Sales"))
        await store.create_person(draft("Bob", "Sales"))
        await store.create_person(draft("Carol", "Engineering"))
        await store.update_memorization_state(a, "memorized", 3)

        sales = await store.list_people(group="Sales")
        assert {p.name for p in sales} == {"Alice", "Bob"}

        unmemorized = await store.list_people(exclude_memorized=True)
        assert all(p.state != "memorized" for p in unmemorized)
        assert {p.name for p in unmemorized} == {"Bob", "Carol"}

        both = await store.list_people(group="Sales", exclude_memorized=True)
        assert [p.name for p in both] == ["Bob"]

    @pytest.mark.asyncio
    async def test_counts(self, store: PeopleStore):
        a = await store.create_person(draft("Alice"))
        await store.create_person(draft("Bob"))
        await store.update_memorization_state(a, "memorized", 2)
        assert await store.count_all() == 2
        assert await store.count_unmemorized() == 1

    @pytest.mark.asyncio
    async def test_top_groups_tie_break(self, store: PeopleStore):
        for group, n in [("C", 1), ("B", 5), ("A", 5)]:
            for i in range(n):
                await store.create_person(draft(f"{group}{i}", group))
        assert await store.list_top_groups(2) == ["A", "B"]
        assert await store.list_top_groups() == ["A", "B", "C"]
        assert await store.list_top_groups(0) == []

    @pytest.mark.asyncio
    async def test_snapshot_is_detached(self, store: PeopleStore):
        await store.create_person(draft("Alice"))
        snapshot = await store.list_people()
        await store.create_person(draft("Bob"))
        assert len(snapshot) == 1


class TestIndexConsistency:
    @pytest.mark.asyncio
    async def test_random_operation_sequence(self, store: PeopleStore):
        rng = random.Random(7)
        groups = ["Sales", "Engineering", "HR", None]
        alive: list[str] = []
        for step in range(60):
            op = rng.choice(["create", "create", "move", "delete"])
            if op == "create" or not alive:
                alive.append(await store.create_person(draft(f"P{step}", rng.choice(groups))))
            elif op == "move":
                await store.update_person(rng.choice(alive), group=rng.choice(groups))
            else:
                victim = rng.choice(alive)
                alive.remove(victim)
                await store.delete_person(victim)
            if step % 10 == 0:
                await assert_index_consistent(store)
        await assert_index_consistent(store)

    @pytest.mark.asyncio
    async def test_open_repairs_diverged_index(self, store: PeopleStore):
        await store.create_person(draft("Alice", "Sales"))
        # Another writer left a stale row behind
        store._backend.commit([Put(GROUP_COUNTS, "Ghost", {"group": "Ghost", "count": 4})])
        reopened = PeopleStore(store.root)
        assert await reopened.group_counts() == {"Sales": 1}
        assert not list((store.root / GROUP_COUNTS).glob("Ghost*"))


class TestQuizSettings:
    @pytest.mark.asyncio
    async def test_defaults(self, store: PeopleStore):
        settings = await store.load_quiz_settings()
        assert settings.mode == "face-to-name"
        assert settings.auto_promotion == "off"

    @pytest.mark.asyncio
    async def test_configured_defaults(self, tmp_path: Path):
        store = PeopleStore(tmp_path / "data", default_settings=QuizSettings(auto_promotion="3"))
        assert (await store.load_quiz_settings()).threshold == 3

    @pytest.mark.asyncio
    async def test_save_load_persists_only_quiz_parameters(self, store: PeopleStore):
        await store.save_quiz_settings(
            QuizSettings(mode="name-to-face", auto_promotion=3, target="unmemorized", group="Sales")
        )
        loaded = await PeopleStore(store.root).load_quiz_settings()
        assert loaded.mode == "name-to-face"
        assert loaded.auto_promotion == "3"
        assert loaded.target == "all"
        assert loaded.group is None


class TestClearAll:
    @pytest.mark.asyncio
    async def test_empties_everything(self, store: PeopleStore):
        await store.create_person(draft("Alice", "Sales"))
        await store.save_quiz_settings(QuizSettings(mode="name-to-face"))
        await store.clear_all()
        assert await store.count_all() == 0
        assert await store.group_counts() == {}
        assert (await store.load_quiz_settings()).mode == "face-to-name"

        reopened = PeopleStore(store.root)
        assert await reopened.count_all() == 0
        assert (await reopened.load_quiz_settings()).mode == "face-to-name"
