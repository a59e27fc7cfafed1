"""Tests for src/store.py."""

import pytest

from src.models import CRITIC, PRIMARY, RUNNING, STOPPED, Message
from src.store import DiscussionNotFoundError, DiscussionStoppedError, DiscussionStore, InvalidDiscussionError
from tests.conftest import make_participant


def test_create_registers_running_discussion(store, participants):
    discussion_id = store.create("Monorepo or polyrepo?", participants)
    discussion = store.get(discussion_id)
    assert discussion.topic == "Monorepo or polyrepo?"
    assert discussion.status == RUNNING
    assert discussion.messages == []
    assert store.get_turn_flag(discussion_id) is True
    assert discussion.participant(PRIMARY).role == PRIMARY
    assert discussion.participant(CRITIC).role == CRITIC


def test_create_ids_are_unique(store, participants):
    assert store.create("a", participants) != store.create("b", participants)
    assert len(store) == 2


def test_create_rejects_wrong_participant_count(store, primary):
    with pytest.raises(InvalidDiscussionError, match="exactly 2"):
        store.create("T", [primary])
    assert len(store) == 0


def test_create_rejects_two_primaries(store):
    participants = [make_participant(PRIMARY, "x", "a"), make_participant(PRIMARY, "y", "b")]
    with pytest.raises(InvalidDiscussionError, match="one primary and one critic"):
        store.create("T", participants)


def test_create_rejects_duplicate_ids(store):
    participants = [make_participant(PRIMARY, "x", "same"), make_participant(CRITIC, "y", "same")]
    with pytest.raises(InvalidDiscussionError, match="distinct"):
        store.create("T", participants)


def test_create_rejects_human_sender_id(store):
    participants = [make_participant(PRIMARY, "x", "human"), make_participant(CRITIC, "y")]
    with pytest.raises(InvalidDiscussionError, match="reserved"):
        store.create("T", participants)
    assert len(store) == 0


def test_get_unknown_raises(store):
    with pytest.raises(DiscussionNotFoundError) as exc_info:
        store.get("missing")
    assert "missing" in str(exc_info.value)
    assert store.find("missing") is None


def test_transcript_snapshots_only_grow(store, participants):
    discussion_id = store.create("T", participants)
    store.append_message(discussion_id, Message("m1", "primary-1", "first"))
    before = store.messages(discussion_id)
    store.append_message(discussion_id, Message("m2", "critic-1", "second"))
    after = store.messages(discussion_id)

    assert after[: len(before)] == before
    assert [m.id for m in after] == ["m1", "m2"]
    # Snapshots are detached from later appends
    assert len(before) == 1


def test_stop_flips_status_and_flag(store, participants):
    discussion_id = store.create("T", participants)
    assert store.stop(discussion_id) is True
    assert store.get(discussion_id).status == STOPPED
    assert store.get_turn_flag(discussion_id) is False
    assert store.stop(discussion_id) is False


def test_turn_flag_independent_of_status(store, participants):
    discussion_id = store.create("T", participants)
    store.set_turn_flag(discussion_id, False)
    assert store.get(discussion_id).status == RUNNING
    assert store.stop(discussion_id) is True


def test_set_status_validates(store, participants):
    discussion_id = store.create("T", participants)
    store.set_status(discussion_id, STOPPED)
    assert store.get(discussion_id).status == STOPPED
    with pytest.raises(ValueError):
        store.set_status(discussion_id, "paused")


def test_append_if_running(store, participants):
    discussion_id = store.create("T", participants)
    store.append_if_running(discussion_id, Message("h1", "human", "hi"))
    store.stop(discussion_id)
    with pytest.raises(DiscussionStoppedError):
        store.append_if_running(discussion_id, Message("h2", "human", "again"))
    assert [m.id for m in store.messages(discussion_id)] == ["h1"]


def test_ensure_running(store, participants):
    discussion_id = store.create("T", participants)
    store.ensure_running(discussion_id)
    store.stop(discussion_id)
    with pytest.raises(DiscussionStoppedError):
        store.ensure_running(discussion_id)


def test_mutators_reject_unknown_ids():
    store = DiscussionStore()
    with pytest.raises(DiscussionNotFoundError):
        store.append_message("missing", Message("m", "human", "x"))
    with pytest.raises(DiscussionNotFoundError):
        store.set_turn_flag("missing", False)
    with pytest.raises(DiscussionNotFoundError):
        store.get_turn_flag("missing")
    with pytest.raises(DiscussionNotFoundError):
        store.stop("missing")
    with pytest.raises(DiscussionNotFoundError):
        store.messages("missing")
