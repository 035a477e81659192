"""Tests for duplicate contact ranking and deletion."""

import uuid

import pytest

from crm_assistant.errors import NotFoundError, ValidationError
from crm_assistant.storage.base import CONTACTS
from crm_assistant.tools.duplicates import DuplicateResolutionEngine

from .conftest import USER_ID, OTHER_USER_ID


def contact(contact_id, **fields):
    return {"contact_id": contact_id, "first_name": "Jane", "last_name": "Doe", **fields}


def test_no_candidates_gives_empty_analysis(store):
    analysis = DuplicateResolutionEngine(store).analyze([], search_term="Jane Doe")

    assert analysis.keep is None
    assert analysis.consider_deleting == []
    assert "No contacts found" in analysis.message


def test_single_candidate_reports_no_duplicates(store):
    analysis = DuplicateResolutionEngine(store).analyze([contact("a", email="j@x.com")], search_term="Jane")

    assert analysis.consider_deleting == []
    assert analysis.keep is None
    assert "Only one contact found" in analysis.message
    assert "recommendation" not in analysis.to_result()


def test_most_complete_contact_is_kept(store):
    candidates = [
        contact("newest", email="j@x.com"),
        contact("complete", email="j@x.com", phone="555", company="Acme", city="Paris"),
        contact("empty", notes="   "),
    ]

    analysis = DuplicateResolutionEngine(store).analyze(candidates)

    assert analysis.keep == "complete"
    assert analysis.consider_deleting == ["newest", "empty"]
    scores = {c.contact_id: c.filled_count for c in analysis.candidates}
    assert scores == {"complete": 4, "newest": 1, "empty": 0}
    assert all(scores["complete"] >= scores[i] for i in analysis.consider_deleting)


def test_ties_keep_most_recently_updated_order(store):
    candidates = [contact("first", phone="1"), contact("second", email="e"), contact("third", website="w")]

    analysis = DuplicateResolutionEngine(store).analyze(candidates)

    assert analysis.keep == "first"
    assert analysis.consider_deleting == ["second", "third"]


def test_custom_important_fields(store):
    candidates = [contact("a", email="e"), contact("b", nickname="JJ")]

    analysis = DuplicateResolutionEngine(store).analyze(candidates, important_fields=["nickname"])

    assert analysis.keep == "b"


def test_result_carries_recommendation(store):
    result = DuplicateResolutionEngine(store).analyze([contact("a", email="e"), contact("b")]).to_result()

    assert result["success"] is True
    assert result["duplicates_found"] is True
    assert result["recommendation"]["keep"] == "a"
    assert result["recommendation"]["consider_deleting"] == ["b"]
    assert "most complete" in result["recommendation"]["reason"]


@pytest.mark.asyncio
async def test_delete_candidate_requires_canonical_id(store):
    engine = DuplicateResolutionEngine(store)

    with pytest.raises(ValidationError):
        await engine.delete_candidate(USER_ID, "jane@example.com")

    assert store.deleted == []


@pytest.mark.asyncio
async def test_delete_candidate_missing_is_not_found(store):
    engine = DuplicateResolutionEngine(store)

    with pytest.raises(NotFoundError):
        await engine.delete_candidate(USER_ID, str(uuid.uuid4()))

    assert store.deleted == []


@pytest.mark.asyncio
async def test_delete_candidate_checks_ownership(store):
    other = await store.insert(CONTACTS, OTHER_USER_ID, {"first_name": "Jane", "last_name": "Doe"})
    engine = DuplicateResolutionEngine(store)

    with pytest.raises(NotFoundError):
        await engine.delete_candidate(USER_ID, other["contact_id"])

    assert await store.get(CONTACTS, OTHER_USER_ID, other["contact_id"]) is not None


@pytest.mark.asyncio
async def test_delete_candidate_removes_contact(store):
    record = await store.insert(CONTACTS, USER_ID, {"first_name": "Jane", "last_name": "Doe", "email": "j@x.com"})

    result = await DuplicateResolutionEngine(store).delete_candidate(USER_ID, record["contact_id"])

    assert result["success"] is True
    assert result["deleted_contact"]["name"] == "Jane Doe"
    assert await store.get(CONTACTS, USER_ID, record["contact_id"]) is None
