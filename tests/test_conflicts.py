import pytest

from conftest import at_angle, make_segment, vec
from knowledge.errors import ConflictStateError, DimensionMismatchError
from knowledge.services.conflicts import (
    ACTION_DROP,
    ACTION_INSERT,
    ACTION_REDUNDANT,
    ACTION_SUPERSEDE,
    ConflictResolver,
    judge,
)
from knowledge.services.store import InMemoryKnowledgeStore

BASE = vec(1.0)
CLOSE = at_angle(0.9)  # similarity 0.9 to BASE
NEAR_MISS = at_angle(0.84)
# 0.64 to BASE, so BASE and SIDE can both be active; MIDDLE is ~0.906 to each
SIDE = at_angle(0.64, axis=5)
MIDDLE = [a + b for a, b in zip(BASE, SIDE)]
THRESHOLD = 0.85


def _active_texts(store, tenant_id="tenant-a"):
    return sorted(segment.text for segment in store.find_active(tenant_id))


def _ingest(resolver, text, segment_type, embedding):
    return resolver.apply("tenant-a", make_segment(text, segment_type, embedding), THRESHOLD)


@pytest.mark.parametrize(
    "candidate,existing,expected",
    [
        ("conversation", "conversation", (True, "recency")),
        ("manual", "conversation", (True, "recency")),
        ("conversation", "manual", (True, "recency")),
        ("website", "document", (False, "authority")),
        ("conversation", "website", (False, "authority")),
        ("document", "website", (True, "authority")),
        ("document", "document", (True, "recency")),
        ("manual", "document", (True, "recency")),
        ("document", "manual", (True, "recency")),
        ("conversation", "document", (False, "authority")),
    ],
)
def test_judge(candidate, existing, expected):
    assert judge(make_segment("c", candidate), make_segment("e", existing)) == expected


def test_independent_segment_is_inserted(store):
    resolver = ConflictResolver(store)
    _ingest(resolver, "hours", "document", BASE)
    outcome = _ingest(resolver, "parking", "document", at_angle(0.2))

    assert outcome.action == ACTION_INSERT
    assert _active_texts(store) == ["hours", "parking"]


def test_below_threshold_both_stay_active(store):
    resolver = ConflictResolver(store)
    _ingest(resolver, "we open at 9", "conversation", BASE)
    outcome = _ingest(resolver, "we open at 10", "conversation", NEAR_MISS)

    assert outcome.action == ACTION_INSERT
    assert len(store.find_active("tenant-a")) == 2


def test_identical_segment_is_redundant(store):
    resolver = ConflictResolver(store)
    first = _ingest(resolver, "Open 9 to 5", "document", BASE)
    again = _ingest(resolver, "  open 9   to 5 ", "document", BASE)

    assert again.action == ACTION_REDUNDANT
    assert again.redundant_of == first.segment.id
    assert len(store.find_active("tenant-a")) == 1
    assert store.summarize("tenant-a").superseded_count == 0


def test_lower_authority_candidate_is_dropped(store):
    resolver = ConflictResolver(store)
    _ingest(resolver, "Price is $50 (brochure)", "document", BASE)
    outcome = _ingest(resolver, "Price is $40 (website)", "website", CLOSE)

    assert outcome.action == ACTION_DROP
    assert outcome.segment is None
    assert _active_texts(store) == ["Price is $50 (brochure)"]
    assert store.summarize("tenant-a").superseded_count == 0


def test_higher_authority_candidate_supersedes(store):
    resolver = ConflictResolver(store)
    old = _ingest(resolver, "Price is $40 (website)", "website", BASE)
    outcome = _ingest(resolver, "Price is $50 (brochure)", "document", CLOSE)

    assert outcome.action == ACTION_SUPERSEDE
    assert outcome.superseded == [old.segment.id]
    assert _active_texts(store) == ["Price is $50 (brochure)"]
    assert store.get("tenant-a", old.segment.id).superseded_by == outcome.segment.id


def test_mutable_types_follow_recency(store):
    resolver = ConflictResolver(store)
    _ingest(resolver, "Closed on Mondays", "conversation", BASE)
    _ingest(resolver, "Open on Mondays now", "manual", CLOSE)
    assert _active_texts(store) == ["Open on Mondays now"]

    _ingest(resolver, "Mondays: open 10-2", "conversation", BASE)
    assert _active_texts(store) == ["Mondays: open 10-2"]


def test_candidate_loses_if_any_collision_outranks_it(store):
    resolver = ConflictResolver(store)
    _ingest(resolver, "chat says $45", "conversation", BASE)
    _ingest(resolver, "site says $42", "website", SIDE)
    outcome = _ingest(resolver, "chat now says $44", "conversation", MIDDLE)

    assert outcome.action == ACTION_DROP
    assert _active_texts(store) == ["chat says $45", "site says $42"]


def test_candidate_supersedes_every_collision_it_beats(store):
    resolver = ConflictResolver(store)
    a = _ingest(resolver, "policy v1 (website)", "website", BASE)
    b = _ingest(resolver, "policy v1 (chat)", "conversation", SIDE)
    outcome = _ingest(resolver, "policy v2", "document", MIDDLE)

    assert outcome.action == ACTION_SUPERSEDE
    assert sorted(outcome.superseded) == sorted([a.segment.id, b.segment.id])
    assert _active_texts(store) == ["policy v2"]


def test_decide_does_not_write(store):
    resolver = ConflictResolver(store)
    _ingest(resolver, "existing", "website", BASE)
    decision = resolver.decide("tenant-a", make_segment("candidate", "document", CLOSE), THRESHOLD)

    assert decision.action == ACTION_SUPERSEDE
    assert decision.collisions[0].score == pytest.approx(0.9)
    assert _active_texts(store) == ["existing"]


def test_dimension_mismatch_rejected_before_any_write(store):
    resolver = ConflictResolver(store)
    _ingest(resolver, "existing", "document", BASE)
    with pytest.raises(DimensionMismatchError):
        _ingest(resolver, "short vector", "document", [1.0, 0.0])
    assert _active_texts(store) == ["existing"]


def test_conflicts_never_cross_tenants(store):
    resolver = ConflictResolver(store)
    _ingest(resolver, "tenant a fact", "document", BASE)
    outcome = resolver.apply(
        "tenant-b",
        make_segment("tenant b fact", "website", CLOSE, tenant_id="tenant-b"),
        THRESHOLD,
    )
    assert outcome.action == ACTION_INSERT


class RacingStore(InMemoryKnowledgeStore):
    """Lets another writer supersede the target just before our write."""

    def __init__(self, races: int = 1):
        super().__init__()
        self.races = races

    def mark_superseded(self, old_id, new_id, context=None):
        if self.races > 0:
            self.races -= 1
            racer = self.insert("tenant-a", make_segment("racer", "document", BASE))
            super().mark_superseded(old_id, racer.id, context)
        return super().mark_superseded(old_id, new_id, context)


def test_lost_supersession_race_rechecks_and_drops_candidate():
    store = RacingStore()
    resolver = ConflictResolver(store)
    _ingest(resolver, "old", "website", BASE)

    outcome = _ingest(resolver, "candidate", "document", CLOSE)

    assert outcome.action == ACTION_DROP
    assert _active_texts(store) == ["racer"]


class AlwaysRacingStore(InMemoryKnowledgeStore):
    def mark_superseded(self, old_id, new_id, context=None):
        raise ConflictStateError(old_id, "someone-else", new_id)


def test_repeated_race_propagates():
    store = AlwaysRacingStore()
    resolver = ConflictResolver(store)
    _ingest(resolver, "old", "website", BASE)

    with pytest.raises(ConflictStateError):
        _ingest(resolver, "candidate", "document", CLOSE)
