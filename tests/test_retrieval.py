import pytest

from conftest import at_angle, make_segment, vec
from knowledge.errors import DimensionMismatchError, ValidationIssue
from knowledge.services.retrieval import RetrievalEngine
from knowledge.services.similarity import cosine_scores, cosine_similarity

QUERY = vec(1.0)


def test_cosine_similarity_basics():
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


def test_cosine_scores_handles_zero_rows():
    scores = cosine_scores([1.0, 0.0], [[2.0, 0.0], [0.0, 0.0]])
    assert list(scores) == pytest.approx([1.0, 0.0])
    assert len(cosine_scores([1.0], [])) == 0


def test_threshold_is_inclusive_lower_bound(store):
    above = store.insert("tenant-a", make_segment("above", embedding=at_angle(0.76, axis=1)))
    store.insert("tenant-a", make_segment("below", embedding=at_angle(0.74, axis=2)))

    results = RetrievalEngine(store).retrieve("tenant-a", QUERY, threshold=0.75, top_k=5)

    assert [segment.id for segment, _ in results] == [above.id]
    assert results[0][1] == pytest.approx(0.76)


def test_results_sorted_by_score_and_limited(store):
    for cos, axis in ((0.80, 1), (0.95, 2), (0.90, 3)):
        store.insert("tenant-a", make_segment(f"score {cos}", embedding=at_angle(cos, axis=axis)))

    results = RetrievalEngine(store).retrieve("tenant-a", QUERY, threshold=0.5, top_k=2)

    assert [segment.text for segment, _ in results] == ["score 0.95", "score 0.9"]


def test_equal_scores_prefer_newer_segment(store):
    store.insert("tenant-a", make_segment("older", embedding=at_angle(0.8, axis=1)))
    store.insert("tenant-a", make_segment("newer", embedding=at_angle(0.8, axis=2)))

    results = RetrievalEngine(store).retrieve("tenant-a", QUERY, threshold=0.5, top_k=5)

    assert [segment.text for segment, _ in results] == ["newer", "older"]


def test_superseded_segments_are_not_returned(store):
    old = store.insert("tenant-a", make_segment("old", embedding=at_angle(0.9, axis=1)))
    new = store.insert("tenant-a", make_segment("new", embedding=at_angle(0.9, axis=2)))
    store.mark_superseded(old.id, new.id)

    results = RetrievalEngine(store).retrieve("tenant-a", QUERY, threshold=0.5, top_k=5)

    assert [segment.id for segment, _ in results] == [new.id]


def test_empty_tenant_returns_nothing(store):
    assert RetrievalEngine(store).retrieve("tenant-a", QUERY, threshold=0.0, top_k=5) == []


def test_other_tenants_are_invisible(store):
    store.insert("tenant-b", make_segment("theirs", embedding=QUERY, tenant_id="tenant-b"))
    assert RetrievalEngine(store).retrieve("tenant-a", QUERY, threshold=0.0, top_k=5) == []


def test_query_dimension_must_match(store):
    store.insert("tenant-a", make_segment("fact", embedding=QUERY))
    with pytest.raises(DimensionMismatchError):
        RetrievalEngine(store).retrieve("tenant-a", [1.0, 0.0, 0.0], threshold=0.5, top_k=5)


@pytest.mark.parametrize("threshold,top_k", [(-0.1, 5), (1.5, 5), (0.5, 0), (0.5, -1)])
def test_invalid_parameters_rejected(store, threshold, top_k):
    with pytest.raises(ValidationIssue):
        RetrievalEngine(store).retrieve("tenant-a", QUERY, threshold=threshold, top_k=top_k)
