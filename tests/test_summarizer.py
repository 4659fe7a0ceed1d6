from conftest import make_segment, run
from knowledge.services.store import InMemoryKnowledgeStore
from knowledge.services.summarizer import KnowledgeSummarizer


def _seed(store):
    doc = store.insert("tenant-a", make_segment("Refunds within 30 days", "document"))
    store.insert("tenant-a", make_segment("We are on Main Street", "website"))
    manual = store.insert("tenant-a", make_segment("Refunds within 14 days", "manual"))
    store.mark_superseded(doc.id, manual.id)
    return manual


def test_empty_tenant_summary():
    summary = run(KnowledgeSummarizer(InMemoryKnowledgeStore()).summarize("tenant-a"))

    assert summary.total == 0
    assert summary.counts_by_type == {"document": 0, "conversation": 0, "website": 0, "manual": 0}
    assert summary.digest == "No knowledge stored yet."


def test_template_digest_describes_counts():
    store = InMemoryKnowledgeStore()
    manual = _seed(store)

    summary = run(KnowledgeSummarizer(store).summarize("tenant-a"))

    assert summary.total == 2
    assert summary.superseded_count == 1
    assert summary.digest.startswith("2 active knowledge segments (1 website, 1 manual).")
    assert "1 superseded." in summary.digest
    assert manual.created_at.isoformat() in summary.digest


def test_digest_writer_receives_recent_segments():
    store = InMemoryKnowledgeStore()
    _seed(store)
    seen = []

    async def writer(payload):
        seen.append(payload)
        return "  Refund window is 14 days; the shop is on Main Street.  "

    summary = run(KnowledgeSummarizer(store, digest_writer=writer, sample_size=1).summarize("tenant-a"))

    assert summary.digest == "Refund window is 14 days; the shop is on Main Street."
    payload = seen[0]
    assert payload["total"] == 2
    assert [item["excerpt"] for item in payload["recent"]] == ["Refunds within 14 days"]


def test_failing_digest_writer_falls_back_to_template():
    store = InMemoryKnowledgeStore()
    _seed(store)

    async def writer(payload):
        raise RuntimeError("completion provider down")

    summary = run(KnowledgeSummarizer(store, digest_writer=writer).summarize("tenant-a"))

    assert summary.digest.startswith("2 active knowledge segments")


def test_summary_is_read_only():
    store = InMemoryKnowledgeStore()
    _seed(store)
    before = store.find_active("tenant-a")
    run(KnowledgeSummarizer(store).summarize("tenant-a"))
    assert store.find_active("tenant-a") == before
