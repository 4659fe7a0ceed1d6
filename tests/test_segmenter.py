import pytest

from knowledge.errors import ValidationIssue
from knowledge.services.segmenter import clean_html, format_exchange, segment_text


def test_short_text_is_single_chunk():
    assert segment_text("  Opening hours are 9 to 5.  ") == ["Opening hours are 9 to 5."]


def test_empty_and_whitespace_input_yield_nothing():
    assert segment_text("") == []
    assert segment_text("   \n\n\t ") == []


def test_text_of_exactly_max_chars_is_one_chunk():
    chunks = segment_text("a" * 1500, max_chars=1500)
    assert chunks == ["a" * 1500]


def test_one_char_over_max_splits_in_two():
    chunks = segment_text("a" * 1501, max_chars=1500)
    assert [len(chunk) for chunk in chunks] == [1500, 1]


def test_paragraphs_are_packed_until_the_limit():
    text = "First paragraph.\n\nSecond paragraph.\n\nThird paragraph."
    assert segment_text(text, max_chars=40) == [
        "First paragraph.\n\nSecond paragraph.",
        "Third paragraph.",
    ]


def test_oversize_paragraph_splits_on_sentences():
    text = "First sentence here. Second sentence here. Third sentence here."
    assert segment_text(text, max_chars=45) == [
        "First sentence here. Second sentence here.",
        "Third sentence here.",
    ]


def test_oversize_sentence_splits_between_words():
    text = "word " * 100
    chunks = segment_text(text, max_chars=50)
    assert len(chunks) > 1
    assert all(0 < len(chunk) <= 50 for chunk in chunks)
    assert all(token == "word" for chunk in chunks for token in chunk.split())


def test_no_chunk_exceeds_limit_or_is_empty():
    text = "\n\n".join(
        " ".join(f"Sentence {p}-{s} about the business." for s in range(30))
        for p in range(5)
    )
    chunks = segment_text(text, max_chars=300)
    assert chunks
    assert all(chunk and chunk == chunk.strip() and len(chunk) <= 300 for chunk in chunks)


def test_overlap_repeats_tail_of_previous_chunk():
    text = "one two three four\n\nfive six seven eight"
    chunks = segment_text(text, max_chars=25, overlap=10)
    assert chunks == ["one two three four", "four five six seven eight"]


def test_segmentation_is_deterministic():
    text = "Alpha. Beta gamma delta. " * 200
    assert segment_text(text, max_chars=120) == segment_text(text, max_chars=120)


@pytest.mark.parametrize(
    "max_chars,overlap",
    [(0, 0), (-5, 0), (100, -1), (100, 100), (True, 0)],
)
def test_invalid_parameters_rejected(max_chars, overlap):
    with pytest.raises(ValidationIssue):
        segment_text("some text", max_chars=max_chars, overlap=overlap)


def test_clean_html_drops_boilerplate_and_markup():
    html = """
    <html><head><style>body { color: red; }</style><script>track()</script></head>
    <body>
      <nav>Home | About</nav>
      <h1>Acme Plumbing</h1>
      <p>We fix leaks &amp; install boilers.</p>
      <!-- hidden note -->
      <footer>Copyright</footer>
    </body></html>
    """
    cleaned = clean_html(html)
    assert "Acme Plumbing" in cleaned
    assert "We fix leaks & install boilers." in cleaned
    for dropped in ("track()", "color: red", "Home | About", "hidden note", "Copyright", "<"):
        assert dropped not in cleaned


def test_clean_html_truncates_long_pages():
    cleaned = clean_html("<p>" + "x" * 500 + "</p>", max_chars=100)
    assert cleaned == "x" * 100 + "..."


def test_format_exchange_labels_both_sides():
    assert format_exchange(" Do you open Sundays? ", "Yes, 10 to 2.") == (
        "Customer: Do you open Sundays?\nAssistant: Yes, 10 to 2."
    )
    assert format_exchange("", "Only the assistant spoke.") == "Assistant: Only the assistant spoke."
