"""Chunker: window bounds, overlap reconstruction, boundaries, section labelling."""
import pytest

from conftest import make_doc
from proposal_rag.chunking.chunker import ProposalChunker, chunk_spans, chunk_text
from proposal_rag.chunking.sections import SectionExtractor
from proposal_rag.errors import InputError
from proposal_rag.schemas import SectionLabel

FILLER = "The clinic network serves patients across the region every day. "
TIMELINE_LINE = "Weeks one to three cover discovery and interviews with staff. "


def _prose(sentences: int) -> str:
    return FILLER * sentences


def _rebuild(chunks: list[str], overlap: int) -> str:
    return chunks[0] + "".join(c[overlap:] for c in chunks[1:])


# =========================================================================
# WINDOWING
# =========================================================================
class TestChunkText:

    def test_blank_text_yields_nothing(self):
        assert chunk_text("") == []
        assert chunk_text("   \n\t ") == []

    def test_short_text_is_single_chunk(self):
        text = _prose(2)
        assert chunk_text(text) == [text]

    def test_text_below_min_rejected(self):
        with pytest.raises(InputError, match="chunk minimum"):
            chunk_text("Ok.")
        # an explicit zero minimum accepts any non-blank text
        assert chunk_text("Ok.", 800, 100, 0) == ["Ok."]

    def test_exact_max_is_single_chunk(self):
        text = "x" * 800
        assert chunk_text(text) == [text]

    def test_hard_cut_without_boundaries(self):
        chunks = chunk_text("x" * 2000)
        assert [len(c) for c in chunks] == [800, 800, 600]

    @pytest.mark.parametrize(
        "max_size, overlap, min_size",
        [(800, 100, None), (300, 50, None), (200, 0, 40), (500, 200, 100), (150, 149, 75)],
    )
    def test_overlap_reconstructs_text(self, max_size, overlap, min_size):
        text = _prose(60)
        chunks = chunk_text(text, max_size, overlap, min_size)
        assert len(chunks) > 1
        assert _rebuild(chunks, overlap) == text

    @pytest.mark.parametrize("max_size, overlap", [(800, 100), (300, 50), (200, 0)])
    def test_length_bounds(self, max_size, overlap):
        chunks = chunk_text(_prose(60), max_size, overlap)
        min_size = min(100, max_size // 2)
        assert all(min_size <= len(c) <= max_size for c in chunks)

    def test_tail_never_below_min(self):
        # 801 chars would leave a 1-char tail with a naive cut
        chunks = chunk_text("x" * 801, 800, 100, 100)
        assert len(chunks[-1]) >= 100
        assert _rebuild(chunks, 100) == "x" * 801

    def test_windows_end_on_word_boundaries(self):
        chunks = chunk_text(_prose(60), 300, 50)
        for chunk in chunks[:-1]:
            assert chunk[-1].isspace()

    def test_windows_prefer_sentence_ends(self):
        chunks = chunk_text(_prose(60), 800, 100)
        for chunk in chunks[:-1]:
            assert chunk.rstrip().endswith(".")

    def test_deterministic(self):
        text = _prose(40)
        assert chunk_spans(text) == chunk_spans(text)

    @pytest.mark.parametrize(
        "max_size, overlap, min_size",
        [(0, 0, 0), (100, 100, 10), (100, -1, 10), (100, 10, 51), (100, 10, -1)],
    )
    def test_invalid_parameters(self, max_size, overlap, min_size):
        with pytest.raises(InputError):
            chunk_text("some text", max_size, overlap, min_size)

    def test_chunker_rejects_invalid_parameters(self):
        with pytest.raises(InputError):
            ProposalChunker(max_chunk_size=100, overlap=150)

    def test_chunker_rejects_near_empty_document(self):
        with pytest.raises(InputError):
            ProposalChunker().chunk_document(make_doc("Ok."))


# =========================================================================
# DOCUMENT CHUNKING
# =========================================================================
class TestProposalChunker:

    def test_ids_and_offsets(self):
        doc = make_doc(_prose(50))
        chunks = ProposalChunker().chunk_document(doc)
        assert len(chunks) > 1
        for i, chunk in enumerate(chunks):
            assert chunk.chunk_id == f"{doc.doc_id}-{i}"
            assert chunk.chunk_index == i
            assert chunk.doc_id == doc.doc_id
            assert doc.content[chunk.start:chunk.end] == chunk.text
            assert chunk.metadata == doc.metadata
            assert chunk.token_estimate > 0

    def test_from_config(self):
        chunker = ProposalChunker.from_config({"chunking": {"max_chunk_size": 400, "overlap": 40}})
        assert chunker.max_chunk_size == 400
        assert chunker.overlap == 40
        assert chunker.min_chunk_size == 100
        assert chunker.prefix_chars == 40

    def test_chunk_batch_flattens(self):
        docs = [make_doc(_prose(20), filename="a.txt"), make_doc(_prose(30), filename="b.txt")]
        chunker = ProposalChunker()
        chunks = chunker.chunk_batch(docs)
        assert len(chunks) == sum(len(chunker.chunk_document(d)) for d in docs)

    def test_short_document_single_labelled_chunk(self, proposal_text):
        chunks = ProposalChunker(max_chunk_size=2000, overlap=100).chunk_document(make_doc(proposal_text))
        assert len(chunks) == 1
        assert chunks[0].section == SectionLabel.UNDERSTANDING

    @pytest.mark.parametrize(
        "first, second, expected",
        [
            ("Our Understanding", "Project Timeline", SectionLabel.UNDERSTANDING),
            ("Project Timeline", "Our Understanding", SectionLabel.TIMELINE),
        ],
    )
    def test_earliest_heading_wins_label(self, first, second, expected):
        text = f"{first}\n{FILLER * 2}\n\n{second}\n{FILLER * 2}\n"
        chunks = ProposalChunker().chunk_document(make_doc(text))
        assert len(chunks) == 1
        assert chunks[0].section == expected

    def test_unlabelled_without_headings(self):
        chunks = ProposalChunker().chunk_document(make_doc(_prose(40)))
        assert all(c.section is None for c in chunks)


# =========================================================================
# END TO END: 3000-CHAR PROPOSAL
# =========================================================================
class TestSectionAwareChunking:

    def _document(self) -> str:
        text = (
            FILLER * 5
            + "\n\nOur Understanding\n"
            + FILLER * 15
            + "\n\nProject Timeline\n"
            + TIMELINE_LINE * 10
            + "\n\nDeliverables\n"
            + FILLER * 30
        )
        return text[:3000]

    def test_timeline_chunk_contains_section_start(self):
        text = self._document()
        assert len(text) == 3000
        span = SectionExtractor().extract(text)[SectionLabel.TIMELINE]
        assert span is not None

        chunker = ProposalChunker()
        chunks = chunker.chunk_document(make_doc(text))
        timeline = [c for c in chunks if c.section == SectionLabel.TIMELINE]
        assert timeline
        for chunk in timeline:
            assert chunk.start <= span.start
            assert span.start + chunker.prefix_chars <= chunk.end

    def test_understanding_and_timeline_both_labelled(self):
        chunks = ProposalChunker().chunk_document(make_doc(self._document()))
        labels = {c.section for c in chunks}
        assert SectionLabel.UNDERSTANDING in labels
        assert SectionLabel.TIMELINE in labels

    def test_reconstruction_preserves_text(self):
        text = self._document()
        chunker = ProposalChunker()
        chunks = chunker.chunk_document(make_doc(text))
        rebuilt = _rebuild([c.text for c in chunks], chunker.overlap)
        assert rebuilt == text
        assert len(rebuilt) == 3000
