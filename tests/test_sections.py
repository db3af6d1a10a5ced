"""Section extraction: heading detection, span boundaries, earliest-wins, purity."""
import pytest

from proposal_rag.chunking.sections import SectionExtractor, classify_heading
from proposal_rag.schemas import SectionLabel


# =========================================================================
# HEADING CLASSIFICATION
# =========================================================================
class TestClassifyHeading:

    @pytest.mark.parametrize(
        "line, label",
        [
            ("Our Understanding", SectionLabel.UNDERSTANDING),
            ("2. Proposed Approach", SectionLabel.APPROACH),
            ("## Project Timeline", SectionLabel.TIMELINE),
            ("Section 4: Workplan", SectionLabel.TIMELINE),
            ("Methodology", SectionLabel.APPROACH),
            ("Key Issues", SectionLabel.PROBLEM),
            ("Our Understanding of the Problem", SectionLabel.UNDERSTANDING),
        ],
    )
    def test_labelled_headings(self, line, label):
        assert classify_heading(line) == (True, label)

    @pytest.mark.parametrize("line", ["Executive Summary", "Deliverables", "Project Team", "Professional Fees"])
    def test_boundary_only_headings(self, line):
        assert classify_heading(line) == (True, None)

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "Proposal for Acme Health",
            "The timeline for this work is tight and depends on clinic availability in spring.",
            "Is the timeline realistic?",
        ],
    )
    def test_ordinary_lines(self, line):
        assert classify_heading(line) == (False, None)


# =========================================================================
# EXTRACTION
# =========================================================================
class TestExtract:

    def test_finds_all_four_sections(self, proposal_text):
        spans = SectionExtractor().extract(proposal_text)
        assert set(spans) == set(SectionLabel)
        assert all(spans[label] is not None for label in SectionLabel)

    def test_offsets_match_text(self, proposal_text):
        for span in SectionExtractor().extract(proposal_text).values():
            assert proposal_text[span.start:span.end] == span.text
            assert span.marker_start < span.start

    def test_span_stops_at_next_heading(self, proposal_text):
        spans = SectionExtractor().extract(proposal_text)
        timeline = spans[SectionLabel.TIMELINE]
        assert timeline.text.startswith("The engagement runs for twelve weeks.")
        assert "current-state process map" not in timeline.text
        assert "twelve weeks" not in spans[SectionLabel.APPROACH].text

    def test_boundary_heading_never_labelled(self, proposal_text):
        spans = SectionExtractor().extract(proposal_text)
        bodies = [s.text for s in spans.values()]
        assert not any("rollout playbook" in body for body in bodies)

    def test_spans_follow_source_order(self, proposal_text):
        spans = SectionExtractor().extract(proposal_text)
        order = sorted(spans.values(), key=lambda s: s.start)
        assert [s.label for s in order] == [
            SectionLabel.UNDERSTANDING,
            SectionLabel.APPROACH,
            SectionLabel.TIMELINE,
            SectionLabel.PROBLEM,
        ]

    def test_absent_markers_yield_none(self):
        spans = SectionExtractor().extract("Just a short note with no headings at all.\nAnother line of prose here.")
        assert all(span is None for span in spans.values())

    def test_empty_text(self):
        assert all(span is None for span in SectionExtractor().extract("").values())

    def test_earliest_heading_wins(self):
        text = "Timeline\nFirst plan of record.\n\nTimeline\nSecond plan that should be ignored.\n"
        span = SectionExtractor().extract(text)[SectionLabel.TIMELINE]
        assert span.text == "First plan of record."

    def test_heading_with_empty_body_is_absent(self):
        text = "Our Understanding\n\nProposed Approach\nWorkshops with every clinic manager in the region.\n"
        spans = SectionExtractor().extract(text)
        assert spans[SectionLabel.UNDERSTANDING] is None
        assert spans[SectionLabel.APPROACH] is not None

    def test_idempotent(self, proposal_text):
        extractor = SectionExtractor()
        assert extractor.extract(proposal_text) == extractor.extract(proposal_text)
