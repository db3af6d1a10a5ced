"""FAISS + BM25 proposal index: ranking, filters, rejection, persistence."""
import numpy as np
import pytest

from conftest import make_chunk
from proposal_rag.chunking.schemas import ChunkFilters
from proposal_rag.embedding.faiss_index import ProposalIndex
from proposal_rag.errors import RetrievalUnavailable
from proposal_rag.schemas import SectionLabel

DIMS = 4


def vec(*values: float) -> np.ndarray:
    return np.array(values, dtype=np.float32)


@pytest.fixture
def index() -> ProposalIndex:
    idx = ProposalIndex(dimensions=DIMS)
    idx.insert(make_chunk("a-0", "intake redesign", client="Acme", doc_id="a"), vec(1, 0, 0, 0))
    idx.insert(make_chunk("b-0", "pricing model", client="Beta", doc_id="b", tags=["finance"]), vec(0.8, 0.6, 0, 0))
    idx.insert(
        make_chunk("c-0", "rollout timeline", client="Acme", doc_id="c", section=SectionLabel.TIMELINE),
        vec(0, 1, 0, 0),
    )
    return idx


# =========================================================================
# INSERT
# =========================================================================
class TestInsert:

    def test_accepts_matching_dimensions(self, index):
        assert len(index) == 3
        assert index.faiss_index.ntotal == 3

    def test_rejects_dimension_mismatch(self, index):
        result = index.insert(make_chunk("d-0", doc_id="d"), vec(1, 0, 0))
        assert result.ok is False
        assert "dims" in result.reason
        assert len(index) == 3
        assert not index.has_document("d")

    def test_rejects_non_finite(self, index):
        result = index.insert(make_chunk("d-0", doc_id="d"), vec(np.nan, 0, 0, 0))
        assert result.ok is False
        assert len(index) == 3

    def test_has_document(self, index):
        assert index.has_document("a")
        assert not index.has_document("zzz")


# =========================================================================
# DENSE QUERY
# =========================================================================
class TestQuery:

    def test_descending_similarity(self, index):
        hits = index.query(vec(1, 0, 0, 0), k=3)
        assert [h.chunk.chunk_id for h in hits] == ["a-0", "b-0", "c-0"]
        assert [h.rank for h in hits] == [1, 2, 3]
        assert hits[0].score == pytest.approx(1.0, abs=1e-5)
        assert hits[0].score >= hits[1].score >= hits[2].score

    def test_k_bounds_results(self, index):
        assert len(index.query(vec(1, 0, 0, 0), k=2)) == 2
        assert index.query(vec(1, 0, 0, 0), k=0) == []

    def test_min_similarity_floor(self, index):
        hits = index.query(vec(1, 0, 0, 0), k=5, min_similarity=0.5)
        assert [h.chunk.chunk_id for h in hits] == ["a-0", "b-0"]

    def test_ties_keep_insertion_order(self):
        idx = ProposalIndex(dimensions=DIMS)
        for i in range(4):
            idx.insert(make_chunk(f"t-{i}", doc_id="t"), vec(0, 0, 1, 0))
        hits = idx.query(vec(0, 0, 1, 0), k=4)
        assert [h.chunk.chunk_id for h in hits] == ["t-0", "t-1", "t-2", "t-3"]

    def test_client_filter(self, index):
        hits = index.query(vec(1, 0, 0, 0), k=5, filters=ChunkFilters(client="acme"))
        assert [h.chunk.chunk_id for h in hits] == ["a-0", "c-0"]

    def test_tag_and_section_filters(self, index):
        by_tag = index.query(vec(1, 0, 0, 0), k=5, filters=ChunkFilters(tags=["Finance"]))
        assert [h.chunk.chunk_id for h in by_tag] == ["b-0"]
        by_section = index.query(vec(1, 0, 0, 0), k=5, filters=ChunkFilters(section=SectionLabel.TIMELINE))
        assert [h.chunk.chunk_id for h in by_section] == ["c-0"]

    def test_tag_filter_ignores_padding(self, index):
        hits = index.query(vec(1, 0, 0, 0), k=5, filters=ChunkFilters(tags=[" Finance "]))
        assert [h.chunk.chunk_id for h in hits] == ["b-0"]

    def test_empty_index(self):
        assert ProposalIndex(dimensions=DIMS).query(vec(1, 0, 0, 0)) == []

    def test_query_dimension_mismatch_raises(self, index):
        with pytest.raises(RetrievalUnavailable):
            index.query(vec(1, 0), k=3)

    def test_scored_chunk_to_dict(self, index):
        hit = index.query(vec(1, 0, 0, 0), k=1)[0].to_dict()
        assert hit["client"] == "Acme"
        assert hit["filename"] == "a.txt"
        assert hit["content"] == "intake redesign"
        assert hit["rank"] == 1


# =========================================================================
# KEYWORD SEARCH
# =========================================================================
class TestKeywordSearch:

    def test_matches_unique_term(self, index):
        hits = index.search_keywords("what was the pricing model?", k=5)
        assert [h.chunk.chunk_id for h in hits] == ["b-0"]
        assert hits[0].score > 0

    def test_no_match_returns_empty(self, index):
        assert index.search_keywords("geothermal", k=5) == []
        assert index.search_keywords("?", k=5) == []

    def test_rebuilds_after_insert(self, index):
        assert index.search_keywords("geothermal") == []
        index.insert(make_chunk("d-0", "geothermal plant study", client="Delta", doc_id="d"), vec(0, 0, 0, 1))
        assert [h.chunk.chunk_id for h in index.search_keywords("geothermal")] == ["d-0"]

    def test_filters_apply(self, index):
        assert index.search_keywords("pricing", filters=ChunkFilters(client="Acme")) == []


# =========================================================================
# PERSISTENCE
# =========================================================================
class TestPersistence:

    def test_save_and_load(self, index, tmp_path):
        index.save(tmp_path)
        assert (tmp_path / "faiss.index").exists()
        assert (tmp_path / "chunks.json").exists()
        assert (tmp_path / "index_manifest.json").exists()

        loaded = ProposalIndex.load(tmp_path)
        assert loaded.dimensions == DIMS
        assert len(loaded) == 3
        assert loaded.has_document("c")
        assert loaded.chunks[2].section == SectionLabel.TIMELINE
        hits = loaded.query(vec(1, 0, 0, 0), k=3)
        assert [h.chunk.chunk_id for h in hits] == ["a-0", "b-0", "c-0"]

    def test_load_or_create_empty(self, tmp_path):
        idx = ProposalIndex.load_or_create(tmp_path / "missing", dimensions=8)
        assert len(idx) == 0
        assert idx.dimensions == 8
