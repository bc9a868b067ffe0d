"""
Tests for the FAISS vector index.

Run with: pytest tests/test_vector_store.py -v
"""

import json

import pytest

from ferrebot.exceptions import DataInconsistencyError
from ferrebot.vector_store import SearchHit, VectorIndex


def one_hot(position: int, dimension: int = 8):
    vector = [0.0] * dimension
    vector[position] = 1.0
    return vector


@pytest.fixture(params=["flat", "hnsw"])
def index(request):
    return VectorIndex(dimension=8, index_type=request.param)


class TestVectorIndex:
    """Insert and search behaviour for both index types."""

    def test_ids_are_insertion_positions(self, index):
        assert index.add(one_hot(0)) == 0
        assert index.add_batch([one_hot(1), one_hot(2)]) == [1, 2]
        assert len(index) == 3

    def test_search_empty_index(self, index):
        assert index.search(one_hot(0), k=3) == []

    def test_nearest_first(self, index):
        index.add_batch([one_hot(0), one_hot(1), [1.0, 1.0, 0, 0, 0, 0, 0, 0]])

        hits = index.search(one_hot(1), k=3)

        assert hits[0].index == 1
        assert hits[0].distance == pytest.approx(0.0, abs=1e-5)
        assert [h.distance for h in hits] == sorted(h.distance for h in hits)

    def test_k_clamped_to_size(self, index):
        index.add_batch([one_hot(0), one_hot(1)])
        assert len(index.search(one_hot(0), k=10)) == 2

    def test_scale_invariant(self, index):
        """Vectors are normalised, so magnitude does not matter."""
        index.add([0.0, 5.0, 0, 0, 0, 0, 0, 0])
        hit = index.search(one_hot(1), k=1)[0]
        assert hit.similarity == pytest.approx(1.0, abs=1e-5)

    def test_wrong_dimension(self, index):
        with pytest.raises(ValueError):
            index.add([1.0, 2.0])

    def test_reset(self, index):
        index.add(one_hot(0))
        index.reset()
        assert len(index) == 0

    def test_unknown_index_type(self):
        with pytest.raises(ValueError):
            VectorIndex(dimension=8, index_type="ivf")


class TestSearchHit:
    def test_similarity_is_one_minus_distance(self):
        assert SearchHit(index=0, distance=0.25).similarity == pytest.approx(0.75)


class TestPersistence:
    """The index and its document list are saved and loaded as a pair."""

    def test_round_trip(self, tmp_path):
        index = VectorIndex(dimension=8, index_type="hnsw")
        index.add_batch([one_hot(0), one_hot(3)])
        documents = [{"id": "a"}, {"id": "b"}]
        index.save(tmp_path, documents)

        restored = VectorIndex(dimension=8, index_type="hnsw")
        assert restored.load(tmp_path) == documents
        assert restored.search(one_hot(3), k=1)[0].index == 1

    def test_artifacts_absent(self, tmp_path):
        assert VectorIndex.artifacts_exist(tmp_path) is False

    def test_missing_companion_file(self, tmp_path):
        index = VectorIndex(dimension=8)
        index.add(one_hot(0))
        index.save(tmp_path, [{"id": "a"}])

        _, documents_path = VectorIndex.artifact_paths(tmp_path)
        documents_path.unlink()

        with pytest.raises(DataInconsistencyError):
            VectorIndex.artifacts_exist(tmp_path)

    def test_save_refuses_count_mismatch(self, tmp_path):
        index = VectorIndex(dimension=8)
        index.add(one_hot(0))
        with pytest.raises(DataInconsistencyError):
            index.save(tmp_path, [])

    def test_load_detects_count_mismatch(self, tmp_path):
        index = VectorIndex(dimension=8)
        index.add_batch([one_hot(0), one_hot(1)])
        index.save(tmp_path, [{"id": "a"}, {"id": "b"}])

        _, documents_path = VectorIndex.artifact_paths(tmp_path)
        documents_path.write_text(json.dumps({"dimension": 8, "documents": [{"id": "a"}]}))

        with pytest.raises(DataInconsistencyError):
            VectorIndex(dimension=8).load(tmp_path)

    def test_load_detects_dimension_mismatch(self, tmp_path):
        index = VectorIndex(dimension=8)
        index.add(one_hot(0))
        index.save(tmp_path, [{"id": "a"}])

        with pytest.raises(DataInconsistencyError):
            VectorIndex(dimension=16).load(tmp_path)
