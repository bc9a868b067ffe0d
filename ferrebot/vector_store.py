"""
Vector Store Module

FAISS index over FAQ document embeddings.

Vectors are L2-normalised before insert and query, so the inner product the
index computes is cosine similarity. Results are reported as cosine
*distance* (1 - similarity), smaller is closer. Index-internal ids are
sequential insertion positions, which lets callers keep a plain list of
documents alongside the index.

Two index types:
- hnsw: IndexHNSWFlat with METRIC_INNER_PRODUCT (approximate, default)
- flat: IndexFlatIP (exact, useful for tiny knowledge bases and tests)

The FAISS binary and the JSON document list are always written and read as a
pair. Finding only one of them, or a pair whose sizes disagree, is a
DataInconsistencyError.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple

import faiss
import numpy as np

from ferrebot.exceptions import DataInconsistencyError

# Configure logging
logger = logging.getLogger(__name__)

INDEX_FILENAME = "index.faiss"
DOCUMENTS_FILENAME = "documents.json"


@dataclass
class SearchHit:
    """
    A single nearest-neighbour match.

    Attributes:
        index: Index-internal id (insertion position)
        distance: Cosine distance, 0 for identical direction
    """
    index: int
    distance: float

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


class VectorIndex:
    """
    FAISS cosine index with paired on-disk persistence.

    Example:
        index = VectorIndex(dimension=384)
        idx = index.add(vector)
        hits = index.search(query_vector, k=1)
        index.save(index_dir, documents)
    """

    def __init__(
        self,
        dimension: int,
        index_type: str = "hnsw",
        hnsw_m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 64,
    ):
        """
        Initialize an empty index.

        Args:
            dimension: Embedding dimension (must match the embedder)
            index_type: "hnsw" or "flat"
            hnsw_m: HNSW graph degree
            ef_construction: HNSW build-time candidate list size
            ef_search: HNSW query-time candidate list size
        """
        if index_type not in ("hnsw", "flat"):
            raise ValueError(f"Unknown index type: {index_type}")

        self.dimension = dimension
        self.index_type = index_type
        self.hnsw_m = hnsw_m
        self.ef_construction = ef_construction
        self.ef_search = ef_search

        self._index = self._create_index()

        logger.info(
            f"VectorIndex initialized: dimension={dimension}, type={index_type}"
        )

    def _create_index(self):
        """Build an empty FAISS index of the configured type."""
        if self.index_type == "flat":
            return faiss.IndexFlatIP(self.dimension)

        index = faiss.IndexHNSWFlat(self.dimension, self.hnsw_m, faiss.METRIC_INNER_PRODUCT)
        index.hnsw.efConstruction = self.ef_construction
        index.hnsw.efSearch = self.ef_search
        return index

    def _normalize(self, vectors: np.ndarray) -> np.ndarray:
        """Normalize vectors for cosine similarity."""
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms[norms == 0] = 1  # Avoid division by zero
        return vectors / norms

    def _prepare(self, vectors: List[List[float]]) -> np.ndarray:
        array = np.asarray(vectors, dtype=np.float32)
        if array.ndim != 2 or array.shape[1] != self.dimension:
            raise ValueError(
                f"Expected vectors of dimension {self.dimension}, got shape {array.shape}"
            )
        return np.ascontiguousarray(self._normalize(array), dtype=np.float32)

    def add(self, vector: List[float]) -> int:
        """
        Insert one vector.

        Returns:
            The id assigned to the vector (its insertion position)
        """
        return self.add_batch([vector])[0]

    def add_batch(self, vectors: List[List[float]]) -> List[int]:
        """Insert several vectors, returning their ids in order."""
        if not vectors:
            return []

        start = self._index.ntotal
        self._index.add(self._prepare(vectors))
        return list(range(start, start + len(vectors)))

    def search(self, vector: List[float], k: int = 1) -> List[SearchHit]:
        """
        Find the k nearest vectors.

        Args:
            vector: Query vector
            k: Number of neighbours (clamped to the index size)

        Returns:
            SearchHit list ordered by ascending distance; empty for an empty index
        """
        if self._index.ntotal == 0:
            logger.warning("Search on empty index")
            return []

        k = max(1, min(k, self._index.ntotal))
        scores, ids = self._index.search(self._prepare([vector]), k)

        hits = []
        for score, idx in zip(scores[0], ids[0]):
            if idx < 0:  # FAISS pads missing neighbours with -1
                continue
            hits.append(SearchHit(index=int(idx), distance=1.0 - float(score)))

        hits.sort(key=lambda h: h.distance)
        return hits

    def reset(self) -> None:
        """Drop every vector."""
        self._index = self._create_index()

    def __len__(self) -> int:
        return self._index.ntotal

    @staticmethod
    def artifact_paths(index_dir) -> Tuple[Path, Path]:
        """Return (index_path, documents_path) inside index_dir."""
        base = Path(index_dir)
        return base / INDEX_FILENAME, base / DOCUMENTS_FILENAME

    @classmethod
    def artifacts_exist(cls, index_dir) -> bool:
        """
        True when both artifacts are on disk, False when neither is.

        Raises:
            DataInconsistencyError: If only one of the pair exists
        """
        index_path, documents_path = cls.artifact_paths(index_dir)
        has_index = index_path.exists()
        has_documents = documents_path.exists()

        if has_index != has_documents:
            present = index_path if has_index else documents_path
            raise DataInconsistencyError(
                f"Found {present.name} without its companion file in {index_dir}",
                details={"index": has_index, "documents": has_documents},
            )
        return has_index

    def save(self, index_dir, documents: List[Dict[str, Any]]) -> None:
        """
        Persist the index and its document list together.

        Args:
            index_dir: Directory receiving both files
            documents: One entry per vector, in insertion order
        """
        if len(documents) != self._index.ntotal:
            raise DataInconsistencyError(
                f"Refusing to save {self._index.ntotal} vectors with {len(documents)} documents"
            )

        index_path, documents_path = self.artifact_paths(index_dir)
        index_path.parent.mkdir(parents=True, exist_ok=True)

        faiss.write_index(self._index, str(index_path))
        with open(documents_path, "w", encoding="utf-8") as f:
            json.dump(
                {"dimension": self.dimension, "documents": documents},
                f,
                ensure_ascii=False,
                indent=2,
            )

        logger.debug(f"Saved vector index ({self._index.ntotal} vectors) to {index_dir}")

    def load(self, index_dir) -> List[Dict[str, Any]]:
        """
        Load a previously saved pair, replacing the in-memory index.

        Returns:
            The stored document list

        Raises:
            DataInconsistencyError: Missing companion file, size or dimension mismatch
        """
        if not self.artifacts_exist(index_dir):
            raise FileNotFoundError(f"No vector index found in {index_dir}")

        index_path, documents_path = self.artifact_paths(index_dir)
        index = faiss.read_index(str(index_path))

        with open(documents_path, "r", encoding="utf-8") as f:
            payload = json.load(f)

        documents = payload.get("documents", [])

        if index.d != self.dimension:
            raise DataInconsistencyError(
                f"Stored index has dimension {index.d}, embedder produces {self.dimension}"
            )
        if index.ntotal != len(documents):
            raise DataInconsistencyError(
                f"Stored index has {index.ntotal} vectors but {len(documents)} documents",
                details={"vectors": index.ntotal, "documents": len(documents)},
            )

        if hasattr(index, "hnsw"):
            index.hnsw.efSearch = self.ef_search
        self._index = index

        logger.info(f"Loaded vector index with {index.ntotal} vectors from {index_dir}")
        return documents
