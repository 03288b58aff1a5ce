from typing import List
import hashlib
import math
import re

from langchain_core.embeddings import Embeddings


_TOKEN_PATTERN = re.compile(r"\w+")


class HashingEmbeddings(Embeddings):
    """Deterministic bag-of-words embeddings using the hashing trick.

    Each lower-cased token is hashed into one of ``dimensions`` buckets and the
    resulting count vector is L2-normalised, so cosine similarity reduces to a
    dot product. Stands in for a real embedding model in tests and local runs.
    """

    def __init__(self, dimensions: int = 384):
        self.dimensions = dimensions

    def _bucket(self, token: str) -> int:
        digest = hashlib.md5(token.encode("utf-8")).hexdigest()
        return int(digest, 16) % self.dimensions

    def _embed(self, text: str) -> List[float]:
        vector = [0.0] * self.dimensions
        for token in _TOKEN_PATTERN.findall(text.lower()):
            vector[self._bucket(token)] += 1.0

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self._embed(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        return self._embed(text)


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 if either is zero"""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)
