from .embeddings import HashingEmbeddings, cosine_similarity
from .vector_memory_store import InMemoryMemoryStore, MemoryStore

__all__ = ["HashingEmbeddings", "cosine_similarity", "InMemoryMemoryStore", "MemoryStore"]
