"""
Vector Search
=============

Building blocks for semantic retrieval:
- Embedder / EmbeddingGenerator: text → vector
- VectorStore: cosine-similarity index over embedded documents

The semantic memory tier and the experience store are both built on
these two pieces.
"""

from learnloop.vector.embeddings import Embedder, EmbeddingGenerator
from learnloop.vector.vectorstore import VectorDocument, VectorStore

__all__ = ["Embedder", "EmbeddingGenerator", "VectorDocument", "VectorStore"]
