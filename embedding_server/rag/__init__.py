"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Text chunking with boundary-aware overlap
- Vector normalization and cosine similarity
- The embedding gateway contract
- Embedding and document stores with top-K search
- Ingestion and RAG orchestration
"""
