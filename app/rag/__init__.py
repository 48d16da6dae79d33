"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Markup cleaning and portfolio markdown parsing
- Token-aware chunking with overlap and content fingerprinting
- Embedding generation with retries
- FAISS vector storage
- Section extraction, citations and question answering
"""
