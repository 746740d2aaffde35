"""
kb_copilot — document knowledge base with a tier-aware streaming copilot.

Subpackages
-----------
- :mod:`kb_copilot.ingestion` — extract, chunk, embed and index documents.
- :mod:`kb_copilot.retrieval` — index stores and the semantic retriever.
- :mod:`kb_copilot.copilot` — session orchestration and prompt assembly.
- :mod:`kb_copilot.serving` — FastAPI application.
"""

__version__ = "0.1.0"
