"""
Ingestion — text extraction, chunking, embedding and index writes.

Turns uploaded documents (plain text, Markdown, HTML, PDF, Office files)
into embedded chunks held by an index store, and keeps each document's
indexing status up to date.
"""
