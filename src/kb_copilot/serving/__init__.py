"""
Serving — FastAPI application for search, chat and document indexing.

Run locally with::

    uvicorn kb_copilot.serving.app:app --reload
"""
