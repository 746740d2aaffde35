"""LLM initialisation — single place to swap providers.

Supports two modes:

1. **OpenAI cloud** (default) — set ``KB_OPENAI_API_KEY``.
2. **OpenAI-compatible endpoint** — set ``KB_LLM_BASE_URL`` to any server
   exposing ``/v1/chat/completions`` (vLLM, Ollama, LiteLLM, ...), so
   ``ChatOpenAI`` works unchanged.
"""

from __future__ import annotations

import logging

from langchain_openai import ChatOpenAI

from kb_copilot.config import Settings, settings

logger = logging.getLogger(__name__)


def get_llm(config: Settings = settings) -> ChatOpenAI:
    """Return the configured streaming chat model.

    When ``llm_base_url`` is set the client is pointed at that endpoint
    instead of the OpenAI cloud API.  A dummy API key (``"EMPTY"``) is
    used because self-hosted servers usually do not require one.
    """
    kwargs: dict = {
        "model": config.llm_model_name,
        "temperature": config.llm_temperature,
        "max_tokens": config.llm_max_tokens,
        "streaming": True,
        # LangChain requires a non-empty value.
        "api_key": config.openai_api_key or "EMPTY",
    }

    if config.llm_base_url:
        logger.info("Using OpenAI-compatible LLM endpoint: %s", config.llm_base_url)
        kwargs["base_url"] = config.llm_base_url

    return ChatOpenAI(**kwargs)
