"""
Language Model (LLM) client configuration.

This module provides:
- GenAI SDK client for Gemini
- ChatGroq instances for Groq

Clients are created on demand from explicit API keys, so a provider without
a configured key is never instantiated.
"""
from functools import lru_cache

from google import genai
from langchain_groq import ChatGroq


@lru_cache(maxsize=4)
def get_genai_client(api_key: str) -> genai.Client:
    """Get or create the GenAI SDK client for an API key."""
    return genai.Client(api_key=api_key)


def get_chat_groq(model: str, api_key: str, temperature: float, timeout: float) -> ChatGroq:
    """
    Create a ChatGroq instance for one model.

    SDK-level retries are disabled; retries are owned by the retry policy.
    """
    return ChatGroq(
        model=model,
        temperature=temperature,
        api_key=api_key,
        timeout=timeout,
        max_retries=0,
    )
