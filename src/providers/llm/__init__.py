"""LLM provider implementations.

OpenAILLMProvider serves the optional LLM-assisted cleansing stage through
any OpenAI-compatible chat completions endpoint.
"""

from src.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["OpenAILLMProvider"]
