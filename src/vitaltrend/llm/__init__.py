"""
VitalTrend LLM Module

Text-generation providers used for route classification and narrative
summaries, with mock support for local development.
"""

from vitaltrend.llm.client import (
    BaseLLMClient,
    MockLLMClient,
    BedrockLLMClient,
    OllamaLLMClient,
    LLMClient,
    get_llm_client,
    extract_json,
)

__all__ = [
    "BaseLLMClient",
    "MockLLMClient",
    "BedrockLLMClient",
    "OllamaLLMClient",
    "LLMClient",
    "get_llm_client",
    "extract_json",
]
