"""
LLM Module
==========

Completion client and contract analyzer.

Environment Variables:
- LLM_API_KEY: Required
- LLM_MODEL: Model name (default: gpt-4o)
- LLM_BASE_URL: OpenAI-compatible base URL
- LLM_TIMEOUT: Per-call timeout in seconds

Usage:
    from contract_analysis.llm import get_analyzer, parse_json_robust

    result = await get_analyzer().complete(text)
    data, ok, error = parse_json_robust(result.content)
"""

from .base import CompletionClient, LLMCallResult
from .analyzer import ANALYSIS_SYSTEM_PROMPT, ContractAnalyzerLLM, AnalyzerStats, get_analyzer
from .json_utils import parse_json_robust, safe_log_content

__all__ = [
    # Base
    "CompletionClient",
    "LLMCallResult",
    # Analyzer
    "ANALYSIS_SYSTEM_PROMPT",
    "ContractAnalyzerLLM",
    "AnalyzerStats",
    "get_analyzer",
    # Parsing
    "parse_json_robust",
    "safe_log_content",
]
