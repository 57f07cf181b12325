"""
Contract Analyzer LLM Client
============================

Sends a contract's text to the completion API and returns the raw
completion. Parsing and validation happen in the orchestrator.

Role:
- One call per analysis, temperature 0, JSON object mode
- No retries; a failed call is reported, not repeated
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..config import Settings, get_settings
from .base import CompletionClient, LLMCallResult

logger = logging.getLogger(__name__)


ANALYSIS_SYSTEM_PROMPT = """You are an experienced contract analyst.

Read the contract text supplied by the user and describe it. Use only facts
that appear in the text; never invent parties, dates or amounts.

Return a single JSON object with exactly these keys:
{
  "summary": "3-5 sentence plain-language summary",
  "title": "the contract's title",
  "counterparty": "the main party other than the uploader's organization",
  "contractType": "e.g. NDA, MSA, Lease, Employment, SOW",
  "value": "total contract value with currency, as written",
  "effectiveDate": "YYYY-MM-DD",
  "expiryDate": "YYYY-MM-DD",
  "riskLevel": "low|medium|high",
  "parties": [{"name": "...", "role": "..."}],
  "keyDates": [{"date": "YYYY-MM-DD", "event": "..."}],
  "risks": [{"level": "High|Medium|Low", "description": "..."}],
  "insights": [{"type": "obligation|renewal|termination|payment|other", "title": "...", "content": "..."}]
}

Omit a scalar key when the text does not state it. Use empty lists when
nothing applies. Respond with JSON only."""


@dataclass
class AnalyzerStats:
    """Statistics for analyzer calls"""
    calls: int = 0
    successful: int = 0
    failed: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0


class ContractAnalyzerLLM:
    """
    Contract analyzer over an OpenAI-compatible completion API.

    `client` may be injected (tests); otherwise one is built from settings.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[CompletionClient] = None,
    ):
        settings = settings or get_settings()
        self.max_tokens = settings.llm_max_tokens
        self.max_input_chars = settings.llm_max_input_chars
        self.stats = AnalyzerStats()
        self.client = client or CompletionClient(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            timeout=settings.llm_timeout,
        )

        if not settings.llm_api_key and client is None:
            logger.warning("Analyzer has no LLM_API_KEY; completions will fail")

    async def close(self):
        """Close the client"""
        await self.client.close()

    async def complete(self, text_content: str) -> LLMCallResult:
        """
        Request an analysis of one document.

        Args:
            text_content: Extracted contract text

        Returns:
            LLMCallResult with the raw completion or error
        """
        self.stats.calls += 1

        if len(text_content) > self.max_input_chars:
            logger.info(
                f"Document text truncated from {len(text_content)} "
                f"to {self.max_input_chars} chars"
            )
            text_content = text_content[:self.max_input_chars]

        messages = [
            {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
            {"role": "user", "content": f"Analyze this contract:\n\n{text_content}"},
        ]

        result = await self.client.call(
            messages=messages,
            response_format={"type": "json_object"},
            temperature=0,
            max_tokens=self.max_tokens,
        )

        if result.success:
            self.stats.successful += 1
            self.stats.total_input_tokens += result.input_tokens
            self.stats.total_output_tokens += result.output_tokens
        else:
            self.stats.failed += 1

        return result


# Singleton instance
_analyzer: Optional[ContractAnalyzerLLM] = None


def get_analyzer() -> ContractAnalyzerLLM:
    """Get singleton analyzer instance"""
    global _analyzer
    if _analyzer is None:
        _analyzer = ContractAnalyzerLLM()
    return _analyzer
