"""LLM-assisted mapping proposals for columns the deterministic engine left unmapped."""

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from ..models.dna import ColumnDNA

logger = logging.getLogger(__name__)


@dataclass
class LLMProposal:
    """A target chosen by the language model for one source column."""
    target_table: str
    target_column: str
    confidence: float  # 0-1, capped again by the engine
    reasoning: str


class LLMMappingAssistant:
    """
    Asks a language model to pick a target for an unmapped source column.

    Supports:
    - OpenAI and Anthropic providers (imported lazily)
    - Restricting the answer to pattern-compatible targets

    The model only ever chooses among the options it is given, and any
    provider error degrades to "no proposal".
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        provider: str = "openai"
    ):
        """
        Initialize the assistant.

        Args:
            api_key: API key for the LLM provider
            model: Model to use
            provider: LLM provider (openai, anthropic)
        """
        env_var = "ANTHROPIC_API_KEY" if provider == "anthropic" else "OPENAI_API_KEY"
        self.api_key = api_key or os.environ.get(env_var)
        self.model = model
        self.provider = provider

    @classmethod
    def from_settings(cls, settings) -> "LLMMappingAssistant":
        return cls(api_key=settings.api_key, model=settings.model, provider=settings.provider)

    def propose(
        self,
        column: ColumnDNA,
        options: List[Tuple[str, str]]
    ) -> Optional[LLMProposal]:
        """
        Propose a target for one column.

        Args:
            column: Profiled source column
            options: Allowed (table, column) targets

        Returns:
            LLMProposal, or None when the model declines or fails
        """
        if not options:
            return None

        prompt = self._build_prompt(column, options)
        try:
            response = self._call_llm(prompt, expect_json=True)
        except Exception as e:
            logger.error(f"LLM mapping proposal failed for {column.original_name}: {e}")
            return None

        return self._parse_response(response, options)

    def _build_prompt(self, column: ColumnDNA, options: List[Tuple[str, str]]) -> str:
        """Build the mapping prompt."""
        return f"""
You are a healthcare data migration expert. Pick the best target column for a source column.

Source column: {column.original_name}
Detected pattern: {column.primary_pattern.value}
Sample values:
{json.dumps(list(column.sample_values), indent=2)}

Allowed targets (table.column):
{json.dumps([f"{t}.{c}" for t, c in options], indent=2)}

Respond in JSON format:
{{
    "target": "table.column from the allowed list, or null if none fits",
    "confidence": 0.0,
    "reasoning": "one sentence"
}}
"""

    def _parse_response(self, response: Any, options: List[Tuple[str, str]]) -> Optional[LLMProposal]:
        if not isinstance(response, dict):
            return None

        target = response.get("target")
        if not target or "." not in str(target):
            return None

        table, _, column = str(target).partition(".")
        if (table, column) not in options:
            logger.warning(f"LLM proposed a target outside the allowed set: {target}")
            return None

        try:
            confidence = float(response.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0

        return LLMProposal(
            target_table=table,
            target_column=column,
            confidence=confidence,
            reasoning=str(response.get("reasoning", "")),
        )

    def _call_llm(self, prompt: str, expect_json: bool = False) -> Any:
        """Call the LLM API."""
        if self.provider == "openai":
            return self._call_openai(prompt, expect_json)
        elif self.provider == "anthropic":
            return self._call_anthropic(prompt, expect_json)
        else:
            raise ValueError(f"Unsupported provider: {self.provider}")

    def _call_openai(self, prompt: str, expect_json: bool = False) -> Any:
        """Call OpenAI API."""
        try:
            import openai
        except ImportError:
            raise ImportError("openai package required for OpenAI mapping assistance")

        client = openai.OpenAI(api_key=self.api_key)

        kwargs = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": 0.0,
            "max_tokens": 512,
        }
        if expect_json:
            kwargs["response_format"] = {"type": "json_object"}

        response = client.chat.completions.create(**kwargs)
        content = response.choices[0].message.content

        if expect_json:
            return json.loads(content)
        return content

    def _call_anthropic(self, prompt: str, expect_json: bool = False) -> Any:
        """Call Anthropic API."""
        try:
            import anthropic
        except ImportError:
            raise ImportError("anthropic package required for Anthropic mapping assistance")

        client = anthropic.Anthropic(api_key=self.api_key)

        response = client.messages.create(
            model=self.model,
            max_tokens=512,
            messages=[{"role": "user", "content": prompt}]
        )
        content = response.content[0].text

        if expect_json:
            json_match = re.search(r'[\[{][\s\S]*[\]}]', content)
            if json_match:
                return json.loads(json_match.group())

        return content
