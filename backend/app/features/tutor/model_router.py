"""
Tutor feature: Model router.

Simple questions go to the fast backend, complex ones to the deep
(reasoning) backend. If the deep backend fails the question is answered by
the fast backend instead and the response is marked as a fallback.
"""

import asyncio
import logging
from dataclasses import dataclass

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from app.config import Settings
from app.core.exceptions import ModelBackendError
from app.core.llm_provider import create_llm
from app.features.tutor.complexity import QueryComplexity, analyze_query_complexity
from app.features.tutor.prompts import build_system_prompt, build_user_prompt

logger = logging.getLogger(__name__)


def message_text(content) -> str:
    """Flatten LangChain message content (plain string or list of content blocks)."""
    if isinstance(content, list):
        return "\n".join(
            part["text"] if isinstance(part, dict) else str(part)
            for part in content
            if isinstance(part, str) or (isinstance(part, dict) and part.get("type") == "text")
        )
    return str(content or "")


class ModelBackend:
    """One chat model: `complete(system_prompt, user_prompt) -> text`."""

    def __init__(self, name: str, llm: BaseChatModel, timeout: float | None = None):
        self.name = name
        self.llm = llm
        self.timeout = timeout

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        Raises:
            ModelBackendError: timeout, provider error or empty response.
        """
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        try:
            response = await asyncio.wait_for(self.llm.ainvoke(messages), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ModelBackendError(self.name, f"timed out after {self.timeout}s")
        except Exception as e:
            raise ModelBackendError(self.name, str(e)) from e

        text = message_text(response.content).strip()
        if not text:
            raise ModelBackendError(self.name, "empty response")
        return text


@dataclass(frozen=True)
class RoutedResponse:
    content: str
    model_used: str
    is_fallback: bool
    complexity: QueryComplexity


class ModelRouter:
    def __init__(self, fast: ModelBackend, deep: ModelBackend):
        self.fast = fast
        self.deep = deep

    @classmethod
    def from_settings(cls, settings: Settings) -> "ModelRouter":
        return cls(
            fast=ModelBackend(
                settings.FAST_LLM_MODEL, create_llm("fast", settings), settings.LLM_TIMEOUT_SECONDS
            ),
            deep=ModelBackend(
                settings.DEEP_LLM_MODEL, create_llm("deep", settings), settings.LLM_TIMEOUT_SECONDS
            ),
        )

    async def route(self, query: str, subject_id: str | None, context: str = "") -> RoutedResponse:
        """Answer `query` with the backend its complexity calls for.

        Raises:
            ModelBackendError: the fast backend failed (directly or as fallback).
        """
        complexity = analyze_query_complexity(query)
        system_prompt = build_system_prompt(subject_id)
        user_prompt = build_user_prompt(query, context)

        if complexity.is_complex:
            logger.info(
                f"🧠 Complex query (score={complexity.score}), using {self.deep.name}: "
                f"{', '.join(complexity.reasons)}"
            )
            try:
                content = await self.deep.complete(system_prompt, user_prompt)
                return RoutedResponse(content, self.deep.name, False, complexity)
            except ModelBackendError as e:
                logger.warning(f"⚠️ {self.deep.name} failed ({e.detail}), falling back to {self.fast.name}")
                content = await self.fast.complete(system_prompt, user_prompt)
                return RoutedResponse(content, self.fast.name, True, complexity)

        logger.info(f"⚡ Simple query (score={complexity.score}), using {self.fast.name}")
        content = await self.fast.complete(system_prompt, user_prompt)
        return RoutedResponse(content, self.fast.name, False, complexity)
