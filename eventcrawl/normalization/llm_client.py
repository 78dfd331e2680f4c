"""
LLM client used by Scout (recipe generation) and the Social Five pass.

Provides a unified interface for LLM calls using LangChain.
Supports OpenAI and Anthropic providers with structured output.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
}


class LLMUnavailableError(RuntimeError):
    """No provider is configured or the provider package is missing."""


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    @property
    def is_available(self) -> bool:
        return True

    @abstractmethod
    def invoke_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        output_schema: Type[T],
    ) -> T:
        """Invoke the LLM and return output matching the schema."""


class LangChainLLMClient(BaseLLMClient):
    """
    LLM Client using LangChain for structured output.

    Uses with_structured_output for Pydantic model enforcement.
    """

    def __init__(
        self,
        provider: str = "openai",
        model_name: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout_s: float = 60.0,
    ):
        """
        Initialize the LangChain LLM client.

        Args:
            provider: "openai" or "anthropic"
            model_name: Model identifier, defaults per provider
            api_key: API key for the provider
            temperature: Temperature for generation (0.0-1.0)
            max_tokens: Maximum tokens in response
        """
        self.provider = provider
        self.model_name = model_name or DEFAULT_MODELS.get(provider, "gpt-4o-mini")
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_s = timeout_s
        self._llm = None

    def _get_llm(self):
        """Lazy initialization of LLM."""
        if self._llm is not None:
            return self._llm

        if not self.api_key:
            logger.warning("No API key configured for %s", self.provider)
            return None

        try:
            if self.provider == "openai":
                from langchain_openai import ChatOpenAI

                self._llm = ChatOpenAI(
                    model=self.model_name,
                    api_key=self.api_key,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    timeout=self.timeout_s,
                )
            elif self.provider == "anthropic":
                from langchain_anthropic import ChatAnthropic

                self._llm = ChatAnthropic(
                    model=self.model_name,
                    api_key=self.api_key,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    timeout=self.timeout_s,
                )
            else:
                raise ValueError(f"Unknown provider: {self.provider}")
            return self._llm

        except ImportError as e:
            logger.warning("LangChain provider package not installed: %s", e)
            return None

    @property
    def is_available(self) -> bool:
        return self._get_llm() is not None

    def invoke_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        output_schema: Type[T],
    ) -> T:
        llm = self._get_llm()
        if not llm:
            raise LLMUnavailableError(f"LLM not available for provider {self.provider}")

        from langchain_core.messages import HumanMessage, SystemMessage

        structured_llm = llm.with_structured_output(output_schema)
        return structured_llm.invoke(
            [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        )


class NullLLMClient(BaseLLMClient):
    """Stand-in when no LLM is configured; callers fall back to heuristics."""

    @property
    def is_available(self) -> bool:
        return False

    def invoke_structured(self, system_prompt, user_prompt, output_schema):
        raise LLMUnavailableError("No LLM configured")


def create_llm_client(
    provider: str = "openai",
    model_name: Optional[str] = None,
    api_key: Optional[str] = None,
    temperature: float = 0.1,
) -> BaseLLMClient:
    """
    Factory function to create an LLM client.

    Returns a NullLLMClient when the provider cannot be initialized, so
    callers check `is_available` instead of catching construction errors.
    """
    client = LangChainLLMClient(
        provider=provider,
        model_name=model_name,
        api_key=api_key,
        temperature=temperature,
    )
    if client.is_available:
        return client
    logger.info("LLM unavailable for %s, using heuristics only", provider)
    return NullLLMClient()
