from .llm_client import BaseLLMClient, LangChainLLMClient, NullLLMClient, create_llm_client
from .social_five import SocialFiveNormalizer, SocialFiveOutput

__all__ = [
    "BaseLLMClient",
    "LangChainLLMClient",
    "NullLLMClient",
    "SocialFiveNormalizer",
    "SocialFiveOutput",
    "create_llm_client",
]
