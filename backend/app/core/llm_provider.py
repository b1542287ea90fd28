"""
Provider-agnostic LLM factory.

Switch providers by changing env vars, no code changes needed:
  FAST_LLM_PROVIDER / DEEP_LLM_PROVIDER = deepseek | openai | gemini | groq
  EMBEDDING_PROVIDER = openai | gemini

DeepSeek exposes an OpenAI-compatible API, so it goes through ChatOpenAI
with a custom base URL.
"""

from typing import Literal

from langchain_core.language_models import BaseChatModel

from app.config import get_settings, Settings

LLMProfile = Literal["fast", "deep"]


def create_llm(profile: LLMProfile = "fast", settings: Settings | None = None) -> BaseChatModel:
    """Create the chat model for one routing profile.

    Args:
        profile: "fast" for simple questions, "deep" for reasoning-heavy ones.

    Returns:
        BaseChatModel: A LangChain-compatible chat model.

    Raises:
        ValueError: If provider is not supported.
    """
    settings = settings or get_settings()
    prefix = "FAST_LLM" if profile == "fast" else "DEEP_LLM"
    provider = getattr(settings, f"{prefix}_PROVIDER")
    model = getattr(settings, f"{prefix}_MODEL")
    api_key = getattr(settings, f"{prefix}_API_KEY")
    base_url = getattr(settings, f"{prefix}_BASE_URL")
    temperature = getattr(settings, f"{prefix}_TEMPERATURE")
    max_tokens = getattr(settings, f"{prefix}_MAX_TOKENS")

    match provider:
        case "deepseek" | "openai":
            from langchain_openai import ChatOpenAI

            return ChatOpenAI(
                model=model,
                api_key=api_key,
                base_url=base_url if provider == "deepseek" else None,
                temperature=temperature,
                max_tokens=max_tokens,
            )

        case "gemini":
            from langchain_google_genai import ChatGoogleGenerativeAI

            return ChatGoogleGenerativeAI(
                model=model,
                google_api_key=api_key,
                temperature=temperature,
                max_output_tokens=max_tokens,
            )

        case "groq":
            from langchain_groq import ChatGroq

            return ChatGroq(
                model=model,
                api_key=api_key,
                temperature=temperature,
                max_tokens=max_tokens,
            )

        case _:
            raise ValueError(
                f"Unknown LLM provider: '{provider}'. "
                f"Supported: deepseek, openai, gemini, groq"
            )


def create_embeddings(settings: Settings | None = None):
    """Create an embedding model based on env configuration.

    Returns:
        Embeddings instance for vector generation.
    """
    settings = settings or get_settings()

    match settings.EMBEDDING_PROVIDER:
        case "openai":
            from langchain_openai import OpenAIEmbeddings

            return OpenAIEmbeddings(
                model=settings.EMBEDDING_MODEL,
                api_key=settings.EMBEDDING_API_KEY,
            )

        case "gemini":
            from langchain_google_genai import GoogleGenerativeAIEmbeddings

            return GoogleGenerativeAIEmbeddings(
                model=f"models/{settings.EMBEDDING_MODEL}",
                google_api_key=settings.EMBEDDING_API_KEY,
            )

        case _:
            raise ValueError(
                f"Unknown embedding provider: '{settings.EMBEDDING_PROVIDER}'. "
                f"Supported: openai, gemini"
            )
