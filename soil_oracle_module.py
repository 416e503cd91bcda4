import sys
from dataclasses import dataclass
from typing import Optional
from langchain_core.output_parsers import StrOutputParser
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_ollama import ChatOllama
from soil_survey_config import (
    ORACLE_PROVIDERS, DEFAULT_ORACLE_PROVIDER, DEFAULT_OLLAMA_BASE_URL,
    ORACLE_TEMPERATURE, get_default_model
)

# ============================================================================
# SOIL ORACLE - LLM BEHIND A SINGLE generate(prompt) -> text CALL
# ============================================================================
#
# The classifier only needs raw text back. Anything with an
# ``async generate(prompt)`` method can stand in for the oracle:
#
#    - gemini (default): ChatGoogleGenerativeAI, needs an explicit api_key
#    - ollama: ChatOllama against a local server, no key
#
# Credentials and model names arrive through OracleSettings. This module never
# reads os.environ; the entry point does that once and passes values in.
#
# ============================================================================


@dataclass(frozen=True)
class OracleSettings:
    """Explicit oracle configuration (provider, model, credentials)."""

    provider: str = DEFAULT_ORACLE_PROVIDER
    model: Optional[str] = None
    temperature: float = ORACLE_TEMPERATURE
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    def resolved_model(self) -> str:
        return self.model or get_default_model(self.provider)


class LangChainSoilOracle:
    """Wraps a LangChain chat model as a plain text generator."""

    def __init__(self, llm, name: str = "llm"):
        self.llm = llm
        self.name = name
        self.chain = llm | StrOutputParser()

    async def generate(self, prompt: str) -> str:
        result = await self.chain.ainvoke(prompt)
        return (result or "").strip()

    def __repr__(self):
        return f"LangChainSoilOracle({self.name})"


def build_oracle(settings: OracleSettings) -> LangChainSoilOracle:
    """
    Build the soil oracle for the configured provider.

    Args:
        settings: Provider, model, temperature and credentials

    Returns:
        LangChainSoilOracle ready to generate classification text

    Raises:
        ValueError: If provider unknown or Gemini has no API key
    """
    provider = (settings.provider or "").lower()
    if provider not in ORACLE_PROVIDERS:
        raise ValueError(f"Unknown oracle provider: {settings.provider}. Must be one of {list(ORACLE_PROVIDERS)}")

    model = settings.model or get_default_model(provider)

    if provider == "gemini":
        if not settings.api_key:
            raise ValueError("Missing Google API Key")
        llm = ChatGoogleGenerativeAI(
            model=model,
            temperature=settings.temperature,
            google_api_key=settings.api_key,
        )
    else:
        llm = ChatOllama(
            model=model,
            base_url=settings.base_url or DEFAULT_OLLAMA_BASE_URL,
            temperature=settings.temperature,
        )

    print(f"✓ ORACLE: {provider} ({model}, temperature={settings.temperature})", file=sys.stderr)
    return LangChainSoilOracle(llm, name=f"{provider}:{model}")
