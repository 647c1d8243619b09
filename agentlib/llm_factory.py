"""
LLM Factory - builds LangChain chat clients for graph nodes.

Graph nodes reference a model as (provider, name). ``LLMFactory`` turns
that pair into a LangChain chat model; ``ModelClientArena`` makes sure each
distinct pair is built once per compile and shared by reference.

Supported providers: openai, openrouter, azure, ollama.
"""

import logging
from typing import Callable, Dict, Optional, Tuple

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from agentlib.config import LLMSettings, llm_settings
from agentlib.exceptions import BuildError, ConfigError

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai", "openrouter", "azure", "ollama")

ClientFactory = Callable[[str, str], BaseChatModel]


class LLMFactory:
    """
    Builds LangChain chat clients from a (provider, model name) pair.

    OpenAI, OpenRouter and Ollama all speak the OpenAI API and use
    ``ChatOpenAI`` with a provider-specific base URL. Azure uses
    ``AzureChatOpenAI`` with the model name as deployment name.
    """

    def __init__(self, config: Optional[LLMSettings] = None):
        self.config = config or llm_settings

    def build_client(self, provider: str, model_name: str) -> BaseChatModel:
        provider = (provider or "").strip().lower()
        model_name = (model_name or "").strip()
        if not model_name:
            raise ConfigError("model name is required")

        if provider == "openai":
            return ChatOpenAI(
                model=model_name,
                api_key=self._require_key(self.config.openai_api_key, "OPENAI_API_KEY"),
                base_url=self.config.openai_base_url,
                **self._common_params(),
            )
        if provider == "openrouter":
            return ChatOpenAI(
                model=model_name,
                api_key=self._require_key(self.config.openrouter_api_key, "OPENROUTER_API_KEY"),
                base_url=self.config.openrouter_base_url,
                **self._common_params(),
            )
        if provider == "azure":
            if not self.config.azure_openai_endpoint:
                raise ConfigError("AZURE_OPENAI_ENDPOINT is required for provider 'azure'")
            return AzureChatOpenAI(
                azure_endpoint=self.config.azure_openai_endpoint,
                azure_deployment=model_name,
                api_key=self._require_key(self.config.azure_openai_api_key, "AZURE_OPENAI_API_KEY"),
                api_version=self.config.azure_openai_api_version,
                **self._common_params(),
            )
        if provider == "ollama":
            # Ollama ignores the key but the OpenAI client requires one.
            return ChatOpenAI(
                model=model_name,
                api_key="ollama",
                base_url=self.config.ollama_base_url,
                **self._common_params(),
            )

        raise ConfigError(
            f"Provider '{provider}' not supported. Supported: {', '.join(SUPPORTED_PROVIDERS)}"
        )

    def _common_params(self) -> Dict:
        return {
            "temperature": self.config.default_temperature,
            "max_tokens": self.config.default_max_tokens,
            "timeout": self.config.request_timeout_seconds,
        }

    @staticmethod
    def _require_key(value: Optional[str], env_name: str) -> str:
        if not value:
            raise ConfigError(f"API key not found in environment variable: {env_name}")
        return value


class ModelClientArena:
    """
    Per-compile cache of chat clients keyed by (provider, model name).

    Provider names compare case-insensitively; model names compare exactly.
    """

    def __init__(self, factory: ClientFactory):
        self._factory = factory
        self._clients: Dict[Tuple[str, str], BaseChatModel] = {}

    def get(self, provider: str, model_name: str) -> BaseChatModel:
        key = ((provider or "").strip().lower(), (model_name or "").strip())
        client = self._clients.get(key)
        if client is None:
            try:
                client = self._factory(*key)
            except (ConfigError, BuildError):
                raise
            except Exception as e:
                raise BuildError(f"failed to create model client {key[0]}/{key[1]}: {e}") from e
            self._clients[key] = client
            logger.info(f"[LLM] Created model client provider={key[0]} model={key[1]}")
        return client

    def __len__(self) -> int:
        return len(self._clients)
