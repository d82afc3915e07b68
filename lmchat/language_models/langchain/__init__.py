"""LangChain interface to the language models of the providers.

The chat models of the providers are created from LanguageModelSettings
objects, which may be created in code or read from config.toml, and
are wrapped by LangChainChatModel to be used by the chat client.
Provider packages (langchain-openai, langchain-anthropic, ...) are
optional dependencies, imported when a model of the provider is
first created.
"""

# pyright: reportUnusedImport=false
# flake8: noqa

from .models import (
    langchain_models,
    create_model_from_settings,
    create_model_from_spec,
)
from .adapter import LangChainChatModel
