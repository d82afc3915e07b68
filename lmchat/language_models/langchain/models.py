"""
This module implements creation of LangChain chat model objects
wrapping the calls to the primitive model API of the providers. The
model objects are stored in the global repository langchain_models,
so that a model is created once for each configuration.

The models are created from LanguageModelSettings objects, which may
be given programmatically, read from config.toml as part of the
Settings object, or built from the arguments of
create_model_from_spec.

Examples:

```python
from lmchat.language_models.langchain.models import (
    create_model_from_spec,
    create_model_from_settings,
    langchain_models,
)
from lmchat.config.config import LanguageModelSettings, Settings

# Using a LanguageModelSettings object
settings = LanguageModelSettings(
    model="OpenAI/gpt-4.1-mini",
    temperature=0.7,
    max_tokens=1000,
)
model = create_model_from_settings(settings)

# Using the settings of config.toml
model = create_model_from_settings(Settings().model)

# Using a specification
model = create_model_from_spec("Mistral/mistral-small-latest")

# The Debug provider creates a fake model that does not use the
# network. It returns provider_params['message'] if given, or else
# "Message 1", "Message 2", ...
model = create_model_from_spec(
    "Debug/fake", provider_params={'message': "Hello"}
)
```

Behaviour:
    Raises ImportError if the package of the provider is not
    installed, and ValidationError for invalid specifications.

Note:
    Support for new providers is added here by extending the
    match ... case statement in _create_model_instance, and the
    ModelSource literal in config.py.
"""

from collections.abc import Iterator
from itertools import count, repeat
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel

from ..lazy_dict import LazyLoadingDict
from lmchat.config.config import (
    LanguageModelSettings,
    ModelSource,
    ProviderParam,
)


def _install_hint(provider: str, package: str) -> str:
    return (
        f"{provider} models require the '{package}' package. "
        f"Install it with: pip install {package}"
    )


def _debug_messages(message: str | None) -> Iterator[str]:
    if message is not None:
        return repeat(message)
    return (f"Message {n}" for n in count(1))


def _create_model_instance(
    model: LanguageModelSettings,
) -> BaseChatModel:
    """
    Factory function to create LangChain models while checking
    permissible sources.
    """
    model_source: ModelSource = model.get_model_source()
    model_name: str = model.get_model_name()
    kwargs: dict[str, Any]
    match model_source:
        case "Anthropic":
            try:
                from langchain_anthropic.chat_models import (
                    ChatAnthropic,
                )
            except ImportError as e:
                raise ImportError(
                    _install_hint("Anthropic", "langchain-anthropic")
                ) from e

            kwargs = {
                "model_name": model_name,
                "temperature": model.temperature,
                "max_tokens_to_sample": model.max_tokens or 1024,
                "timeout": model.timeout,
                "max_retries": model.max_retries,
                "stop": None,
            }
            kwargs.update(model.provider_params)
            return ChatAnthropic(**kwargs)

        case "Gemini":
            try:
                from langchain_google_genai import (
                    ChatGoogleGenerativeAI,
                )
            except ImportError as e:
                raise ImportError(
                    _install_hint("Gemini", "langchain-google-genai")
                ) from e

            kwargs = {
                "model": model_name,
                "temperature": model.temperature,
                "max_retries": model.max_retries,
            }
            if model.max_tokens is not None:
                kwargs["max_output_tokens"] = model.max_tokens
            if model.timeout is not None:
                kwargs["request_timeout"] = model.timeout
            kwargs.update(model.provider_params)
            return ChatGoogleGenerativeAI(**kwargs)

        case "Mistral":
            try:
                from langchain_mistralai.chat_models import (
                    ChatMistralAI,
                )
            except ImportError as e:
                raise ImportError(
                    _install_hint("Mistral", "langchain-mistralai")
                ) from e

            kwargs = {
                "model_name": model_name,
                "temperature": model.temperature,
                "max_retries": model.max_retries,
            }
            if model.max_tokens is not None:
                kwargs["max_tokens"] = model.max_tokens
            if model.timeout is not None:
                kwargs["timeout"] = int(model.timeout)
            kwargs.update(model.provider_params)
            return ChatMistralAI(**kwargs)

        case "OpenAI":
            try:
                from langchain_openai.chat_models import ChatOpenAI
            except ImportError as e:
                raise ImportError(
                    _install_hint("OpenAI", "langchain-openai")
                ) from e

            kwargs = {
                "model": model_name,
                "temperature": model.temperature,
                "max_retries": model.max_retries,
                "use_responses_api": False,
            }
            if model.max_tokens is not None:
                kwargs["max_tokens"] = model.max_tokens
            if model.timeout is not None:
                kwargs["timeout"] = model.timeout
            kwargs.update(model.provider_params)
            return ChatOpenAI(**kwargs)

        case "ZhiPu":
            try:
                from langchain_community.chat_models import ChatZhipuAI
            except ImportError as e:
                raise ImportError(
                    _install_hint("ZhiPu", "langchain-community")
                ) from e

            kwargs = {
                "model": model_name,
                "temperature": model.temperature,
            }
            if model.max_tokens is not None:
                kwargs["max_tokens"] = model.max_tokens
            kwargs.update(model.provider_params)
            return ChatZhipuAI(**kwargs)

        case "Debug":
            from langchain_core.language_models.fake_chat_models import (
                GenericFakeChatModel,
            )

            message: ProviderParam | None = model.provider_params.get(
                "message"
            )
            return GenericFakeChatModel(
                name=f"Debug {model_name}",
                messages=_debug_messages(
                    None if message is None else str(message)
                ),
            )

        case _:
            raise ValueError(
                f"Unreachable code reached: invalid source {model_source}"
            )


# Public interface----------------------------------------------
langchain_models: LazyLoadingDict[LanguageModelSettings, BaseChatModel] = \
    LazyLoadingDict(_create_model_instance)


def create_model_from_spec(
    model: str,
    *,
    temperature: float = 0.1,
    max_tokens: int | None = None,
    max_retries: int = 2,
    timeout: float | None = None,
    provider_params: dict[str, ProviderParam] | None = None,
) -> BaseChatModel:
    """
    Create a LangChain model from specifications.

    Args:
        model: the model in the form provider/model, such as
            'OpenAI/gpt-4o'
        temperature, max_tokens, max_retries, timeout: see
            LanguageModelSettings
        provider_params: provider-specific parameters

    Returns:
        a LangChain model object.

    Raises ValidationError, ImportError

    Example:
        ```python
        model = create_model_from_spec("OpenAI/gpt-4.1-mini")
        ```
    """
    spec = LanguageModelSettings(
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=max_retries,
        timeout=timeout,
        provider_params=provider_params or {},
    )
    return langchain_models[spec]


def create_model_from_settings(
    settings: LanguageModelSettings,
) -> BaseChatModel:
    """
    Create a LangChain model from a LanguageModelSettings object.

    Args:
        settings: a LanguageModelSettings object containing model
            configuration.

    Returns:
        a LangChain model object.

    Raises ValidationError, ImportError
    """
    return langchain_models[settings]
