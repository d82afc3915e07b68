"""
Read and write configuration file.

This file also contains the definitions of the model providers
supported in the package, and the defaults of the chat client (tool
loop bound, chat memory).

Settings are read, in order of precedence, from the arguments given
to the constructor, from config.toml in the working directory, and
from environment variables prefixed with LMCHAT_ (nested fields use
a double underscore, e.g. LMCHAT_CHAT__TOOL_MAX_ROUNDS=5).

Example:
    ```python
    from lmchat.config.config import Settings, export_settings

    settings = Settings(model={'model': "Anthropic/claude-3-5-haiku-latest"})
    export_settings(settings)  # writes config.toml
    ```
"""

from pathlib import Path
from typing import Any, Literal, Self

from pydantic import (
    Field,
    field_validator,
    model_validator,
    BaseModel,
)
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# Define supported model providers. These providers must also be
# handled in language_models/langchain/models.py
ModelSource = Literal[
    'OpenAI', 'Anthropic', 'Mistral', 'Gemini', 'ZhiPu', 'Debug'
]

# Values accepted as provider-specific parameters
ProviderParam = str | int | float | bool | list[str]

# What the memory advisor does when the store rejects a write
WriteFailurePolicy = Literal['abort', 'log']

DEFAULT_CONFIG_FILE = "config.toml"
ENV_PREFIX = "LMCHAT_"


class LanguageModelSettings(BaseModel):
    """
    Specification of language sources and models.

    Attributes:
        model: model specification
        temperature: float between 0.0 and 2.0
        max_tokens: max number of generated tokens
        max_retries: max number retries attempts
        timeout: timeout when waiting for response
        provider_params: provider-specific parameters
    """

    # Required
    model: str = Field(
        description="Model specification in the form "
        + "'model_provider/model' (e.g., 'OpenAI/gpt-4o')"
    )

    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Controls randomness in model responses (0.0-2.0)",
    )
    max_tokens: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of tokens to generate",
    )
    max_retries: int = Field(
        default=2,
        ge=0,
        description="Maximum number of retry attempts of the provider "
        + "client",
    )
    timeout: float | None = Field(
        default=None, gt=0, description="Request timeout in seconds"
    )

    provider_params: dict[str, ProviderParam] = Field(
        default_factory=dict,
        description="Provider-specific parameters (e.g., top_p)",
    )

    model_config = SettingsConfigDict(frozen=True, extra='forbid')

    def __hash__(self) -> int:
        # provider_params may hold lists, which are not hashable
        params = tuple(
            sorted(
                (k, tuple(v) if isinstance(v, list) else v)
                for k, v in self.provider_params.items()
            )
        )
        return hash(
            (
                self.model,
                self.temperature,
                self.max_tokens,
                self.max_retries,
                self.timeout,
                params,
            )
        )

    def get_model_source(self) -> ModelSource:
        return self.model.split('/')[0]  # type: ignore

    def get_model_name(self) -> str:
        return self.model.split('/')[1]

    def from_instance(self, **changes: Any) -> 'LanguageModelSettings':
        """Create a new instance with the given fields replaced.
        Fields given as None keep the value of this instance."""
        values = self.model_dump()
        values.update({k: v for k, v in changes.items() if v is not None})
        return LanguageModelSettings(**values)

    @field_validator('model', mode='after')
    @classmethod
    def validate_model_spec(cls, spec: str) -> str:
        cleaned_spec = spec.strip()
        if not (bool(cleaned_spec)):
            raise ValueError("Model specification is empty")
        if '\n' in cleaned_spec or '\r' in cleaned_spec:
            raise ValueError(
                "Model specification cannot contain newlines or carriage"
                + " returns."
            )
        tokens = cleaned_spec.split('/')
        if len(tokens) != 2:
            raise ValueError(
                "Model specification must contain the model provider and "
                + "the model name separated by a single '/'.",
            )
        model_spec = tokens[0].strip()
        if model_spec not in ModelSource.__args__:
            raise ValueError(
                f"Invalid model provider: '{model_spec}'. "
                + f"Must be one of {ModelSource.__args__}."
            )
        return model_spec + '/' + tokens[1].strip()

    @model_validator(mode='after')
    def validate_provider_params(self) -> Self:
        """Validate provider-specific parameters based on the source."""
        ALLOWED_PARAMS = {
            'OpenAI': {
                'frequency_penalty',
                'presence_penalty',
                'top_p',
                'seed',
                'logprobs',
                'top_logprobs',
            },
            'Anthropic': {'top_p', 'top_k', 'stop_sequences'},
            'Mistral': {'top_p', 'random_seed', 'safe_mode'},
            'Gemini': {'top_p', 'top_k', 'candidate_count'},
            'ZhiPu': {'top_p', 'api_base'},
        }

        source: ModelSource = self.get_model_source()
        if source in ALLOWED_PARAMS:
            allowed = ALLOWED_PARAMS[source]
            invalid_params = set(self.provider_params.keys()) - allowed
            if invalid_params:
                raise ValueError(
                    f"Invalid provider_params for {source}: "
                    f"{invalid_params}. Allowed: {allowed}"
                )

        return self


class ChatSettings(BaseModel):
    """
    Defaults of the chat client and of its advisors.

    Attributes:
        tool_max_rounds: maximum number of model calls in a tool
            calling exchange. None removes the bound.
        memory_conversation_id: conversation used by the chat memory
            advisor when the advise context does not name one
        memory_retrieve_size: number of stored turns retrieved by
            the chat memory advisor
        memory_write_failure: 'abort' to fail the turn when the
            memory store cannot be written, 'log' to log and continue
    """

    tool_max_rounds: int | None = Field(
        default=10,
        ge=1,
        description="Maximum number of model calls while resolving "
        + "tool calls (no bound if not given)",
    )
    memory_conversation_id: str = Field(
        default="default",
        min_length=1,
        description="Default conversation identifier of chat memory",
    )
    memory_retrieve_size: int = Field(
        default=100,
        ge=1,
        description="Number of stored messages retrieved from memory",
    )
    memory_write_failure: WriteFailurePolicy = Field(
        default='abort',
        description="Behaviour when the memory store rejects a write",
    )

    model_config = SettingsConfigDict(frozen=True, extra='forbid')


class Settings(BaseSettings):
    """
    A pydantic settings object containing the fields with the
    configuration information.

    Settings are saved and read from the configuration file in TOML
    format.

    Attributes:
        model: the language model used by default by the chat client
        chat: defaults of the chat client and advisors
    """

    model: LanguageModelSettings = Field(
        default_factory=lambda: LanguageModelSettings(
            model="OpenAI/gpt-4.1-mini",
        ),
        description="Language model used by the chat client",
    )
    chat: ChatSettings = Field(
        default_factory=ChatSettings,
        description="Chat client and advisor defaults",
    )

    model_config = SettingsConfigDict(
        toml_file=DEFAULT_CONFIG_FILE,
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        frozen=True,
        validate_assignment=True,
        extra='allow',  # Do not prevent unexpected fields
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of settings sources."""
        return (
            init_settings,
            TomlConfigSettingsSource(settings_cls),
            env_settings,
        )

    def __str__(self) -> str:
        return serialize_settings(self)


def serialize_settings(sets: BaseSettings) -> str:
    """Transform the settings into a string in TOML format.

    Args:
        sets: The settings object to serialize

    Returns:
        TOML formatted string representation of settings
    """
    import tomlkit

    doc = tomlkit.document()
    doc.add(tomlkit.comment("Configuration file"))
    doc.add(tomlkit.nl())

    data: dict[str, Any] = sets.model_dump()
    for key, value in data.items():
        if isinstance(value, dict):
            tbl = tomlkit.table()
            for kkey, vvalue in value.items():  # type: ignore
                # None values can't be serialized to TOML
                if vvalue is not None:
                    tbl[kkey] = vvalue
            doc[key] = tbl
        elif value is not None:
            doc[key] = value

    return str(tomlkit.dumps(doc))  # type: ignore


def export_settings(
    settings: BaseSettings, file_path: str | Path | None = None
) -> None:
    """Save settings to file in TOML format.

    Args:
        settings: A settings object to save
        file_path: The settings file path (defaults to config.toml)

    Raises:
        OSError: If file cannot be written
    """
    if file_path is None:
        file_path = DEFAULT_CONFIG_FILE

    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with file_path.open("w", encoding="utf-8") as f:
        f.write(serialize_settings(settings))


def create_default_config_file(
    file_path: str | Path | None = None,
) -> None:
    """Create a settings file with the default values, replacing
    an existing one.

    Args:
        file_path: Target file path (defaults to config.toml)
    """
    if file_path is None:
        file_path = DEFAULT_CONFIG_FILE

    file_path = Path(file_path)

    if file_path.exists():
        # otherwise, it will be read in
        file_path.unlink()

    export_settings(Settings(), file_path)


def load_settings(file_path: str | Path | None = None) -> Settings:
    """Load settings from TOML file.

    Args:
        file_path: Path to settings file (defaults to config.toml)

    Returns:
        Loaded settings object

    Raises:
        FileNotFoundError: If settings file doesn't exist
        ValueError: If settings file is invalid
    """
    if file_path is None:
        file_path = DEFAULT_CONFIG_FILE

    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(
            f"Settings file not found: {file_path}"
        )

    try:
        # A settings class reading the specified file
        class FileSettings(Settings):
            model_config = SettingsConfigDict(
                toml_file=str(file_path),
                env_prefix=ENV_PREFIX,
                env_nested_delimiter="__",
                frozen=True,
                validate_assignment=True,
                extra='allow',
            )

        return FileSettings()
    except Exception as e:
        raise ValueError(
            f"Failed to load settings from {file_path}: "
            f"{format_pydantic_error_message(str(e))}"
        ) from e


def format_pydantic_error_message(error_message: str) -> str:
    """Filter out verbose lines from pydantic error messages."""
    lines = error_message.split('\n')
    filtered_lines = [
        line
        for line in lines
        if "For further information visit" not in line
    ]
    return '\n'.join(filtered_lines)
