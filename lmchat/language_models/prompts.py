"""
Prompt objects and prompt template texts.

A `Prompt` is what is sent to a model: the conversation messages,
the chat options (sampling parameters and the names of the tools
that should be made available), the tool callbacks and the tool
context passed on to tool execution.

Template texts use the Python format syntax and are rendered with
LangChain's PromptTemplate by `render_template`. A set of predefined
template texts used by the advisors of the package is available from
the module-level dictionary `prompt_library`:

    - "long_term_memory": system text appended by the vector store
        chat memory advisor
    - "format_instructions": user text appended when an output format
        is requested through the advise context
    - "safeguard_failure": the response returned when a request is
        blocked by the safeguard advisor

**Example**:

    ```python
    from lmchat.language_models.prompts import (
        prompt_library,
        render_template,
    )
    text = render_template(
        prompt_library["long_term_memory"],
        {'long_term_memory': "user: my name is Ann"},
    )
    ```

New templates may be added with `create_prompt`, and then be given
to the advisors that accept a template text.
"""

from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any, Literal

from langchain_core.prompts import PromptTemplate
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .lazy_dict import LazyLoadingDict
from .messages import Message, check_tool_correlation
from .tools import ToolCallback


class ChatOptions(BaseModel):
    """
    Options of a chat request. Options left to None use the defaults
    of the model.

    Attributes:
        model: a model name overriding that of the model settings
        temperature: sampling temperature
        max_tokens: max number of generated tokens
        top_p: nucleus sampling
        stop: stop sequences
        tool_names: the names of registered tools to be made
            available to the model
    """

    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    stop: tuple[str, ...] | None = None
    tool_names: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True, extra='forbid')

    def merge(self, other: 'ChatOptions | None') -> 'ChatOptions':
        """Options with the values set in other taking precedence.
        Tool names are joined."""
        if other is None:
            return self
        values = self.model_dump()
        values.update(
            other.model_dump(exclude_none=True, exclude={'tool_names'})
        )
        values['tool_names'] = tuple(
            dict.fromkeys(self.tool_names + other.tool_names)
        )
        return ChatOptions(**values)


class Prompt(BaseModel):
    """
    The messages and options sent to the model.

    Invariant: every tool result in messages answers a preceding
    tool call.
    """

    messages: tuple[Message, ...]
    options: ChatOptions | None = None
    tool_callbacks: tuple[ToolCallback, ...] = ()
    tool_context: Mapping[str, Any] = Field(
        default_factory=dict, validate_default=True
    )

    model_config = ConfigDict(frozen=True, extra='forbid')

    @field_validator('tool_context', mode='after')
    @classmethod
    def freeze_context(
        cls, value: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        return MappingProxyType(dict(value))

    @model_validator(mode='after')
    def validate_messages(self) -> 'Prompt':
        if not self.messages:
            raise ValueError("A prompt requires at least one message")
        check_tool_correlation(self.messages)
        return self

    def with_messages(self, messages: Sequence[Message]) -> 'Prompt':
        """A prompt with the same options and the given messages."""
        return Prompt(
            messages=tuple(messages),
            options=self.options,
            tool_callbacks=self.tool_callbacks,
            tool_context=self.tool_context,
        )


def render_template(
    template: str, params: Mapping[str, Any] | None = None
) -> str:
    """
    Substitutes the parameters into a template text.

    Args:
        template: a text with {placeholders} in the Python format
            syntax.
        params: the values of the placeholders. If empty, the text is
            returned unchanged (so that literal braces are allowed in
            texts that are not templates).

    Returns:
        the rendered text.

    Raises:
        KeyError: a placeholder has no value in params.
    """
    if not params:
        return template
    prompt = PromptTemplate.from_template(template)
    return prompt.format(**params)


PromptNames = Literal[
    "long_term_memory",
    "format_instructions",
    "safeguard_failure",
]


# A functional returning the predefined template texts.
def _get_prompts(prompt_name: PromptNames) -> str:
    match prompt_name:
        case "long_term_memory":
            return """

Use the long term conversation memory from the LONG_TERM_MEMORY section to provide accurate answers.

---------------------
LONG_TERM_MEMORY:
{long_term_memory}
---------------------

"""
        case "format_instructions":
            return """
{format_instructions}"""
        case "safeguard_failure":
            return (
                "I'm unable to respond to that due to sensitive "
                "content. Could we rephrase or discuss something else?"
            )
        case _:  # do not remove this
            raise ValueError(f"Invalid prompt: {prompt_name}")


# a module-level typed dictionary for the template texts
prompt_library = LazyLoadingDict(_get_prompts)


def create_prompt(
    prompt_template: str, prompt_name: str, *, replace: bool = False
) -> None:
    """
    Adds a custom template text to the prompt library.

    Args:
        prompt_template: the template text
        prompt_name: the name of the template in the library
        replace: replace a template already stored with that name

    Raises:
        ValueError: if a template with that name exists and replace
            is False.
    """
    if replace and prompt_name in prompt_library:
        del prompt_library[prompt_name]  # type: ignore
    # Literals are not checked at run time, allowing new names
    prompt_library[prompt_name] = prompt_template  # type: ignore
