"""
The request and response envelopes passed through the advisor chain,
and the interfaces of the advisors.

An `AdvisedRequest` collects everything needed to build the prompt of
a chat turn: the model, the user and system texts and their template
parameters, the conversation history, the chat options and tools, and
two mappings that are not sent to the model:

    - advise_context: state shared between the advisors of the chain
        (for example, the conversation id of the chat memory)
    - tool_context: passed on to the tools that accept a context

Envelopes are immutable. Advisors derive new envelopes with
`from_instance` or `update_context`:

    ```python
    request = request.from_instance(system_text="Be brief.")
    request = request.update_context(
        lambda ctx: {**ctx, 'chat_memory_conversation_id': "42"}
    )
    ```

The prompt sent to the model is computed on demand by `to_prompt`,
which renders the system and user templates with their parameters.

Advisors implement `CallAroundAdvisor` (blocking calls),
`StreamAroundAdvisor` (streaming calls), or both. Each receives the
request and the rest of the chain, and proceeds by calling the chain:

    ```python
    class TimingAdvisor(CallAroundAdvisor):
        name = "timing"
        order = 0

        def around_call(self, request, chain):
            start = time.monotonic()
            response = chain.next_around_call(request)
            print(time.monotonic() - start)
            return response
    ```

An advisor may also return a response without calling the chain,
short-circuiting the model call.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from enum import StrEnum
from types import MappingProxyType
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lmchat.language_models.base import BaseChatModel
from lmchat.language_models.messages import (
    ChatResponse,
    MediaBlock,
    Message,
    system_message,
    user_message,
)
from lmchat.language_models.prompts import (
    ChatOptions,
    Prompt,
    prompt_library,
    render_template,
)
from lmchat.language_models.tools import ToolCallback


# Key of the advise context holding output format instructions,
# appended to the user text by to_prompt
FORMAT_PARAM_KEY = "format_param"

# Precedence of the advisors of the package. Lower values run first
# in the before phase.
HIGHEST_PRECEDENCE = -(2**31)
DEFAULT_CHAT_MEMORY_PRECEDENCE_ORDER = HIGHEST_PRECEDENCE + 1000


def _freeze(value: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(value))


class ChainStage(StrEnum):
    BEFORE = 'before'
    MODEL = 'model'
    AFTER = 'after'


class ChainAbortedError(RuntimeError):
    """
    A turn of the advisor chain failed.

    Attributes:
        stage: the phase where the error occurred
        advisor: the name of the advisor that raised, None for the
            model call
        cause: the original exception
    """

    def __init__(
        self,
        stage: ChainStage,
        cause: BaseException,
        advisor: str | None = None,
    ):
        self.stage = stage
        self.cause = cause
        self.advisor = advisor
        where = f"advisor '{advisor}'" if advisor else "model call"
        super().__init__(
            f"Chat aborted in {stage} phase of {where}: "
            f"{type(cause).__name__}: {cause}"
        )


class AdvisedRequest(BaseModel):
    """
    The request envelope of a chat turn.

    Attributes:
        chat_model: the model of the turn
        user_text: the user text, a template rendered with user_params
        system_text: the system text, a template rendered with
            system_params
        chat_options: options of the model call
        media: media attached to the user message
        tool_names: names of tools registered with the client
        tool_callbacks: tools given with the request
        messages: the conversation history preceding the user text
        user_params, system_params: template parameters
        advisors: the advisors of the turn
        advisor_params: parameters given to the advisors
        advise_context: state shared between advisors
        tool_context: passed on to the tools
    """

    chat_model: BaseChatModel
    user_text: str = Field(min_length=1)
    system_text: str | None = None
    chat_options: ChatOptions | None = None
    media: tuple[MediaBlock, ...] = ()
    tool_names: tuple[str, ...] = ()
    tool_callbacks: tuple[ToolCallback, ...] = ()
    messages: tuple[Message, ...] = ()
    user_params: Mapping[str, Any] = Field(
        default_factory=dict, validate_default=True
    )
    system_params: Mapping[str, Any] = Field(
        default_factory=dict, validate_default=True
    )
    advisors: tuple[Any, ...] = ()
    advisor_params: Mapping[str, Any] = Field(
        default_factory=dict, validate_default=True
    )
    advise_context: Mapping[str, Any] = Field(
        default_factory=dict, validate_default=True
    )
    tool_context: Mapping[str, Any] = Field(
        default_factory=dict, validate_default=True
    )

    model_config = ConfigDict(
        frozen=True, extra='forbid', arbitrary_types_allowed=True
    )

    @field_validator('user_text', mode='after')
    @classmethod
    def validate_user_text(cls, text: str) -> str:
        if not text.strip():
            raise ValueError("user_text cannot be blank")
        return text

    @field_validator(
        'user_params',
        'system_params',
        'advisor_params',
        'advise_context',
        'tool_context',
        mode='after',
    )
    @classmethod
    def freeze_mapping(
        cls, value: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        return _freeze(value)

    def from_instance(self, **changes: Any) -> 'AdvisedRequest':
        """A new request with the given fields replaced. The new
        request is validated."""
        return AdvisedRequest(**{**dict(self), **changes})

    def update_context(
        self,
        transform: Callable[[dict[str, Any]], Mapping[str, Any]],
    ) -> 'AdvisedRequest':
        """
        A new request with a transformed advise context.

        Args:
            transform: a function receiving a copy of the advise
                context and returning the new context.
        """
        return self.from_instance(
            advise_context=transform(dict(self.advise_context))
        )

    def to_prompt(self) -> Prompt:
        """
        Renders the prompt of the request: the message history, the
        system message (if there is a system text) and the user
        message. Rendering does not change the request.
        """
        messages: list[Message] = list(self.messages)

        if self.system_text and self.system_text.strip():
            messages.append(
                system_message(
                    render_template(self.system_text, self.system_params)
                )
            )

        user_text = self.user_text
        user_params: dict[str, Any] = dict(self.user_params)
        format_param = self.advise_context.get(FORMAT_PARAM_KEY)
        if format_param:
            user_text += prompt_library["format_instructions"]
            user_params['format_instructions'] = format_param
        messages.append(
            user_message(
                render_template(user_text, user_params), self.media
            )
        )

        options = self.chat_options
        if self.tool_names:
            options = (options or ChatOptions()).merge(
                ChatOptions(tool_names=self.tool_names)
            )

        return Prompt(
            messages=tuple(messages),
            options=options,
            tool_callbacks=self.tool_callbacks,
            tool_context=self.tool_context,
        )


class AdvisedResponse(BaseModel):
    """
    The response envelope of a chat turn.

    Attributes:
        response: the response of the model, or None if an advisor
            returned without a response
        advise_context: the advise context of the turn
    """

    response: ChatResponse | None = None
    advise_context: Mapping[str, Any] = Field(
        default_factory=dict, validate_default=True
    )

    model_config = ConfigDict(frozen=True, extra='forbid')

    @field_validator('advise_context', mode='after')
    @classmethod
    def freeze_context(
        cls, value: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        return _freeze(value)

    def update_context(
        self,
        transform: Callable[[dict[str, Any]], Mapping[str, Any]],
    ) -> 'AdvisedResponse':
        return AdvisedResponse(
            response=self.response,
            advise_context=transform(dict(self.advise_context)),
        )


class ChainContinuation(Protocol):
    """The rest of the advisor chain, as seen by an advisor."""

    def next_around_call(
        self, request: AdvisedRequest
    ) -> AdvisedResponse: ...

    def next_around_stream(
        self, request: AdvisedRequest
    ) -> Iterator[AdvisedResponse]: ...


class Advisor(ABC):
    """
    Base class of the advisors.

    Attributes:
        name: the name of the advisor, used in logs and errors
        order: the precedence of the advisor. Advisors with lower
            order run earlier before the model call, and later after.
    """

    name: str = ""
    order: int = 0

    def get_name(self) -> str:
        return self.name or type(self).__name__


class CallAroundAdvisor(Advisor):
    """Advisor of blocking chat calls."""

    @abstractmethod
    def around_call(
        self, request: AdvisedRequest, chain: 'ChainContinuation'
    ) -> AdvisedResponse:
        """
        Advises a blocking call. Implementations call
        chain.next_around_call(request) to proceed.
        """
        pass


class StreamAroundAdvisor(Advisor):
    """Advisor of streaming chat calls."""

    @abstractmethod
    def around_stream(
        self, request: AdvisedRequest, chain: 'ChainContinuation'
    ) -> Iterator[AdvisedResponse]:
        """
        Advises a streaming call. Implementations call
        chain.next_around_stream(request) to proceed, and return an
        iterator over the response fragments.

        This is an ordinary function returning an iterator, not a
        generator: the code before the call to the chain runs when
        the stream is created, before the first fragment is requested.
        To observe the complete response, wrap the iterator with
        aggregate_advised_responses.
        """
        pass


class CallTerminal(Protocol):
    def __call__(self, request: AdvisedRequest) -> AdvisedResponse: ...


class StreamTerminal(Protocol):
    def __call__(
        self, request: AdvisedRequest
    ) -> Iterator[AdvisedResponse]: ...
