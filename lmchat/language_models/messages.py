"""
Generic data structures for language model interactions.

A conversation is a sequence of `Message` objects. Each message has a
role and an ordered tuple of content blocks:

    - TextBlock: a piece of text
    - MediaBlock: a reference to media (an url or inline data)
    - ToolCallBlock: a request from the model to invoke a tool
    - ToolResultBlock: the output of a tool, correlated to the tool
        call by its identifier

The results of tool calls are sent back to the model in a user
message containing only tool result blocks (see
`tool_result_message`).

All objects are immutable. Streaming responses are received as a
sequence of `ChatResponse` fragments, merged into one response by
`aggregate_responses`.
"""

from collections.abc import Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import Annotated, Any, Literal, Self, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def _freeze(value: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(value or {}))


class TextBlock(BaseModel):
    """A text content block."""

    type: Literal['text'] = 'text'
    text: str

    model_config = ConfigDict(frozen=True, extra='forbid')


class MediaBlock(BaseModel):
    """A media content block, referenced by url or given as
    base64-encoded data."""

    type: Literal['media'] = 'media'
    mime_type: str
    url: str | None = None
    data: str | None = None

    model_config = ConfigDict(frozen=True, extra='forbid')

    @model_validator(mode='after')
    def check_source(self) -> Self:
        if self.url is None and self.data is None:
            raise ValueError("Media requires either an url or data")
        return self


class ToolCallBlock(BaseModel):
    """Represents a tool call requested by the model."""

    type: Literal['tool_call'] = 'tool_call'
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    arguments: Mapping[str, Any] = Field(
        default_factory=dict, validate_default=True
    )

    model_config = ConfigDict(frozen=True, extra='forbid')

    @field_validator('arguments', mode='after')
    @classmethod
    def freeze_arguments(
        cls, value: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        return _freeze(value)


class ToolResultBlock(BaseModel):
    """The text output of a tool, in response to the tool call with
    identifier tool_call_id."""

    type: Literal['tool_result'] = 'tool_result'
    tool_call_id: str = Field(min_length=1)
    name: str
    content: str

    model_config = ConfigDict(frozen=True, extra='forbid')


ContentBlock = Annotated[
    Union[TextBlock, MediaBlock, ToolCallBlock, ToolResultBlock],
    Field(discriminator='type'),
]

Role = Literal['system', 'user', 'assistant']


class Message(BaseModel):
    """Represents a message in a chat conversation."""

    role: Role
    content: tuple[ContentBlock, ...] = ()
    metadata: Mapping[str, Any] = Field(
        default_factory=dict, validate_default=True
    )

    model_config = ConfigDict(frozen=True, extra='forbid')

    @field_validator('metadata', mode='after')
    @classmethod
    def freeze_metadata(
        cls, value: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        return _freeze(value)

    @property
    def text(self) -> str:
        """The concatenated text blocks of the message."""
        return "".join(
            b.text for b in self.content if isinstance(b, TextBlock)
        )

    @property
    def media(self) -> tuple[MediaBlock, ...]:
        return tuple(
            b for b in self.content if isinstance(b, MediaBlock)
        )

    @property
    def tool_calls(self) -> tuple[ToolCallBlock, ...]:
        return tuple(
            b for b in self.content if isinstance(b, ToolCallBlock)
        )

    @property
    def tool_results(self) -> tuple[ToolResultBlock, ...]:
        return tuple(
            b for b in self.content if isinstance(b, ToolResultBlock)
        )

    @property
    def is_tool_result(self) -> bool:
        """True for user messages carrying tool results."""
        return self.role == 'user' and bool(self.tool_results)


def system_message(text: str, **metadata: Any) -> Message:
    return Message(
        role='system', content=(TextBlock(text=text),), metadata=metadata
    )


def user_message(
    text: str, media: Sequence[MediaBlock] = (), **metadata: Any
) -> Message:
    content: tuple[ContentBlock, ...] = (TextBlock(text=text), *media)
    return Message(role='user', content=content, metadata=metadata)


def assistant_message(
    text: str | None = None,
    tool_calls: Sequence[ToolCallBlock] = (),
    **metadata: Any,
) -> Message:
    content: list[ContentBlock] = []
    if text:
        content.append(TextBlock(text=text))
    content.extend(tool_calls)
    return Message(
        role='assistant', content=tuple(content), metadata=metadata
    )


def tool_result_message(results: Sequence[ToolResultBlock]) -> Message:
    """A user message with the results of the tool calls of the
    preceding assistant message."""
    if not results:
        raise ValueError("A tool result message requires results")
    return Message(role='user', content=tuple(results))


def check_tool_correlation(messages: Iterable[Message]) -> None:
    """
    Checks that every tool result in the conversation answers a tool
    call made earlier in the conversation.

    Raises:
        ValueError: if a tool result references an unknown tool call.
    """
    call_ids: set[str] = set()
    for message in messages:
        for block in message.content:
            match block:
                case ToolCallBlock(id=call_id):
                    call_ids.add(call_id)
                case ToolResultBlock(tool_call_id=call_id):
                    if call_id not in call_ids:
                        raise ValueError(
                            f"Tool result '{call_id}' does not "
                            "reference a previous tool call"
                        )
                case _:
                    pass


class ChatResponse(BaseModel):
    """The response of a model (or a fragment of a streamed response).

    Attributes:
        message: the assistant message
        metadata: information on the response, such as finish_reason,
            model_name, or token usage
    """

    message: Message = Field(
        default_factory=lambda: Message(role='assistant')
    )
    metadata: Mapping[str, Any] = Field(
        default_factory=dict, validate_default=True
    )

    model_config = ConfigDict(frozen=True, extra='forbid')

    @field_validator('metadata', mode='after')
    @classmethod
    def freeze_metadata(
        cls, value: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        return _freeze(value)

    @property
    def text(self) -> str:
        return self.message.text

    @property
    def tool_calls(self) -> tuple[ToolCallBlock, ...]:
        return self.message.tool_calls

    def has_tool_calls(self) -> bool:
        return bool(self.message.tool_calls)


def aggregate_responses(fragments: Iterable[ChatResponse]) -> ChatResponse:
    """
    Merges the fragments of a streamed response into one response.

    Adjacent text is concatenated; media and tool calls are kept in
    order of arrival, a tool call received again with the same id
    replacing the earlier one. Metadata are merged, later fragments
    overriding earlier keys.

    Args:
        fragments: the streamed response fragments

    Returns:
        a single ChatResponse.
    """
    blocks: list[ContentBlock] = []
    call_index: dict[str, int] = {}
    message_metadata: dict[str, Any] = {}
    metadata: dict[str, Any] = {}
    for fragment in fragments:
        message_metadata.update(fragment.message.metadata)
        metadata.update(fragment.metadata)
        for block in fragment.message.content:
            match block:
                case TextBlock(text=text):
                    if blocks and isinstance(blocks[-1], TextBlock):
                        blocks[-1] = TextBlock(text=blocks[-1].text + text)
                    elif text:
                        blocks.append(block)
                case ToolCallBlock(id=call_id) if call_id in call_index:
                    blocks[call_index[call_id]] = block
                case ToolCallBlock(id=call_id):
                    call_index[call_id] = len(blocks)
                    blocks.append(block)
                case _:
                    blocks.append(block)

    return ChatResponse(
        message=Message(
            role='assistant',
            content=tuple(blocks),
            metadata=message_metadata,
        ),
        metadata=metadata,
    )
