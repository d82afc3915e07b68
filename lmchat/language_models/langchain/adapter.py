"""
Adapter of LangChain chat models to the BaseChatModel interface.

The conversation messages are converted to LangChain messages, the
tool callbacks are bound to the model as function declarations, and
the LangChain response is converted back into a ChatResponse with the
text and the tool calls of the model. The model is obtained from the
repository of LangChain models (see models.py), and is created from
the settings given in the constructor, modified by the chat options of
each request.

Example:
    ```python
    from lmchat.language_models.langchain.adapter import (
        LangChainChatModel,
    )
    from lmchat.language_models.messages import user_message

    model = LangChainChatModel("OpenAI/gpt-4.1-mini")
    response = model.chat([user_message("Why is the sky blue?")])
    print(response.text)
    ```
"""

from collections.abc import AsyncIterator, Iterator, Sequence
from typing import Any
from uuid import uuid4

from langchain_core.language_models.chat_models import (
    BaseChatModel as LCChatModel,
)
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    BaseMessageChunk,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from lmchat.config.config import LanguageModelSettings
from lmchat.language_models.base import BaseChatModel
from lmchat.language_models.messages import (
    ChatResponse,
    MediaBlock,
    Message,
    ToolCallBlock,
    assistant_message,
)
from lmchat.language_models.prompts import ChatOptions
from lmchat.language_models.tools import ToolCallback
from lmchat.utils.logging import LoggerBase, get_logger

from .models import create_model_from_settings


def _media_part(media: MediaBlock) -> dict[str, Any]:
    url = media.url or f"data:{media.mime_type};base64,{media.data}"
    return {'type': "image_url", 'image_url': {'url': url}}


def convert_messages(messages: Sequence[Message]) -> list[BaseMessage]:
    """Convert messages to LangChain messages. A tool result message
    becomes one ToolMessage for each tool result."""
    lc_messages: list[BaseMessage] = []
    for msg in messages:
        match msg.role:
            case 'system':
                lc_messages.append(SystemMessage(content=msg.text))
            case 'user' if msg.is_tool_result:
                lc_messages.extend(
                    ToolMessage(
                        content=result.content,
                        tool_call_id=result.tool_call_id,
                        name=result.name,
                    )
                    for result in msg.tool_results
                )
            case 'user' if msg.media:
                parts: list[str | dict[str, Any]] = [
                    {'type': "text", 'text': msg.text}
                ]
                parts.extend(_media_part(m) for m in msg.media)
                lc_messages.append(HumanMessage(content=parts))
            case 'user':
                lc_messages.append(HumanMessage(content=msg.text))
            case 'assistant':
                lc_messages.append(
                    AIMessage(
                        content=msg.text,
                        tool_calls=[
                            {
                                'name': call.name,
                                'args': dict(call.arguments),
                                'id': call.id,
                            }
                            for call in msg.tool_calls
                        ],
                    )
                )
            case _:
                raise ValueError(f"Invalid message role: {msg.role}")
    return lc_messages


def _content_text(content: str | list[str | dict[str, Any]]) -> str:
    if isinstance(content, str):
        return content
    texts: list[str] = []
    for part in content:
        if isinstance(part, str):
            texts.append(part)
        elif part.get('type') == "text":
            texts.append(str(part.get('text', "")))
    return "".join(texts)


def _tool_calls(message: BaseMessage) -> list[ToolCallBlock]:
    calls = getattr(message, 'tool_calls', None) or []
    return [
        ToolCallBlock(
            id=call.get('id') or f"call_{uuid4().hex}",
            name=call['name'],
            arguments=call.get('args') or {},
        )
        for call in calls
    ]


def _response_metadata(message: BaseMessage) -> dict[str, Any]:
    metadata: dict[str, Any] = dict(message.response_metadata)
    usage = getattr(message, 'usage_metadata', None)
    if usage:
        metadata['usage'] = dict(usage)
    return metadata


def convert_response(message: BaseMessage) -> ChatResponse:
    """Convert a LangChain response to a ChatResponse."""
    return ChatResponse(
        message=assistant_message(
            _content_text(message.content),  # type: ignore
            _tool_calls(message),
        ),
        metadata=_response_metadata(message),
    )


class LangChainChatModel(BaseChatModel):
    """
    Adapter for LangChain chat models.

    Args:
        settings: the model settings, or a specification in the form
            'provider/model'
        logger: a logger object
    """

    def __init__(
        self,
        settings: LanguageModelSettings | str,
        *,
        logger: LoggerBase = get_logger(__name__),
    ) -> None:
        if isinstance(settings, str):
            settings = LanguageModelSettings(model=settings)
        self.settings = settings
        self.logger = logger

    def get_name(self) -> str:
        return self.settings.model

    def _settings_for(
        self, options: ChatOptions | None
    ) -> LanguageModelSettings:
        if options is None:
            return self.settings
        model: str | None = None
        if options.model:
            model = (
                options.model
                if '/' in options.model
                else f"{self.settings.get_model_source()}/{options.model}"
            )
        provider_params = None
        if options.top_p is not None:
            provider_params = {
                **self.settings.provider_params,
                'top_p': options.top_p,
            }
        return self.settings.from_instance(
            model=model,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            provider_params=provider_params,
        )

    def _get_model(
        self,
        tools: Sequence[ToolCallback],
        options: ChatOptions | None,
    ) -> Any:
        model: LCChatModel = create_model_from_settings(
            self._settings_for(options)
        )
        if not tools:
            return model
        declarations = [
            {
                'type': "function",
                'function': {
                    'name': t.name,
                    'description': t.description,
                    'parameters': t.input_schema,
                },
            }
            for t in tools
        ]
        try:
            return model.bind_tools(declarations)
        except NotImplementedError:
            self.logger.warning(
                f"{self.get_name()} does not support tool calling. "
                "Tools not bound to the model."
            )
            return model

    @staticmethod
    def _invoke_kwargs(options: ChatOptions | None) -> dict[str, Any]:
        if options is not None and options.stop:
            return {'stop': list(options.stop)}
        return {}

    def chat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolCallback] = (),
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        model = self._get_model(tools, options)
        response = model.invoke(
            convert_messages(messages), **self._invoke_kwargs(options)
        )
        return convert_response(response)

    async def achat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolCallback] = (),
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        model = self._get_model(tools, options)
        response = await model.ainvoke(
            convert_messages(messages), **self._invoke_kwargs(options)
        )
        return convert_response(response)

    def _final_fragment(
        self, aggregate: BaseMessageChunk | None
    ) -> ChatResponse | None:
        # tool calls are only complete once all chunks are merged
        if aggregate is None:
            return None
        calls = _tool_calls(aggregate)
        metadata = _response_metadata(aggregate)
        if not (calls or metadata):
            return None
        return ChatResponse(
            message=assistant_message(tool_calls=calls),
            metadata=metadata,
        )

    def stream(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolCallback] = (),
        options: ChatOptions | None = None,
    ) -> Iterator[ChatResponse]:
        model = self._get_model(tools, options)
        aggregate: BaseMessageChunk | None = None
        for chunk in model.stream(
            convert_messages(messages), **self._invoke_kwargs(options)
        ):
            aggregate = chunk if aggregate is None else aggregate + chunk
            text = _content_text(chunk.content)
            if text:
                yield ChatResponse(message=assistant_message(text))
        final = self._final_fragment(aggregate)
        if final is not None:
            yield final

    async def astream(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolCallback] = (),
        options: ChatOptions | None = None,
    ) -> AsyncIterator[ChatResponse]:
        model = self._get_model(tools, options)
        aggregate: BaseMessageChunk | None = None
        async for chunk in model.astream(
            convert_messages(messages), **self._invoke_kwargs(options)
        ):
            aggregate = chunk if aggregate is None else aggregate + chunk
            text = _content_text(chunk.content)
            if text:
                yield ChatResponse(message=assistant_message(text))
        final = self._final_fragment(aggregate)
        if final is not None:
            yield final
