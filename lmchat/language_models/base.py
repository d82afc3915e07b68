"""
Abstract base class for language model backends.

This is the interface the rest of the package uses to talk to a
model: a blocking call returning the whole response, and a stream
returning the response in fragments that can be merged with
`aggregate_responses`. Models do not execute tools: a response
containing tool calls is returned as is, and the tool calls are
resolved by the tool calling loop.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator, AsyncIterator, Sequence
import asyncio

from lmchat.language_models.messages import ChatResponse, Message
from lmchat.language_models.prompts import ChatOptions
from lmchat.language_models.tools import ToolCallback


class BaseChatModel(ABC):
    """Abstract base class for chat models."""

    @abstractmethod
    def chat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolCallback] = (),
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        """
        Get the next message from the model synchronously.

        Args:
            messages: The conversation history.
            tools: The tools the model can call.
            options: Options overriding the model defaults.

        Returns:
            The model's response (which may contain text content or
            tool calls).
        """
        pass

    async def achat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolCallback] = (),
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        """
        Get the next message from the model asynchronously.

        Default implementation delegates to the synchronous chat method
        in a thread pool.
        """
        return await asyncio.to_thread(self.chat, messages, tools, options)

    def stream(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolCallback] = (),
        options: ChatOptions | None = None,
    ) -> Iterator[ChatResponse]:
        """
        Stream the model's response synchronously. The iterator is
        lazy: the model is called when the first fragment is
        requested.

        Default implementation yields the full response at once.
        """
        yield self.chat(messages, tools, options)

    async def astream(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolCallback] = (),
        options: ChatOptions | None = None,
    ) -> AsyncIterator[ChatResponse]:
        """
        Stream the model's response asynchronously.

        Default implementation yields the full response at once.
        """
        yield await self.achat(messages, tools, options)

    def get_name(self) -> str:
        """The name of the model, used in logs."""
        return type(self).__name__
