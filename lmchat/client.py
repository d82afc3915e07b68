"""
The chat client: the entry point to chat with a language model
through the advisor chain.

The client holds the defaults of the chat (model, system text,
advisors, tools and options). Each call builds the request envelope
of the turn, runs the advisors, renders the prompt and resolves the
tool calls of the model:

    ```python
    from lmchat.client import ChatClient
    from lmchat.language_models.tools import tool

    @tool
    def get_current_weather(request: WeatherRequest) -> dict:
        \"\"\"Get the weather in location\"\"\"
        return {'temp': 30.0, 'unit': "C"}

    client = ChatClient(
        "OpenAI/gpt-4.1-mini",
        system_text="You are a helpful assistant.",
        tools=[get_current_weather],
    )
    print(client.content(
        "What's the weather like in Paris?",
        tool_names=["get_current_weather"],
    ))

    for fragment in client.stream_content("Tell me a story"):
        print(fragment, end="")
    ```

The model may be given as a BaseChatModel object, as settings or a
specification of a LangChain model, or read from config.toml.

Errors of advisors, of the model and of the tools are raised as
ChainAbortedError, with the original exception as cause.
"""

from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any
import asyncio

from lmchat.advisors.api import (
    AdvisedRequest,
    AdvisedResponse,
    Advisor,
)
from lmchat.advisors.chain import AdvisorChain
from lmchat.config.config import LanguageModelSettings, Settings
from lmchat.language_models.base import BaseChatModel
from lmchat.language_models.messages import (
    ChatResponse,
    MediaBlock,
    Message,
)
from lmchat.language_models.prompts import ChatOptions, Prompt
from lmchat.language_models.tool_loop import ToolCallingLoop
from lmchat.language_models.tools import ToolCallback, ToolRegistry
from lmchat.utils.logging import LoggerBase, get_logger


class ChatClient:
    """
    A chat client.

    Args:
        chat_model: the model, as a model object, LanguageModelSettings,
            or a specification such as 'OpenAI/gpt-4.1-mini'. If None,
            the model of the settings is used.
        system_text: the default system text
        advisors: the default advisors
        tools: the tools available to requests by name
        options: the default chat options
        settings: the settings (read from config.toml if not given)
        logger: a logger object
    """

    def __init__(
        self,
        chat_model: BaseChatModel | LanguageModelSettings | str | None = None,
        *,
        system_text: str | None = None,
        advisors: Iterable[Advisor] = (),
        tools: Iterable[ToolCallback] = (),
        options: ChatOptions | None = None,
        settings: Settings | None = None,
        logger: LoggerBase = get_logger(__name__),
    ) -> None:
        self.settings = settings if settings is not None else Settings()
        self.logger = logger
        self.chat_model = self._create_model(chat_model)
        self.system_text = system_text
        self.advisors: tuple[Advisor, ...] = tuple(advisors)
        self.registry = ToolRegistry(tools, logger=logger)
        self.options = options

    def _create_model(
        self,
        chat_model: BaseChatModel | LanguageModelSettings | str | None,
    ) -> BaseChatModel:
        if isinstance(chat_model, BaseChatModel):
            return chat_model
        from lmchat.language_models.langchain.adapter import (
            LangChainChatModel,
        )

        if chat_model is None:
            chat_model = self.settings.model
        return LangChainChatModel(chat_model, logger=self.logger)

    def prompt(
        self,
        user_text: str,
        *,
        system_text: str | None = None,
        messages: Sequence[Message] = (),
        media: Sequence[MediaBlock] = (),
        user_params: Mapping[str, Any] | None = None,
        system_params: Mapping[str, Any] | None = None,
        advisors: Iterable[Advisor] = (),
        advisor_params: Mapping[str, Any] | None = None,
        advise_context: Mapping[str, Any] | None = None,
        tool_names: Iterable[str] = (),
        tools: Iterable[ToolCallback] = (),
        tool_context: Mapping[str, Any] | None = None,
        options: ChatOptions | None = None,
    ) -> AdvisedRequest:
        """
        Builds the request envelope of a turn. Arguments add to, or
        override, the defaults of the client.

        Raises:
            ValidationError: for invalid requests (e.g. empty user
                text)
        """
        chat_options = (
            self.options.merge(options) if self.options else options
        )
        return AdvisedRequest(
            chat_model=self.chat_model,
            user_text=user_text,
            system_text=(
                system_text if system_text is not None else self.system_text
            ),
            chat_options=chat_options,
            media=tuple(media),
            tool_names=tuple(tool_names),
            tool_callbacks=tuple(tools),
            messages=tuple(messages),
            user_params=user_params or {},
            system_params=system_params or {},
            advisors=self.advisors + tuple(advisors),
            advisor_params=advisor_params or {},
            advise_context=advise_context or {},
            tool_context=tool_context or {},
        )

    # terminal links of the advisor chain-------------------------------
    def _resolve_tools(self, prompt: Prompt) -> Prompt:
        names = prompt.options.tool_names if prompt.options else ()
        given = {t.name for t in prompt.tool_callbacks}
        resolved = self.registry.resolve(n for n in names if n not in given)
        if not resolved:
            return prompt
        return Prompt(
            messages=prompt.messages,
            options=prompt.options,
            tool_callbacks=prompt.tool_callbacks + tuple(resolved),
            tool_context=prompt.tool_context,
        )

    def _tool_loop(self, request: AdvisedRequest) -> ToolCallingLoop:
        return ToolCallingLoop(
            request.chat_model,
            max_rounds=self.settings.chat.tool_max_rounds,
            logger=self.logger,
        )

    def _call_model(self, request: AdvisedRequest) -> AdvisedResponse:
        prompt = self._resolve_tools(request.to_prompt())
        response = self._tool_loop(request).call(prompt)
        return AdvisedResponse(
            response=response, advise_context=request.advise_context
        )

    def _stream_model(
        self, request: AdvisedRequest
    ) -> Iterator[AdvisedResponse]:
        prompt = self._resolve_tools(request.to_prompt())
        loop = self._tool_loop(request)
        return (
            AdvisedResponse(
                response=fragment, advise_context=request.advise_context
            )
            for fragment in loop.stream(prompt)
        )

    def _chain(self, request: AdvisedRequest) -> AdvisorChain:
        return AdvisorChain(
            request.advisors,
            self._call_model,
            self._stream_model,
            logger=self.logger,
        )

    # public interface--------------------------------------------------
    def call_advised(self, request: AdvisedRequest) -> AdvisedResponse:
        """Runs a blocking turn from a request envelope."""
        return self._chain(request).call(request)

    def stream_advised(
        self, request: AdvisedRequest
    ) -> Iterator[AdvisedResponse]:
        """Runs a streaming turn from a request envelope. The advisors
        run before this function returns."""
        return self._chain(request).stream(request)

    def call(self, user_text: str, **kwargs: Any) -> ChatResponse:
        """
        Sends the user text to the model and returns the response.

        Args:
            user_text: the user text
            kwargs: the arguments of prompt()

        Raises:
            ChainAbortedError
        """
        advised = self.call_advised(self.prompt(user_text, **kwargs))
        if advised.response is None:
            return ChatResponse()
        return advised.response

    def content(self, user_text: str, **kwargs: Any) -> str:
        """The text of the response to the user text."""
        return self.call(user_text, **kwargs).text

    def stream(
        self, user_text: str, **kwargs: Any
    ) -> Iterator[ChatResponse]:
        """
        Streams the response of the model. The advisors process the
        request before this function returns, and the model is called
        when iteration starts.

        Raises:
            ChainAbortedError
        """
        fragments = self.stream_advised(self.prompt(user_text, **kwargs))
        return (f.response for f in fragments if f.response is not None)

    def stream_content(
        self, user_text: str, **kwargs: Any
    ) -> Iterator[str]:
        """Streams the text of the response."""
        return (
            r.text for r in self.stream(user_text, **kwargs) if r.text
        )

    async def acall(self, user_text: str, **kwargs: Any) -> ChatResponse:
        """The blocking call, run in a worker thread."""
        return await asyncio.to_thread(self.call, user_text, **kwargs)
