"""
The tool calling loop.

When the model answers with tool calls, the tools are executed and
their results are sent back to the model, until the model gives a
response without tool calls:

    1. send the conversation to the model
    2. collect the tool calls of the response
    3. no tool calls: the response is final
    4. otherwise, append the assistant message with the tool calls to
       the conversation, execute the tools in the order of the calls,
       append one user message with a tool result for each call, and
       go back to 1.

Each tool result carries the identifier of the tool call it answers.

The number of model calls is bounded by max_rounds. When the model
still requests tools after max_rounds calls, ToolLoopExceededError is
raised. Errors of the model or of the tools end the loop and are
propagated; the results of the current round are discarded.

Example:
    ```python
    loop = ToolCallingLoop(model, max_rounds=5)
    response = loop.call(prompt)
    print(response.text)
    ```
"""

from collections.abc import Iterator
from enum import StrEnum

from lmchat.language_models.base import BaseChatModel
from lmchat.language_models.messages import (
    ChatResponse,
    Message,
    TextBlock,
    ToolResultBlock,
    aggregate_responses,
    tool_result_message,
)
from lmchat.language_models.prompts import Prompt
from lmchat.language_models.tools import ToolRegistry
from lmchat.utils.logging import LoggerBase, get_logger

# metadata key of the streamed fragments holding the number of the
# model call (round) that produced them
TOOL_ROUND_KEY = "tool_round"


class ToolLoopExceededError(RuntimeError):
    """The model kept requesting tools beyond the allowed rounds."""

    def __init__(self, max_rounds: int):
        self.max_rounds = max_rounds
        super().__init__(
            f"Model still requested tools after {max_rounds} rounds"
        )


class LoopState(StrEnum):
    AWAITING_MODEL = 'awaiting_model'
    HAS_TOOL_REQUESTS = 'has_tool_requests'
    EXECUTING_TOOLS = 'executing_tools'
    FINAL = 'final'


class ToolCallingLoop:
    """
    Drives the exchange of tool calls and tool results between a
    model and the tools of a prompt.

    Attributes:
        model: the chat model
        max_rounds: the maximum number of model calls, or None for no
            bound
        state: the state of the last exchange
        rounds: the number of model calls of the last exchange
    """

    def __init__(
        self,
        model: BaseChatModel,
        *,
        max_rounds: int | None = 10,
        logger: LoggerBase = get_logger(__name__),
    ) -> None:
        if max_rounds is not None and max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.model = model
        self.max_rounds = max_rounds
        self.logger = logger
        self.state = LoopState.AWAITING_MODEL
        self.rounds = 0

    def _transition(self, state: LoopState) -> None:
        self.logger.debug(
            f"Tool loop ({self.model.get_name()}) round {self.rounds}: "
            f"{self.state} -> {state}"
        )
        self.state = state

    def _check_bound(self) -> None:
        if self.max_rounds is not None and self.rounds >= self.max_rounds:
            self.logger.error(
                f"Tool loop stopped: {self.model.get_name()} requested "
                f"tools after {self.rounds} rounds"
            )
            raise ToolLoopExceededError(self.max_rounds)

    def _execute_tools(
        self, response: ChatResponse, registry: ToolRegistry, prompt: Prompt
    ) -> Message:
        self._transition(LoopState.EXECUTING_TOOLS)
        results: list[ToolResultBlock] = []
        for call in response.tool_calls:
            self.logger.info(f"Tool call from the model: {call.name}")
            content = registry.execute(
                call.name, call.arguments, prompt.tool_context
            )
            results.append(
                ToolResultBlock(
                    tool_call_id=call.id, name=call.name, content=content
                )
            )
        return tool_result_message(results)

    def call(self, prompt: Prompt) -> ChatResponse:
        """
        Sends the prompt to the model and resolves the tool calls.

        Args:
            prompt: the prompt, including the tool callbacks

        Returns:
            the final response of the model.

        Raises:
            UnknownToolError, ToolInputMismatchError,
            ToolExecutionError: from tool execution
            ToolLoopExceededError: too many rounds
        """
        registry = ToolRegistry(prompt.tool_callbacks, logger=self.logger)
        history: list[Message] = list(prompt.messages)
        self.rounds = 0
        self.state = LoopState.AWAITING_MODEL
        while True:
            response = self.model.chat(
                history, prompt.tool_callbacks, prompt.options
            )
            self.rounds += 1
            if not response.has_tool_calls():
                self._transition(LoopState.FINAL)
                return response

            self._transition(LoopState.HAS_TOOL_REQUESTS)
            self._check_bound()
            # the assistant message is kept verbatim in the history
            results = self._execute_tools(response, registry, prompt)
            history.append(response.message)
            history.append(results)
            self._transition(LoopState.AWAITING_MODEL)

    def stream(self, prompt: Prompt) -> Iterator[ChatResponse]:
        """
        Streams the response of the model, resolving tool calls.

        Fragments without tool calls are forwarded as they arrive,
        with the number of their round in metadata[TOOL_ROUND_KEY].
        Tool calls are withheld: at the end of each round, the
        fragments are aggregated, and if tool calls were received,
        the tools are executed and the next round is streamed.

        Raises:
            see call
        """
        registry = ToolRegistry(prompt.tool_callbacks, logger=self.logger)
        history: list[Message] = list(prompt.messages)
        self.rounds = 0
        self.state = LoopState.AWAITING_MODEL
        while True:
            fragments: list[ChatResponse] = []
            round_number = self.rounds + 1
            for fragment in self.model.stream(
                history, prompt.tool_callbacks, prompt.options
            ):
                fragments.append(fragment)
                metadata = {**fragment.metadata, TOOL_ROUND_KEY: round_number}
                if not fragment.has_tool_calls():
                    yield ChatResponse(
                        message=fragment.message, metadata=metadata
                    )
                elif fragment.text:
                    # forward the text of a mixed fragment
                    yield ChatResponse(
                        message=Message(
                            role='assistant',
                            content=(TextBlock(text=fragment.text),),
                        ),
                        metadata=metadata,
                    )
            self.rounds += 1
            response = aggregate_responses(fragments)
            if not response.has_tool_calls():
                self._transition(LoopState.FINAL)
                return

            self._transition(LoopState.HAS_TOOL_REQUESTS)
            self._check_bound()
            results = self._execute_tools(response, registry, prompt)
            history.append(response.message)
            history.append(results)
            self._transition(LoopState.AWAITING_MODEL)
