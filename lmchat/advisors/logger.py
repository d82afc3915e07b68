"""
An advisor logging the requests and the responses of the chat.

The request is logged before the model call, and the response after
it; in streaming calls, the response is logged once the stream is
exhausted. The messages are logged at debug level by default, and may
be formatted by giving the functions converting the envelopes to text.

    ```python
    from lmchat.utils.logging import LoglistLogger

    logs = LoglistLogger()
    advisor = SimpleLoggerAdvisor(logger=logs)
    ```
"""

from collections.abc import Callable, Iterator

from lmchat.utils.logging import LoggerBase, get_logger

from .aggregator import aggregate_advised_responses
from .api import (
    AdvisedRequest,
    AdvisedResponse,
    CallAroundAdvisor,
    ChainContinuation,
    StreamAroundAdvisor,
)


def default_request_to_string(request: AdvisedRequest) -> str:
    tools = [t.name for t in request.tool_callbacks]
    tools.extend(request.tool_names)
    return (
        f"request: user_text={request.user_text!r}, "
        f"system_text={request.system_text!r}, "
        f"messages={len(request.messages)}, tools={tools}, "
        f"advise_context={dict(request.advise_context)}"
    )


def default_response_to_string(response: AdvisedResponse) -> str:
    if response.response is None:
        return "response: none"
    return (
        f"response: text={response.response.text!r}, "
        f"metadata={dict(response.response.metadata)}"
    )


class SimpleLoggerAdvisor(CallAroundAdvisor, StreamAroundAdvisor):
    """
    Logs requests and responses.

    Args:
        request_to_string: formats the request
        response_to_string: formats the response
        order: the precedence of the advisor
        level: the level of the log messages, 'debug' or 'info'
        logger: a logger object
    """

    name = "SimpleLoggerAdvisor"

    def __init__(
        self,
        request_to_string: Callable[[AdvisedRequest], str] = default_request_to_string,
        response_to_string: Callable[[AdvisedResponse], str] = default_response_to_string,
        *,
        order: int = 0,
        level: str = 'debug',
        logger: LoggerBase = get_logger(__name__),
    ) -> None:
        if level not in ('debug', 'info'):
            raise ValueError(f"Invalid log level: {level}")
        self.request_to_string = request_to_string
        self.response_to_string = response_to_string
        self.order = order
        self.level = level
        self.logger = logger

    def _log(self, message: str) -> None:
        if self.level == 'info':
            self.logger.info(message)
        else:
            self.logger.debug(message)

    def observe_before(self, request: AdvisedRequest) -> None:
        self._log(self.request_to_string(request))

    def observe_after(self, response: AdvisedResponse) -> None:
        self._log(self.response_to_string(response))

    def around_call(
        self, request: AdvisedRequest, chain: ChainContinuation
    ) -> AdvisedResponse:
        self.observe_before(request)
        response = chain.next_around_call(request)
        self.observe_after(response)
        return response

    def around_stream(
        self, request: AdvisedRequest, chain: ChainContinuation
    ) -> Iterator[AdvisedResponse]:
        self.observe_before(request)
        fragments = chain.next_around_stream(request)
        return aggregate_advised_responses(fragments, self.observe_after)
