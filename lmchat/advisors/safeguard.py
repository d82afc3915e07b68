"""
An advisor blocking requests that contain sensitive words.

When the user text contains one of the sensitive words, the advisor
returns the failure response without calling the rest of the chain,
so that the model is not called.

    ```python
    advisor = SafeGuardAdvisor(["password", "credit card"])
    ```
"""

from collections.abc import Iterable, Iterator

from lmchat.language_models.messages import ChatResponse, assistant_message
from lmchat.language_models.prompts import prompt_library
from lmchat.utils.logging import LoggerBase, get_logger

from .api import (
    HIGHEST_PRECEDENCE,
    AdvisedRequest,
    AdvisedResponse,
    CallAroundAdvisor,
    ChainContinuation,
    StreamAroundAdvisor,
)


class SafeGuardAdvisor(CallAroundAdvisor, StreamAroundAdvisor):
    """
    Args:
        sensitive_words: words that block the request (the match is
            not case sensitive)
        failure_response: the text of the response to blocked requests
        order: the precedence of the advisor (by default, it runs
            before all other advisors)
        logger: a logger object
    """

    name = "SafeGuardAdvisor"

    def __init__(
        self,
        sensitive_words: Iterable[str],
        *,
        failure_response: str | None = None,
        order: int = HIGHEST_PRECEDENCE,
        logger: LoggerBase = get_logger(__name__),
    ) -> None:
        self.sensitive_words = tuple(w for w in sensitive_words if w)
        self.failure_response = (
            failure_response
            if failure_response is not None
            else prompt_library["safeguard_failure"]
        )
        self.order = order
        self.logger = logger

    def is_blocked(self, request: AdvisedRequest) -> bool:
        text = request.user_text.casefold()
        return any(w.casefold() in text for w in self.sensitive_words)

    def _failure(self, request: AdvisedRequest) -> AdvisedResponse:
        self.logger.warning("Request blocked: sensitive content")
        return AdvisedResponse(
            response=ChatResponse(
                message=assistant_message(self.failure_response),
                metadata={'finish_reason': "safeguard"},
            ),
            advise_context=request.advise_context,
        )

    def around_call(
        self, request: AdvisedRequest, chain: ChainContinuation
    ) -> AdvisedResponse:
        if self.is_blocked(request):
            return self._failure(request)
        return chain.next_around_call(request)

    def around_stream(
        self, request: AdvisedRequest, chain: ChainContinuation
    ) -> Iterator[AdvisedResponse]:
        if self.is_blocked(request):
            return iter([self._failure(request)])
        return chain.next_around_stream(request)
