"""
The advisor chain engine.

The chain runs the advisors of a chat turn around the model call.
Advisors are sorted by ascending order (advisors with equal order
keep the order in which they were given). On the way in, each advisor
transforms the request and calls the rest of the chain; the last link
(the terminal) calls the model; on the way out, the advisors observe
the response in reverse order.

    ```python
    chain = AdvisorChain(
        [memory_advisor, logger_advisor],
        call_terminal=call_model,
        stream_terminal=stream_model,
    )
    response = chain.call(request)
    ```

Each call to `call` or `stream` composes a fresh sequence of links,
so that the same chain object may serve concurrent turns.

In streaming mode, the advisors are functions returning iterators:
the code of all advisors before the model call runs within
`AdvisorChain.stream`, before the caller requests the first fragment.
The model fragments are produced lazily as the caller iterates.

Errors raised by the advisors or the model are raised to the caller
as ChainAbortedError, recording the phase and the advisor where the
error occurred. When an advisor fails before calling the chain, the
model is not called. A ChainAbortedError propagating through the
outer advisors is not wrapped again.
"""

from collections.abc import Callable, Iterable, Iterator
from typing import TypeVar

from lmchat.utils.logging import LoggerBase, get_logger

from .api import (
    Advisor,
    AdvisedRequest,
    AdvisedResponse,
    CallAroundAdvisor,
    CallTerminal,
    ChainAbortedError,
    ChainContinuation,
    ChainStage,
    StreamAroundAdvisor,
    StreamTerminal,
)

AdvisorT = TypeVar('AdvisorT', bound=Advisor)

CallLink = Callable[[AdvisedRequest], AdvisedResponse]
StreamLink = Callable[[AdvisedRequest], Iterator[AdvisedResponse]]


def sort_advisors(advisors: Iterable[AdvisorT]) -> list[AdvisorT]:
    """Advisors in ascending order. The sort is stable."""
    return sorted(advisors, key=lambda a: a.order)


def _abort(
    stage: ChainStage,
    error: Exception,
    advisor: str | None,
    logger: LoggerBase,
) -> ChainAbortedError:
    abort = ChainAbortedError(stage, error, advisor)
    logger.error(str(abort))
    return abort


def _guard_stream(
    fragments: Iterator[AdvisedResponse],
    advisor: str | None,
    logger: LoggerBase,
    proceeded: Callable[[], bool] = lambda: True,
) -> Iterator[AdvisedResponse]:
    try:
        yield from fragments
    except ChainAbortedError:
        raise
    except Exception as e:
        if advisor is None:
            stage = ChainStage.MODEL
        else:
            stage = ChainStage.AFTER if proceeded() else ChainStage.BEFORE
        raise _abort(stage, e, advisor, logger) from e


class AdvisorChain:
    """
    Runs the advisors of a turn around the terminal link.

    Args:
        advisors: the advisors. Those that do not implement the hook of
            a mode (around_call or around_stream) are skipped in that
            mode.
        call_terminal: the link calling the model in blocking mode
        stream_terminal: the link calling the model in streaming mode
        logger: a logger object
    """

    def __init__(
        self,
        advisors: Iterable[Advisor],
        call_terminal: CallTerminal,
        stream_terminal: StreamTerminal,
        *,
        logger: LoggerBase = get_logger(__name__),
    ) -> None:
        self.advisors: list[Advisor] = sort_advisors(advisors)
        self.call_terminal = call_terminal
        self.stream_terminal = stream_terminal
        self.logger = logger

    def call_advisors(self) -> list[CallAroundAdvisor]:
        return [
            a for a in self.advisors if isinstance(a, CallAroundAdvisor)
        ]

    def stream_advisors(self) -> list[StreamAroundAdvisor]:
        return [
            a for a in self.advisors if isinstance(a, StreamAroundAdvisor)
        ]

    # blocking mode-----------------------------------------------------
    def _call_terminal_link(self) -> CallLink:
        def link(request: AdvisedRequest) -> AdvisedResponse:
            try:
                return self.call_terminal(request)
            except ChainAbortedError:
                raise
            except Exception as e:
                raise _abort(ChainStage.MODEL, e, None, self.logger) from e

        return link

    def _call_link(
        self, advisor: CallAroundAdvisor, next_link: CallLink
    ) -> CallLink:
        name = advisor.get_name()

        def link(request: AdvisedRequest) -> AdvisedResponse:
            proceeded = False

            def proceed(req: AdvisedRequest) -> AdvisedResponse:
                nonlocal proceeded
                proceeded = True
                return next_link(req)

            try:
                self.logger.debug(f"Advisor {name}: around call")
                return advisor.around_call(request, _Continuation(proceed))
            except ChainAbortedError:
                raise
            except Exception as e:
                stage = ChainStage.AFTER if proceeded else ChainStage.BEFORE
                raise _abort(stage, e, name, self.logger) from e

        return link

    def call(self, request: AdvisedRequest) -> AdvisedResponse:
        """
        Runs a blocking turn.

        Raises:
            ChainAbortedError
        """
        link = self._call_terminal_link()
        for advisor in reversed(self.call_advisors()):
            link = self._call_link(advisor, link)
        return link(request)

    # streaming mode----------------------------------------------------
    def _stream_terminal_link(self) -> StreamLink:
        def link(request: AdvisedRequest) -> Iterator[AdvisedResponse]:
            try:
                fragments = self.stream_terminal(request)
            except ChainAbortedError:
                raise
            except Exception as e:
                raise _abort(ChainStage.MODEL, e, None, self.logger) from e
            return _guard_stream(iter(fragments), None, self.logger)

        return link

    def _stream_link(
        self, advisor: StreamAroundAdvisor, next_link: StreamLink
    ) -> StreamLink:
        name = advisor.get_name()

        def link(request: AdvisedRequest) -> Iterator[AdvisedResponse]:
            proceeded = False

            def proceed(req: AdvisedRequest) -> Iterator[AdvisedResponse]:
                nonlocal proceeded
                proceeded = True
                return next_link(req)

            try:
                self.logger.debug(f"Advisor {name}: around stream")
                fragments = advisor.around_stream(
                    request, _Continuation(stream=proceed)
                )
            except ChainAbortedError:
                raise
            except Exception as e:
                stage = ChainStage.AFTER if proceeded else ChainStage.BEFORE
                raise _abort(stage, e, name, self.logger) from e
            return _guard_stream(
                iter(fragments), name, self.logger, lambda: proceeded
            )

        return link

    def stream(self, request: AdvisedRequest) -> Iterator[AdvisedResponse]:
        """
        Runs a streaming turn. The advisors transform the request
        before this function returns; the model is called when the
        first fragment is requested.

        Raises:
            ChainAbortedError, here or while iterating
        """
        link = self._stream_terminal_link()
        for advisor in reversed(self.stream_advisors()):
            link = self._stream_link(advisor, link)
        return link(request)


class _Continuation(ChainContinuation):
    """The links following an advisor in a composed chain."""

    def __init__(
        self,
        call: CallLink | None = None,
        stream: StreamLink | None = None,
    ) -> None:
        self._call = call
        self._stream = stream

    def next_around_call(self, request: AdvisedRequest) -> AdvisedResponse:
        if self._call is None:
            raise RuntimeError("Blocking call in a streaming chain")
        return self._call(request)

    def next_around_stream(
        self, request: AdvisedRequest
    ) -> Iterator[AdvisedResponse]:
        if self._stream is None:
            raise RuntimeError("Streaming call in a blocking chain")
        return self._stream(request)
