"""
Aggregation of streamed responses, for advisors that observe the
complete response of a streaming call.

    ```python
    def around_stream(self, request, chain):
        fragments = chain.next_around_stream(request)
        return aggregate_advised_responses(fragments, self.observe)
    ```

The fragments are passed on unchanged. When the stream is exhausted,
on_complete is called once with a single response merging all
fragments. If the consumer stops iterating before the end of the
stream, on_complete is not called.

When the model called tools during the turn, the stream also carries
the text of the rounds that preceded the tool calls. Only the
fragments of the last round are merged, so that the aggregated
response is the final message of the model, as in blocking calls.
"""

from collections.abc import Callable, Iterable, Iterator
from typing import Any

from lmchat.language_models.messages import ChatResponse, aggregate_responses
from lmchat.language_models.tool_loop import TOOL_ROUND_KEY

from .api import AdvisedResponse


def _last_round(responses: list[ChatResponse]) -> list[ChatResponse]:
    rounds = [
        r.metadata[TOOL_ROUND_KEY]
        for r in responses
        if TOOL_ROUND_KEY in r.metadata
    ]
    if not rounds:
        return responses
    last = max(rounds)
    return [
        r for r in responses if r.metadata.get(TOOL_ROUND_KEY, last) == last
    ]


def aggregate_advised_response(
    fragments: Iterable[AdvisedResponse],
) -> AdvisedResponse:
    """Merges the fragments of a streamed turn, keeping the last tool
    round. The advise contexts of the fragments are merged, later
    keys overriding earlier ones."""
    responses: list[ChatResponse] = []
    context: dict[str, Any] = {}
    for fragment in fragments:
        context.update(fragment.advise_context)
        if fragment.response is not None:
            responses.append(fragment.response)
    responses = _last_round(responses)
    return AdvisedResponse(
        response=aggregate_responses(responses) if responses else None,
        advise_context=context,
    )


def aggregate_advised_responses(
    fragments: Iterable[AdvisedResponse],
    on_complete: Callable[[AdvisedResponse], None],
) -> Iterator[AdvisedResponse]:
    """
    Passes the fragments through, calling on_complete with the
    aggregated response at the end of the stream.

    Args:
        fragments: the streamed fragments
        on_complete: observer of the aggregated response

    Returns:
        an iterator over the fragments.
    """
    seen: list[AdvisedResponse] = []
    for fragment in fragments:
        seen.append(fragment)
        yield fragment
    on_complete(aggregate_advised_response(seen))
