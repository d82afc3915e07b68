"""
Long term chat memory in a vector store.

The advisor stores the messages of the conversation in a LangChain
vector store, and retrieves the stored messages most similar to the
user text to add them to the system text of the request:

    1. before the model call, the stored messages of the conversation
        most similar to the user text are retrieved, and given to
        the model in the system text (see the "long_term_memory"
        template of the prompt library). The user message is then
        stored.
    2. after the model call, the response of the model is stored. In
        streaming calls, the response is stored once the stream is
        exhausted, aggregating the fragments.

Messages are stored as documents with the metadata of the message and
the keys conversationId and messageType (USER or ASSISTANT).

The conversation and the number of retrieved messages may be set for
each request through the advise context:

    ```python
    from langchain_core.vectorstores import InMemoryVectorStore
    from langchain_core.embeddings import DeterministicFakeEmbedding

    store = InMemoryVectorStore(DeterministicFakeEmbedding(size=64))
    advisor = VectorStoreChatMemoryAdvisor(store)
    client = ChatClient(model, advisors=[advisor])
    client.content(
        "My name is Ann",
        advise_context={CHAT_MEMORY_CONVERSATION_ID_KEY: "ann"},
    )
    ```

When the store cannot be written, the turn fails with the default
write_failure_policy 'abort'. With 'log', the error is logged and the
turn continues.
"""

from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any

from langchain_core.documents import Document
from langchain_core.vectorstores import InMemoryVectorStore, VectorStore

from lmchat.config.config import (
    ChatSettings,
    Settings,
    WriteFailurePolicy,
)
from lmchat.language_models.messages import Message, user_message
from lmchat.language_models.prompts import prompt_library
from lmchat.utils.logging import LoggerBase, get_logger

from .aggregator import aggregate_advised_responses
from .api import (
    DEFAULT_CHAT_MEMORY_PRECEDENCE_ORDER,
    AdvisedRequest,
    AdvisedResponse,
    CallAroundAdvisor,
    ChainContinuation,
    StreamAroundAdvisor,
)

# advise context keys
CHAT_MEMORY_CONVERSATION_ID_KEY = "chat_memory_conversation_id"
CHAT_MEMORY_RETRIEVE_SIZE_KEY = "chat_memory_response_size"

DEFAULT_CHAT_MEMORY_CONVERSATION_ID = "default"
DEFAULT_CHAT_MEMORY_RESPONSE_SIZE = 100

# document metadata keys
DOCUMENT_METADATA_CONVERSATION_ID = "conversationId"
DOCUMENT_METADATA_MESSAGE_TYPE = "messageType"

# The template parameter of the memory in the system text
LONG_TERM_MEMORY_PARAM = "long_term_memory"

SearchFilter = Callable[[VectorStore, str], Any]


def conversation_filter(store: VectorStore, conversation_id: str) -> Any:
    """
    The filter of the documents of a conversation. The in-memory
    store of LangChain filters with a predicate on the documents;
    other stores take a metadata mapping.
    """
    if isinstance(store, InMemoryVectorStore):
        return lambda doc: (
            doc.metadata.get(DOCUMENT_METADATA_CONVERSATION_ID)
            == conversation_id
        )
    return {DOCUMENT_METADATA_CONVERSATION_ID: conversation_id}


def to_documents(
    messages: Iterable[Message], conversation_id: str
) -> list[Document]:
    """Converts the user and assistant messages to documents. Other
    messages are skipped."""
    docs: list[Document] = []
    for message in messages:
        if message.role not in ('user', 'assistant'):
            continue
        metadata: dict[str, Any] = dict(message.metadata)
        metadata[DOCUMENT_METADATA_CONVERSATION_ID] = conversation_id
        metadata[DOCUMENT_METADATA_MESSAGE_TYPE] = message.role.upper()
        docs.append(Document(page_content=message.text, metadata=metadata))
    return docs


class VectorStoreChatMemoryAdvisor(CallAroundAdvisor, StreamAroundAdvisor):
    """
    Retrieves the chat memory from a vector store into the system
    text of the request.

    Args:
        vector_store: the store of the messages
        default_conversation_id: the conversation of the requests that
            do not set one in the advise context
        chat_history_window_size: the number of messages retrieved, if
            not set in the advise context
        system_text_advise: the template appended to the system text.
            It must contain the {long_term_memory} placeholder.
        order: the precedence of the advisor
        write_failure_policy: 'abort' or 'log'
        search_filter: builds the conversation filter of the store
        logger: a logger object
    """

    name = "VectorStoreChatMemoryAdvisor"

    def __init__(
        self,
        vector_store: VectorStore,
        *,
        default_conversation_id: str = DEFAULT_CHAT_MEMORY_CONVERSATION_ID,
        chat_history_window_size: int = DEFAULT_CHAT_MEMORY_RESPONSE_SIZE,
        system_text_advise: str | None = None,
        order: int = DEFAULT_CHAT_MEMORY_PRECEDENCE_ORDER,
        write_failure_policy: WriteFailurePolicy = 'abort',
        search_filter: SearchFilter = conversation_filter,
        logger: LoggerBase = get_logger(__name__),
    ) -> None:
        if chat_history_window_size < 1:
            raise ValueError("chat_history_window_size must be positive")
        if write_failure_policy not in ('abort', 'log'):
            raise ValueError(
                f"Invalid write failure policy: {write_failure_policy}"
            )
        self.vector_store = vector_store
        self.default_conversation_id = default_conversation_id
        self.chat_history_window_size = chat_history_window_size
        self.system_text_advise = (
            system_text_advise
            if system_text_advise is not None
            else prompt_library["long_term_memory"]
        )
        self.order = order
        self.write_failure_policy = write_failure_policy
        self.search_filter = search_filter
        self.logger = logger

    @classmethod
    def from_settings(
        cls,
        vector_store: VectorStore,
        settings: ChatSettings | None = None,
        **kwargs: Any,
    ) -> 'VectorStoreChatMemoryAdvisor':
        """An advisor with the defaults of the chat section of the
        settings (read from config.toml if not given)."""
        if settings is None:
            settings = Settings().chat
        return cls(
            vector_store,
            default_conversation_id=settings.memory_conversation_id,
            chat_history_window_size=settings.memory_retrieve_size,
            write_failure_policy=settings.memory_write_failure,
            **kwargs,
        )

    def get_conversation_id(self, context: Mapping[str, Any]) -> str:
        return str(
            context.get(
                CHAT_MEMORY_CONVERSATION_ID_KEY,
                self.default_conversation_id,
            )
        )

    def get_retrieve_size(self, context: Mapping[str, Any]) -> int:
        return int(
            context.get(
                CHAT_MEMORY_RETRIEVE_SIZE_KEY,
                self.chat_history_window_size,
            )
        )

    def _write(self, messages: Iterable[Message], conversation_id: str) -> None:
        docs = to_documents(messages, conversation_id)
        if not docs:
            return
        try:
            self.vector_store.add_documents(docs)
        except Exception as e:
            if self.write_failure_policy == 'abort':
                raise
            self.logger.error(
                f"Could not store messages of conversation "
                f"{conversation_id}: {e}"
            )

    def before(self, request: AdvisedRequest) -> AdvisedRequest:
        """Retrieves the memory into the system text and stores the
        user message."""
        conversation_id = self.get_conversation_id(request.advise_context)
        top_k = self.get_retrieve_size(request.advise_context)

        documents = self.vector_store.similarity_search(
            request.user_text,
            k=top_k,
            filter=self.search_filter(self.vector_store, conversation_id),
        )
        long_term_memory = "\n".join(d.page_content for d in documents)
        self.logger.debug(
            f"Retrieved {len(documents)} messages of conversation "
            f"{conversation_id}"
        )

        advised_request = request.from_instance(
            system_text=(request.system_text or "")
            + "\n"
            + self.system_text_advise,
            system_params={
                **request.system_params,
                LONG_TERM_MEMORY_PARAM: long_term_memory,
            },
        )

        self._write(
            [user_message(request.user_text, request.media)],
            conversation_id,
        )
        return advised_request

    def observe_after(self, response: AdvisedResponse) -> None:
        """Stores the response of the model."""
        if response.response is None:
            return
        self._write(
            [response.response.message],
            self.get_conversation_id(response.advise_context),
        )

    def around_call(
        self, request: AdvisedRequest, chain: ChainContinuation
    ) -> AdvisedResponse:
        advised_request = self.before(request)
        response = chain.next_around_call(advised_request)
        self.observe_after(response)
        return response

    def around_stream(
        self, request: AdvisedRequest, chain: ChainContinuation
    ) -> Iterator[AdvisedResponse]:
        advised_request = self.before(request)
        fragments = chain.next_around_stream(advised_request)
        return aggregate_advised_responses(fragments, self.observe_after)
