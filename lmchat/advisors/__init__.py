"""Advisors intercept the requests and responses of the chat client
around the model call. See api.py for the interfaces and chain.py for
the order of execution."""

# pyright: reportUnusedImport=false
# flake8: noqa

from .api import (
    AdvisedRequest,
    AdvisedResponse,
    Advisor,
    CallAroundAdvisor,
    StreamAroundAdvisor,
    ChainContinuation,
    ChainAbortedError,
    ChainStage,
    FORMAT_PARAM_KEY,
    HIGHEST_PRECEDENCE,
    DEFAULT_CHAT_MEMORY_PRECEDENCE_ORDER,
)
from .chain import AdvisorChain
from .aggregator import aggregate_advised_response, aggregate_advised_responses
from .memory import (
    VectorStoreChatMemoryAdvisor,
    CHAT_MEMORY_CONVERSATION_ID_KEY,
    CHAT_MEMORY_RETRIEVE_SIZE_KEY,
)
from .logger import SimpleLoggerAdvisor
from .safeguard import SafeGuardAdvisor
