# pyright: reportUnusedImport=false
# flake8: noqa

from .lazy_dict import LazyLoadingDict

from .messages import (
    TextBlock,
    MediaBlock,
    ToolCallBlock,
    ToolResultBlock,
    Message,
    ChatResponse,
    system_message,
    user_message,
    assistant_message,
    tool_result_message,
    aggregate_responses,
)
from .prompts import ChatOptions, Prompt, prompt_library, create_prompt
from .tools import (
    ToolCallback,
    ToolRegistry,
    create_tool,
    tool,
    UnknownToolError,
    ToolInputMismatchError,
    ToolExecutionError,
)
from .base import BaseChatModel
from .tool_loop import ToolCallingLoop, ToolLoopExceededError, LoopState
