"""
Tools that a language model may ask to invoke, and the bridge that
executes them.

A tool is described by a `ToolCallback`: a name, a description, a
JSON schema of the input and the Python function implementing the
tool. The model receives the name, description and schema; when it
responds with a tool call, the arguments of the call (a JSON object)
are converted into the input type of the function, the function is
called, and its return value is converted to text to be sent back to
the model.

Tool callbacks are created from functions with `create_tool` or the
`tool` decorator. The input type is read from the annotation of the
first parameter of the function, and may be any type that pydantic
can validate (a BaseModel, a TypedDict, a dataclass...). A function
with a second required parameter (or one named tool_context, or
annotated as a mapping) receives the tool context, a mapping given
by the caller of the chat that is not shown to the model.

**Example**:

    ```python
    from pydantic import BaseModel
    from lmchat.language_models.tools import tool, ToolRegistry

    class WeatherRequest(BaseModel):
        location: str
        unit: Literal['C', 'F'] = 'C'

    @tool(description="Get the weather in location")
    def get_current_weather(request: WeatherRequest) -> dict:
        return {'temp': 30.0, 'unit': request.unit}

    registry = ToolRegistry([get_current_weather])
    registry.execute("get_current_weather", {'location': "Paris"})
    # '{"temp":30.0,"unit":"C"}'
    ```

LangChain tools may be used as well, see `from_langchain_tool`.

Errors:
    UnknownToolError: no tool with the requested name
    ToolInputMismatchError: the arguments cannot be converted to the
        input type of the tool
    ToolExecutionError: the tool function raised an exception
"""

import inspect
from collections.abc import Callable, Iterable, Mapping
from typing import Any, get_origin, get_type_hints

from langchain_core.tools import BaseTool
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    model_validator,
)
from pydantic_core import to_json

from lmchat.utils.logging import LoggerBase, get_logger


class UnknownToolError(LookupError):
    """The model requested a tool that is not registered."""

    def __init__(self, name: str, available: Iterable[str] = ()):
        self.name = name
        self.available = tuple(available)
        super().__init__(
            f"Unknown tool '{name}'. Available tools: "
            f"{', '.join(self.available) or 'none'}"
        )


class ToolInputMismatchError(ValueError):
    """The arguments of a tool call do not fit the tool input type."""

    def __init__(self, tool_name: str, raw_input: Any, target_type: Any):
        self.tool_name = tool_name
        self.raw_input = raw_input
        self.target_type = target_type
        super().__init__(
            f"Invalid input for tool '{tool_name}': cannot convert "
            f"{raw_input!r} to {_type_name(target_type)}"
        )


class ToolExecutionError(RuntimeError):
    """A tool raised an exception while executing."""

    def __init__(self, tool_name: str, cause: BaseException):
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(
            f"Tool '{tool_name}' failed: {type(cause).__name__}: {cause}"
        )


def _type_name(target_type: Any) -> str:
    return getattr(target_type, '__name__', None) or str(target_type)


def _to_text(result: Any) -> str:
    if isinstance(result, str):
        return result
    return to_json(result).decode("utf-8")


def _is_mapping_annotation(annotation: Any) -> bool:
    if isinstance(annotation, str):
        return annotation.split('[')[0].split('.')[-1] in (
            'dict',
            'Mapping',
        )
    target = get_origin(annotation) or annotation
    return isinstance(target, type) and issubclass(target, Mapping)


class ToolCallback(BaseModel):
    """
    The definition of a tool and the function implementing it.

    Attributes:
        name: the name of the tool, unique within a chat request
        description: the description given to the model
        input_schema: the JSON schema of the tool input. If not
            given, it is generated from input_type.
        input_type: the type the arguments are converted to. If
            None, the function receives the arguments as a dict.
        function: the implementation of the tool
        response_converter: converts the return value of function
            to text. If None, strings are returned unchanged and
            other values are serialized to JSON.
    """

    name: str = Field(min_length=1, pattern=r'^[a-zA-Z0-9_-]+$')
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)
    input_type: Any = None
    function: Callable[..., Any]
    response_converter: Callable[[Any], str] | None = None

    model_config = ConfigDict(frozen=True, extra='forbid')

    @model_validator(mode='before')
    @classmethod
    def derive_schema(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get('input_schema'):
            input_type = data.get('input_type')
            if input_type is None:
                schema: dict[str, Any] = {
                    'type': "object",
                    'properties': {},
                }
            else:
                schema = TypeAdapter(input_type).json_schema()
            data = {**data, 'input_schema': schema}
        return data

    def _takes_context(self) -> bool:
        try:
            params = inspect.signature(self.function).parameters
        except (TypeError, ValueError):
            return False
        positional = [
            p
            for p in params.values()
            if p.kind
            in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL)
        ]
        if len(positional) < 2:
            return False
        second = positional[1]
        if second.kind == second.VAR_POSITIONAL:
            return True
        # a defaulted parameter only receives the context if it asks
        # for it by name or annotation
        return (
            second.default is second.empty
            or second.name == "tool_context"
            or _is_mapping_annotation(second.annotation)
        )

    def convert_input(self, arguments: Mapping[str, Any]) -> Any:
        """Converts the arguments of a tool call to the input type."""
        if self.input_type is None:
            return dict(arguments)
        try:
            return TypeAdapter(self.input_type).validate_python(
                dict(arguments)
            )
        except ValidationError as e:
            raise ToolInputMismatchError(
                self.name, dict(arguments), self.input_type
            ) from e

    def call(
        self,
        arguments: Mapping[str, Any],
        tool_context: Mapping[str, Any] | None = None,
    ) -> str:
        """
        Invokes the tool with the arguments of a tool call.

        Args:
            arguments: the arguments given by the model
            tool_context: passed to functions taking a second argument

        Returns:
            the text result of the tool.

        Raises:
            ToolInputMismatchError, ToolExecutionError
        """
        tool_input = self.convert_input(arguments)
        try:
            if self._takes_context():
                result = self.function(tool_input, dict(tool_context or {}))
            else:
                result = self.function(tool_input)
            if self.response_converter is not None:
                return self.response_converter(result)
            return _to_text(result)
        except ToolInputMismatchError:
            raise
        except Exception as e:
            raise ToolExecutionError(self.name, e) from e


def create_tool(
    function: Callable[..., Any],
    *,
    name: str | None = None,
    description: str | None = None,
    input_type: Any = None,
    input_schema: dict[str, Any] | None = None,
    response_converter: Callable[[Any], str] | None = None,
) -> ToolCallback:
    """
    Creates a tool callback from a function.

    Args:
        function: the tool implementation, taking the tool input and
            optionally the tool context
        name: the tool name (defaults to the function name)
        description: the tool description (defaults to the docstring
            of the function)
        input_type: the type of the input (defaults to the annotation
            of the first parameter of function)
        input_schema: a JSON schema overriding the generated one
        response_converter: converts the result to text

    Returns:
        a ToolCallback object.
    """
    if input_type is None:
        input_type = _first_parameter_type(function)
    return ToolCallback(
        name=name or function.__name__,
        description=(
            description
            if description is not None
            else inspect.getdoc(function) or ""
        ),
        input_schema=input_schema or {},
        input_type=input_type,
        function=function,
        response_converter=response_converter,
    )


def tool(
    function: Callable[..., Any] | None = None,
    **kwargs: Any,
) -> Any:
    """Decorator turning a function into a ToolCallback. May be used
    with or without the keyword arguments of create_tool."""
    if function is not None:
        return create_tool(function, **kwargs)

    def decorator(func: Callable[..., Any]) -> ToolCallback:
        return create_tool(func, **kwargs)

    return decorator


def _first_parameter_type(function: Callable[..., Any]) -> Any:
    try:
        params = list(inspect.signature(function).parameters.values())
        hints = get_type_hints(function)
    except (TypeError, ValueError, NameError):
        return None
    if not params:
        return None
    annotation = hints.get(params[0].name, None)
    if annotation in (None, Any, dict, Mapping):
        return None
    return annotation


def from_langchain_tool(lc_tool: BaseTool) -> ToolCallback:
    """
    Wraps a LangChain tool into a ToolCallback. The arguments of the
    call are validated by the tool itself.

    Args:
        lc_tool: a LangChain tool, e.g. created with
            langchain_core.tools.tool or StructuredTool.from_function

    Returns:
        a ToolCallback object.
    """
    from langchain_core.utils.function_calling import (
        convert_to_openai_tool,
    )

    schema: dict[str, Any] = convert_to_openai_tool(lc_tool)[
        'function'
    ].get('parameters', {})

    def _invoke(arguments: dict[str, Any]) -> Any:
        try:
            return lc_tool.invoke(arguments)
        except ValidationError as e:
            raise ToolInputMismatchError(
                lc_tool.name, arguments, lc_tool.args_schema
            ) from e

    def _convert(result: Any) -> str:
        content = getattr(result, 'content', result)
        return _to_text(content)

    return ToolCallback(
        name=lc_tool.name,
        description=lc_tool.description,
        input_schema=schema or {'type': "object", 'properties': {}},
        input_type=None,
        function=_invoke,
        response_converter=_convert,
    )


class ToolRegistry:
    """
    Maps tool names to tool callbacks and executes tool calls.

    The registry is the bridge between the tool calls of the model
    and the tool implementations. It does not sandbox the execution
    of the tools.
    """

    def __init__(
        self,
        callbacks: Iterable[ToolCallback] = (),
        logger: LoggerBase = get_logger(__name__),
    ) -> None:
        self._tools: dict[str, ToolCallback] = {}
        self.logger = logger
        for callback in callbacks:
            self.register(callback)

    def register(
        self, callback: ToolCallback, *, replace: bool = False
    ) -> None:
        """
        Registers a tool.

        Raises:
            ValueError: if a tool with the same name is registered
                and replace is False.
        """
        if callback.name in self._tools and not replace:
            raise ValueError(
                f"Tool '{callback.name}' is already registered"
            )
        self._tools[callback.name] = callback

    def get(self, name: str) -> ToolCallback:
        """
        Raises:
            UnknownToolError: no tool registered with this name.
        """
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name, self._tools.keys()) from None

    def resolve(self, names: Iterable[str]) -> list[ToolCallback]:
        """The callbacks of the given tool names."""
        return [self.get(name) for name in names]

    def names(self) -> list[str]:
        return list(self._tools.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def execute(
        self,
        name: str,
        arguments: Mapping[str, Any],
        tool_context: Mapping[str, Any] | None = None,
    ) -> str:
        """
        Executes a tool call.

        Args:
            name: the tool name
            arguments: the arguments of the tool call
            tool_context: the tool context of the chat request

        Returns:
            the text output of the tool.

        Raises:
            UnknownToolError, ToolInputMismatchError, ToolExecutionError
        """
        try:
            callback = self.get(name)
            self.logger.debug(f"Calling tool {name} with {dict(arguments)}")
            result = callback.call(arguments, tool_context)
        except (
            UnknownToolError,
            ToolInputMismatchError,
            ToolExecutionError,
        ) as e:
            self.logger.error(str(e))
            raise
        self.logger.debug(f"Tool {name} returned: {result}")
        return result
