"""
The utility class `LazyLoadingDict` memoizes objects produced by a
factory function, and is used to store the LangChain chat models
created from the model settings, as well as the template texts of the
prompt library.

A lazy dictionary is created by giving the factory function in the
constructor. The factory function takes one argument of the type of
the dictionary key and returns the object stored as value. The object
is created the first time the key is read, and the same object is
returned at each further access.

Keys are validated by the factory function itself: a factory that
matches the key against a set of admissible definitions raises a
ValueError for the others. Hashable pydantic models (frozen models)
can be used as keys to memoize objects from a whole specification.
"""

from collections.abc import Callable
from typing import TypeVar

# ValueT is the type of the stored values, KeyT of the keys.
ValueT = TypeVar('ValueT')
KeyT = TypeVar('KeyT')


class LazyLoadingDict(dict[KeyT, ValueT]):
    """A dictionary of memoized objects of type ValueT, created on
    first access by a factory function.

    Example:
    ```python
    from pydantic import BaseModel, ConfigDict

    class ModelSpec(BaseModel):
        provider: Literal['OpenAI', 'Debug']
        name: str

        # required to use instances as keys
        model_config = ConfigDict(frozen=True)

    def _create_model(spec: ModelSpec) -> BaseChatModel:
        match spec.provider:
            case 'OpenAI':
                from langchain_openai.chat_models import ChatOpenAI

                return ChatOpenAI(model=spec.name)
            case 'Debug':
                return DebugModel()
            case _:
                # Literals are not checked at run time
                raise ValueError(f"Invalid provider: {spec.provider}")

    models = LazyLoadingDict(_create_model)
    model = models[ModelSpec(provider='OpenAI', name="gpt-4.1-mini")]
    ```

    Values may also be assigned directly, bypassing the factory. An
    assigned key cannot be overwritten unless deleted first. When a
    value is deleted, it is closed with the destructor function, if
    given, or else by its close() or dispose() methods, if any.

    Expected behaviour: may raise ValidationError and ValueErrors.
    """

    def __init__(
        self,
        key_creator_func: Callable[[KeyT], ValueT],
        destructor_func: Callable[[ValueT], None] | None = None,
    ):
        super().__init__()
        self._key_creator_func = key_creator_func
        self._destructor_func = destructor_func

    def _destroy_value(self, value: ValueT) -> None:
        if self._destructor_func:
            self._destructor_func(value)
            return
        for method in ("close", "dispose"):
            release = getattr(value, method, None)
            if callable(release):
                release()
                return

    def __getitem__(self, key: KeyT) -> ValueT:
        if key in self:
            return super().__getitem__(key)

        value: ValueT = self._key_creator_func(key)
        super().__setitem__(key, value)
        return value

    def __setitem__(self, key: KeyT, value: ValueT) -> None:
        """Stores a value without calling the factory function.

        Raises:
            ValueError: If the key is already stored.
        """
        if key in self:
            raise ValueError(
                f"Key '{key}' already exists. Delete it first to "
                "overwrite."
            )
        super().__setitem__(key, value)

    def __delitem__(self, key: KeyT) -> None:
        if key in self:
            self._destroy_value(super().__getitem__(key))
        super().__delitem__(key)

    def clear(self) -> None:
        for value in list(self.values()):
            self._destroy_value(value)
        super().clear()
