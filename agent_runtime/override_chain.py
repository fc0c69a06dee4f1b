"""Plugin-first override chains shared by every callback extension point."""

import inspect
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar

T = TypeVar("T")

# A callback may be a plain function or a coroutine function.
Callback = Callable[..., Any]
PluginHook = Callable[..., Awaitable[Any]]


async def call_maybe_async(func: Callback, **kwargs: Any) -> Any:
    """Call ``func`` and await the result when it is awaitable."""
    result = func(**kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


class OverrideChain(Generic[T]):
    """Ask the plugin hook first, then each callback in order.

    The first non-None result wins and stops the chain. Callbacks are only
    consulted when the plugin hook is missing or returns None. The same
    keyword arguments are passed to the plugin hook and to every callback.
    """

    def __init__(
        self,
        plugin_hook: PluginHook | None = None,
        callbacks: Sequence[Callback] | Callback | None = None,
    ):
        self.plugin_hook = plugin_hook
        self.callbacks = normalize_callbacks(callbacks)

    def __bool__(self) -> bool:
        return self.plugin_hook is not None or bool(self.callbacks)

    async def run(self, **kwargs: Any) -> T | None:
        """Run the chain.

        Returns:
            The winning override, or None when nobody overrides.
        """
        if self.plugin_hook is not None:
            result = await self.plugin_hook(**kwargs)
            if result is not None:
                return result

        for callback in self.callbacks:
            result = await call_maybe_async(callback, **kwargs)
            if result is not None:
                return result
        return None


def normalize_callbacks(callbacks: Sequence[Callback] | Callback | None) -> list[Callback]:
    """Accept a single callback, a list of callbacks, or None."""
    if callbacks is None:
        return []
    if callable(callbacks):
        return [callbacks]
    return list(callbacks)
