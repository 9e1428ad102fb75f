import inspect
from typing import Any, Callable


async def invoke(callback: Callable[..., Any], *args: Any) -> None:
    """Call ``callback`` and await the result if it is a coroutine."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result
