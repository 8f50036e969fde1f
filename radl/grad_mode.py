"""Process-wide switch deciding whether operations record a computation graph.

With recording enabled, every operation links its output to its inputs and
caches what its backward function needs. With recording disabled, operations
return plain leaf Tensors with `requires_grad=False`. The engine turns
recording off in three places:

- `radl.autograd.backward` runs the backward functions under `no_grad`, so
  gradient math never grows the graph it traverses.
- `Optimizer.step` is wrapped with `no_grad_fn`, so in-place parameter
  updates stay leaves.
- `Network.predict` is wrapped with `no_grad_fn` for graph-free inference.
"""

import functools
import logging
from collections.abc import Callable
from types import TracebackType
from typing import ParamSpec, Self, TypeVar

P = ParamSpec("P")
T = TypeVar("T")

logger = logging.getLogger(__name__)


_RECORD_GRAPH: bool = True


def is_grad_enabled() -> bool:
    """Whether operations currently link their outputs to their inputs.

    Read by every operation and by the `Tensor` constructor, which forces
    `requires_grad=False` while recording is off.

    Returns:
        bool: `True` if a computation graph is recorded.
    """
    return _RECORD_GRAPH


def set_global_grad_mode(enabled: bool) -> None:
    """Turn graph recording on or off until the next call.

    Prefer `no_grad` or `no_grad_fn`, which restore the previous mode.

    Args:
        enabled (bool): Whether operations record a graph.
    """
    global _RECORD_GRAPH
    _RECORD_GRAPH = enabled
    logger.debug("Graph recording %s", "on" if enabled else "off")


class no_grad:  # noqa: N801
    """Block in which operations return leaf Tensors without graph links.

    The mode active on entry is restored on exit, also when the block raises,
    so blocks nest.

    Example:
        >>> with no_grad():
        ...     logits = network(x)
        >>> logits.is_leaf()
        True
    """

    def __enter__(self) -> Self:
        self._outer_mode = is_grad_enabled()
        set_global_grad_mode(False)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        set_global_grad_mode(self._outer_mode)


def no_grad_fn(fn: Callable[P, T]) -> Callable[P, T]:
    """Run every call of `fn` inside `no_grad`.

    Used for `Optimizer.step` and `Network.predict`.

    Args:
        fn (Callable[P, T]): The function whose operations must not be recorded.

    Returns:
        Callable[P, T]: The wrapped function, same signature and name.
    """

    @functools.wraps(fn)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        with no_grad():
            return fn(*args, **kwargs)

    return wrapper


__all__ = [
    "is_grad_enabled",
    "no_grad",
    "no_grad_fn",
    "set_global_grad_mode",
]
