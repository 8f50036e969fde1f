"""Tensor implementation that supports autograd."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import numpy as np

from .errors import RegistryError
from .grad_mode import is_grad_enabled
from .registry import get_registry, normalize_name

if TYPE_CHECKING:
    from enum import Enum

    from .registry import BackwardFn, Registry


logger = logging.getLogger(__name__)


DEFAULT_DTYPE = np.float32

ShapeLike = int | Sequence[int]


def _as_float_array(data: Any, dtype: Any = None) -> np.ndarray:
    """Convert `data` to an ndarray, promoting non-floating data to `DEFAULT_DTYPE`."""
    if isinstance(data, Tensor):
        data = data.data
    array = np.asarray(data, dtype=dtype)
    if not np.issubdtype(array.dtype, np.floating):
        array = array.astype(DEFAULT_DTYPE)
    return array


def _normalize_shape(shape: ShapeLike) -> tuple[int, ...]:
    """Transforms an int or a sequence of ints into a validated shape tuple."""
    dims = (shape,) if isinstance(shape, int) else tuple(shape)
    for dim in dims:
        if not isinstance(dim, int | np.integer) or dim < 0:
            raise ValueError(f"Shape dimensions must be non-negative integers, got {dims}")
    return tuple(int(dim) for dim in dims)


class Tensor:
    """A dense float array with autograd support.

    Attributes:
        data (np.ndarray): The values, row-major.
        grad (np.ndarray | None): Gradient buffer of the same shape as `data`.
            `None` until the first gradient is accumulated into it.
        requires_grad (bool): Whether gradients flow into this Tensor.
        creator_op (str | None): Name of the operation that created the Tensor,
            `None` for leaves.
        src (tuple[Tensor, ...]): The inputs of `creator_op`.
        backward_fn (BackwardFn | None): Gradient function registered for `creator_op`.
        op_ctx (dict[str, Any]): Values cached by the forward pass for `backward_fn`.
    """

    # Makes numpy defer to the reflected operators (e.g. `ndarray + Tensor`)
    __array_ufunc__ = None

    def __init__(  # noqa: PLR0913
        self,
        data: Any,
        *,
        src: tuple[Tensor, ...] | None = None,
        creator_op: str | Enum | None = None,
        op_ctx: dict[str, Any] | None = None,
        requires_grad: bool = False,
        dtype: Any = None,
        registry: Registry | None = None,
    ) -> None:
        self.data: np.ndarray = _as_float_array(data, dtype=dtype)
        self.src: tuple[Tensor, ...] = tuple(src or ())
        self.creator_op: str | None = normalize_name(creator_op) if creator_op else None

        backward_fn: BackwardFn | None = None
        if self.creator_op is not None:
            spec = (registry or get_registry()).get_op(self.creator_op)
            backward_fn = spec.backward_fn if spec is not None else None

        if not self.is_leaf() and backward_fn is None:
            raise RegistryError(f'Gradient propagation not supported for op "{creator_op}"')

        self.backward_fn: BackwardFn | None = backward_fn
        self.op_ctx: dict[str, Any] = op_ctx or {}
        self.requires_grad: bool = is_grad_enabled() and requires_grad
        self.grad: np.ndarray | None = None
        self._released = False

    @property
    def shape(self) -> tuple[int, ...]:
        return self.data.shape

    @property
    def ndim(self) -> int:
        return self.data.ndim

    @property
    def size(self) -> int:
        """Number of elements, the product of `shape`."""
        return int(self.data.size)

    @property
    def dtype(self) -> np.dtype[Any]:
        return self.data.dtype

    @property
    def T(self) -> Tensor:  # noqa: N802
        """Transpose of a 2-D Tensor, tracked in the computation graph."""
        from .ops import transpose  # noqa: PLC0415

        return transpose(self)

    def is_leaf(self) -> bool:
        """Whether this Tensor is a leaf in a computation graph.

        Checks whether it has no src/parents from which it was created.

        Returns:
            bool: If it is a leaf (`True`), or not (`False`).
        """
        return len(self.src) == 0

    def item(self) -> float:
        """The value of a single-element Tensor as a Python float."""
        return float(self.data.item())

    def numpy(self) -> np.ndarray:
        """A copy of the data as a plain ndarray."""
        return self.data.copy()

    def detach(self, *, in_place: bool = False) -> Tensor:
        """Detach the Tensor from the computation graph.

        Args:
            in_place (bool): Whether to cut the graph at this Tensor (`True`),
                dropping its inputs, backward function and cached context but
                keeping its gradient, or to return a new leaf holding a copy of
                the data (`False`), which leaves the graph intact. Defaults to False.

        Returns:
            Tensor: The resulting Tensor. If `in_place` is `True`, it will
                be the same one identity-wise.
        """
        if in_place:
            self.src = ()
            self.creator_op = None
            self.backward_fn = None
            self.op_ctx = {}
            return self
        return Tensor(self.data.copy())

    def release(self) -> None:
        """Cut this Tensor out of a finished backward pass.

        Same as `detach(in_place=True)`, but the Tensor remembers that it used
        to be part of a graph, so a later traversal through it raises instead
        of treating it as a leaf.
        """
        self.detach(in_place=True)
        self._released = True

    def is_released(self) -> bool:
        """Whether the graph behind this Tensor was released by `backward`."""
        return self._released

    def backward(self, *, retain_graph: bool = False) -> None:
        """Backpropagate from this Tensor, see `radl.autograd.backward`."""
        from .autograd import backward  # noqa: PLC0415

        backward(self, retain_graph=retain_graph)

    def zero_grad(self) -> None:
        """Reset the gradient buffer to zero, see `radl.autograd.zero_grad`."""
        from .autograd import zero_grad  # noqa: PLC0415

        zero_grad(self)

    def relu(self) -> Tensor:
        from .ops import relu  # noqa: PLC0415

        return relu(self)

    def sigmoid(self) -> Tensor:
        from .ops import sigmoid  # noqa: PLC0415

        return sigmoid(self)

    def tanh(self) -> Tensor:
        from .ops import tanh  # noqa: PLC0415

        return tanh(self)

    def softmax(self) -> Tensor:
        from .ops import softmax  # noqa: PLC0415

        return softmax(self)

    def slice(self, start: int, end: int) -> Tensor:
        """Copy of the rows `[start, end)` of the leading axis, tracked in the graph."""
        from .ops import slice as slice_rows  # noqa: PLC0415

        return slice_rows(self, start=start, end=end)

    def __add__(self, other: Any) -> Tensor:
        from .ops import add  # noqa: PLC0415

        return add(self, other)

    def __radd__(self, other: Any) -> Tensor:
        from .ops import add  # noqa: PLC0415

        return add(other, self)

    def __sub__(self, other: Any) -> Tensor:
        from .ops import sub  # noqa: PLC0415

        return sub(self, other)

    def __rsub__(self, other: Any) -> Tensor:
        from .ops import sub  # noqa: PLC0415

        return sub(other, self)

    def __mul__(self, other: Any) -> Tensor:
        from .ops import mul  # noqa: PLC0415

        return mul(self, other)

    def __rmul__(self, other: Any) -> Tensor:
        from .ops import mul  # noqa: PLC0415

        return mul(other, self)

    def __matmul__(self, other: Any) -> Tensor:
        from .ops import matmul  # noqa: PLC0415

        return matmul(self, other)

    def __rmatmul__(self, other: Any) -> Tensor:
        from .ops import matmul  # noqa: PLC0415

        return matmul(other, self)

    def __len__(self) -> int:
        if self.ndim == 0:
            raise TypeError("len() of a 0-d Tensor")
        return self.shape[0]

    def __repr__(self) -> str:
        parts = [np.array2string(self.data, precision=4, threshold=20)]
        if self.requires_grad:
            parts.append("requires_grad=True")
        if self.creator_op is not None:
            parts.append(f'creator_op="{self.creator_op}"')
        return f"Tensor({', '.join(parts)})"


class Parameter(Tensor):
    """A leaf Tensor that is part of a model and updated by an optimizer.

    Parameters always require a gradient, even when created while gradient
    tracking is disabled.
    """

    def __init__(self, data: Any, *, dtype: Any = None) -> None:
        # integer parameters are not differentiable, there are no
        # infinitesimal steps between integers
        if dtype is not None and not np.issubdtype(np.dtype(dtype), np.floating):
            raise ValueError(f'Parameter must have float type, found "{np.dtype(dtype)}".')
        super().__init__(data, dtype=dtype)
        self.requires_grad = True


def tensor(
    data: Any,
    *,
    dtype: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    """Factory function creating a leaf Tensor from a copy of `data`.

    Args:
        data (Any): The array data (can be scalar, list, array, etc).
        dtype (Any): The data type of the array data.
            Defaults to None, meaning dtype is inferred from data
            (non-floating data becomes `float32`).
        requires_grad (bool): Whether to track gradients. Defaults to False.

    Returns:
        Tensor: The created Tensor.
    """
    if isinstance(data, Tensor):
        data = data.data
    return Tensor(np.array(data, dtype=dtype), requires_grad=requires_grad)


def zeros(
    shape: ShapeLike,
    *,
    dtype: Any = DEFAULT_DTYPE,
    requires_grad: bool = False,
) -> Tensor:
    """Create a zero-filled leaf Tensor of `shape`."""
    return Tensor(np.zeros(_normalize_shape(shape), dtype=dtype), requires_grad=requires_grad)


def ones(
    shape: ShapeLike,
    *,
    dtype: Any = DEFAULT_DTYPE,
    requires_grad: bool = False,
) -> Tensor:
    """Create a one-filled leaf Tensor of `shape`."""
    return Tensor(np.ones(_normalize_shape(shape), dtype=dtype), requires_grad=requires_grad)


def empty(
    shape: ShapeLike,
    *,
    dtype: Any = DEFAULT_DTYPE,
    requires_grad: bool = False,
) -> Tensor:
    """Create a leaf Tensor of `shape` with uninitialized values."""
    return Tensor(np.empty(_normalize_shape(shape), dtype=dtype), requires_grad=requires_grad)


def randn(
    shape: ShapeLike,
    *,
    seed: int | None = 42,
    dtype: Any = DEFAULT_DTYPE,
    requires_grad: bool = False,
) -> Tensor:
    """Create a leaf Tensor of standard normal samples.

    Args:
        shape (ShapeLike): The shape of the Tensor.
        seed (int | None): Seed of the random generator, equal seeds give equal
            Tensors. `None` draws fresh entropy. Defaults to 42.
        dtype (Any): The data type. Defaults to `float32`.
        requires_grad (bool): Whether to track gradients. Defaults to False.

    Returns:
        Tensor: The sampled Tensor.
    """
    rng = np.random.default_rng(seed)
    samples = rng.standard_normal(_normalize_shape(shape)).astype(dtype)
    return Tensor(samples, requires_grad=requires_grad)


def zeros_like(
    other: Tensor,
    *,
    dtype: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    """Create a Tensor of zeros with the same shape as `other`.

    Args:
        other (Tensor): The tensor to match the shape from.
        dtype (Any): Override dtype. Defaults to None (use other's dtype).
        requires_grad (bool): Whether to track gradients. Defaults to False.

    Returns:
        Tensor: A tensor of zeros.
    """
    return zeros(
        other.shape,
        dtype=dtype if dtype is not None else other.dtype,
        requires_grad=requires_grad,
    )


def ones_like(
    other: Tensor,
    *,
    dtype: Any = None,
    requires_grad: bool = False,
) -> Tensor:
    """Create a Tensor of ones with the same shape as `other`.

    Args:
        other (Tensor): The tensor to match the shape from.
        dtype (Any): Override dtype. Defaults to None (use other's dtype).
        requires_grad (bool): Whether to track gradients. Defaults to False.

    Returns:
        Tensor: A tensor of ones.
    """
    return ones(
        other.shape,
        dtype=dtype if dtype is not None else other.dtype,
        requires_grad=requires_grad,
    )


__all__ = [
    "DEFAULT_DTYPE",
    "Parameter",
    "Tensor",
    "empty",
    "ones",
    "ones_like",
    "randn",
    "tensor",
    "zeros",
    "zeros_like",
]
