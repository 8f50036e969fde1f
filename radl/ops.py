"""Forward and backward functions of all differentiable operations.

Every forward function computes a new Tensor from its inputs and tags it with
the operation name, its inputs and the values its backward formula needs.
Every backward function is registered together with its forward function and
computes the gradients of the inputs from the gradient of the output. Backward
functions return plain arrays, accumulation is done by the autograd engine.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import numpy as np

from .errors import ShapeMismatch
from .grad_mode import is_grad_enabled
from .registry import OpInputs, OpName, OpType, register_op
from .tensor import Tensor

logger = logging.getLogger(__name__)


# Lower clipping bound for probabilities fed into a logarithm
EPSILON = 1e-7

MATRIX_N_DIM = 2


def _to_tensor(x: Any, like: Tensor | None = None) -> Tensor:
    """Convert input to Tensor. Non-Tensors become constants with requires_grad=False."""
    if isinstance(x, Tensor):
        return x
    return Tensor(x, dtype=like.dtype if like is not None else None)


def _make_output(
    result: np.ndarray,
    *,
    creator_op: OpName,
    src: tuple[Tensor, ...],
    op_ctx: dict[str, Any] | None = None,
) -> Tensor:
    """Wraps the result of a forward computation into a graph node.

    Skips graph building when grad mode is disabled, e.g. during inference
    or optimizer updates.
    """
    if not is_grad_enabled():
        return Tensor(result)

    return Tensor(
        result,
        src=src,
        creator_op=creator_op,
        op_ctx=op_ctx,
        requires_grad=any(elem.requires_grad for elem in src),
    )


def _check_broadcastable(x: Tensor, y: Tensor, op_name: str) -> None:
    """Check that `x` and `y` are equal in shape or one extends the other.

    Supported are equal shapes, a 0-d scalar operand, and an operand whose
    shape equals the trailing dimensions of the other one (e.g. a bias vector
    added to a batch).

    Raises:
        ShapeMismatch: If none of the supported cases applies.
    """
    if x.shape == y.shape or x.ndim == 0 or y.ndim == 0:
        return
    small, large = (x, y) if x.ndim < y.ndim else (y, x)
    if small.ndim < large.ndim and large.shape[large.ndim - small.ndim :] == small.shape:
        return
    raise ShapeMismatch(
        f'Cannot broadcast shapes {x.shape} and {y.shape} for "{op_name}". '
        "Shapes must be equal or one must match the trailing dimensions of the other."
    )


def _check_same_shape(predictions: Tensor, targets: Tensor, op_name: str) -> None:
    if predictions.shape != targets.shape:
        raise ShapeMismatch(
            f'"{op_name}" expects predictions and targets of the same shape, '
            f"got {predictions.shape} and {targets.shape}"
        )


def _num_rows(x: Tensor) -> int:
    """Number of samples of a batch, 1 for a single sample."""
    return x.shape[0] if x.ndim > 1 else 1


def _broadcast_backward(
    x: Tensor,
    grad_out: np.ndarray,
) -> np.ndarray:
    """Applies a backward gradient operation on broadcasting.

    Effectively collapses `grad_out` by summing over all
    dimensions of `x` that were broadcasted.

    Args:
        x (Tensor): The Tensor that was broadcasted.
        grad_out (np.ndarray): The gradient of the following operation.

    Returns:
        np.ndarray: The computed gradient.
    """
    if x.shape == grad_out.shape:
        return grad_out  # shapes are the same, no broadcast happened

    collapse_dim: list[int] = []
    for i in range(grad_out.ndim):
        idx_x = x.ndim - i - 1
        idx_grad_out = grad_out.ndim - i - 1
        if idx_x < 0 or x.shape[idx_x] < grad_out.shape[idx_grad_out]:
            collapse_dim.append(idx_grad_out)

    return np.sum(grad_out, axis=tuple(collapse_dim), keepdims=True).reshape(x.shape)


def broadcastable(
    elem_wise_backward_fn: Callable[..., Any],
) -> Callable[..., Any]:
    """A decorator to extend element-wise backward gradient computing functions.

    This decorator adds the ability to support broadcasting.

    Args:
        elem_wise_backward_fn (Callable[[...], Any]): The backward
            function of an element-wise operation that should support
            broadcasting.

    Returns:
        Callable[[...], Any]: The wrapper function
        that supports broadcasting.
    """

    def wrapper(
        *inputs: Tensor,
        compute_grad: tuple[bool, ...],
        grad_out: np.ndarray,
        **kwargs: Any,
    ) -> tuple[np.ndarray | None, np.ndarray | None]:
        x, y = inputs
        grad_x, grad_y = elem_wise_backward_fn(
            *inputs,
            compute_grad=compute_grad,
            grad_out=grad_out,
            **kwargs,
        )
        grad_x = _broadcast_backward(x, grad_x) if grad_x is not None else None
        grad_y = _broadcast_backward(y, grad_y) if grad_y is not None else None
        return grad_x, grad_y

    # Keep the name of the wrapped function (e.g. `add_backward`) for logging
    wrapper.__name__ = elem_wise_backward_fn.__name__
    wrapper.__doc__ = elem_wise_backward_fn.__doc__

    return wrapper


# =============================================================================
# Elementwise arithmetic
# =============================================================================


def add(x: Any, y: Any) -> Tensor:
    """Elementwise `x + y`, a bias may be broadcast over the batch."""
    x, y = _to_tensor(x, like=y if isinstance(y, Tensor) else None), _to_tensor(y, like=x)
    _check_broadcastable(x, y, OpName.ADD.value)
    return _make_output(x.data + y.data, creator_op=OpName.ADD, src=(x, y))


@register_op(
    OpName.ADD,
    forward_fn=add,
    op_type=OpType.ELEMENTWISE,
    op_inputs=OpInputs.BINARY,
)
@broadcastable
def add_backward(
    *inputs: Tensor,  # noqa: ARG001
    compute_grad: tuple[bool, bool],
    grad_out: np.ndarray,
) -> tuple[np.ndarray | None, np.ndarray | None]:
    """Computes gradients for `x + y = z`.

    Args:
        *inputs (Tensor): Two inputs `(x, y)`.
        compute_grad (tuple[bool, bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (np.ndarray): Upstream gradient.

    Returns:
        tuple[np.ndarray | None, np.ndarray | None]: Gradients for `(x, y)`, with
            `None` where `compute_grad[i]` is False.
    """
    x_grad = grad_out if compute_grad[0] else None
    y_grad = grad_out if compute_grad[1] else None
    return x_grad, y_grad


def sub(x: Any, y: Any) -> Tensor:
    """Elementwise `x - y`, with the same broadcasting as `add`."""
    x, y = _to_tensor(x, like=y if isinstance(y, Tensor) else None), _to_tensor(y, like=x)
    _check_broadcastable(x, y, OpName.SUB.value)
    return _make_output(x.data - y.data, creator_op=OpName.SUB, src=(x, y))


@register_op(
    OpName.SUB,
    forward_fn=sub,
    op_type=OpType.ELEMENTWISE,
    op_inputs=OpInputs.BINARY,
    aliases=("subtract",),
)
@broadcastable
def sub_backward(
    *inputs: Tensor,  # noqa: ARG001
    compute_grad: tuple[bool, bool],
    grad_out: np.ndarray,
) -> tuple[np.ndarray | None, np.ndarray | None]:
    """Computes gradients for `x - y = z`.

    Args:
        *inputs (Tensor): Two inputs `(x, y)`.
        compute_grad (tuple[bool, bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (np.ndarray): Upstream gradient.

    Returns:
        tuple[np.ndarray | None, np.ndarray | None]: Gradients for `(x, y)`, with
            `None` where `compute_grad[i]` is False.
    """
    x_grad = grad_out if compute_grad[0] else None
    y_grad = -grad_out if compute_grad[1] else None
    return x_grad, y_grad


def mul(x: Any, y: Any) -> Tensor:
    """Elementwise `x * y`, with the same broadcasting as `add`."""
    x, y = _to_tensor(x, like=y if isinstance(y, Tensor) else None), _to_tensor(y, like=x)
    _check_broadcastable(x, y, OpName.MUL.value)
    return _make_output(x.data * y.data, creator_op=OpName.MUL, src=(x, y))


@register_op(
    OpName.MUL,
    forward_fn=mul,
    op_type=OpType.ELEMENTWISE,
    op_inputs=OpInputs.BINARY,
    aliases=("multiply",),
)
@broadcastable
def mul_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool, bool],
    grad_out: np.ndarray,
) -> tuple[np.ndarray | None, np.ndarray | None]:
    """Computes the gradient for multiplication `x * y = z`.

    Args:
        *inputs (Tensor): The inputs, expected to be of length 2.
            Expects: `tuple[0]` to be `x`, `tuple[1]` to be `y`.
        compute_grad (tuple[bool, bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (np.ndarray): The gradient of the following
            operation.

    Returns:
        tuple[np.ndarray | None, np.ndarray | None]: Gradients for `(x, y)`, with
            `None` where `compute_grad[i]` is False.
    """
    x, y = inputs
    grad_x = y.data * grad_out if compute_grad[0] else None
    grad_y = x.data * grad_out if compute_grad[1] else None
    return grad_x, grad_y


# =============================================================================
# Linear algebra
# =============================================================================


def matmul(x: Any, y: Any) -> Tensor:
    """Matrix product of `[m, k]` and `[k, n]` matrices.

    Raises:
        ShapeMismatch: If an operand is not 2-D or the inner dimensions differ.
    """
    x, y = _to_tensor(x), _to_tensor(y)
    if x.ndim != MATRIX_N_DIM or y.ndim != MATRIX_N_DIM:
        raise ShapeMismatch(f"matmul expects two matrices, got shapes {x.shape} and {y.shape}")
    if x.shape[1] != y.shape[0]:
        raise ShapeMismatch(
            f"matmul inner dimensions differ: {x.shape} @ {y.shape} "
            f"({x.shape[1]} != {y.shape[0]})"
        )
    return _make_output(np.matmul(x.data, y.data), creator_op=OpName.MATMUL, src=(x, y))


@register_op(
    OpName.MATMUL,
    forward_fn=matmul,
    op_type=OpType.LINALG,
    op_inputs=OpInputs.BINARY,
)
def matmul_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool, bool],
    grad_out: np.ndarray,
) -> tuple[np.ndarray | None, np.ndarray | None]:
    """Computes the gradient for matrix multiplication `AB = Z`.

    Args:
        *inputs (Tensor): The inputs, expected to be of length 2.
            Expects: `tuple[0]` to be `A` of shape `[m, k]`,
            `tuple[1]` to be `B` of shape `[k, n]`.
        compute_grad (tuple[bool, bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (np.ndarray): The gradient of the following
            operation, of shape `[m, n]`.

    Returns:
        tuple[np.ndarray | None, np.ndarray | None]: Gradients for `(A, B)`, with
            `None` where `compute_grad[i]` is False.
    """
    A, B = inputs  # noqa: N806
    grad_x = np.matmul(grad_out, B.data.T) if compute_grad[0] else None
    grad_y = np.matmul(A.data.T, grad_out) if compute_grad[1] else None
    return grad_x, grad_y


def transpose(x: Tensor) -> Tensor:
    """Transpose of a 2-D Tensor, as a copy.

    Raises:
        ShapeMismatch: If `x` is not 2-D.
    """
    if x.ndim != MATRIX_N_DIM:
        raise ShapeMismatch(f"transpose expects a matrix, got shape {x.shape}")
    return _make_output(np.ascontiguousarray(x.data.T), creator_op=OpName.TRANSPOSE, src=(x,))


@register_op(
    OpName.TRANSPOSE,
    forward_fn=transpose,
    op_type=OpType.MOVEMENT,
    op_inputs=OpInputs.UNARY,
)
def transpose_backward(
    *inputs: Tensor,  # noqa: ARG001
    compute_grad: tuple[bool],
    grad_out: np.ndarray,
) -> tuple[np.ndarray | None]:
    """Computes the gradient for `x^T = z`, the transpose is its own inverse."""
    x_grad = np.ascontiguousarray(grad_out.T) if compute_grad[0] else None
    return (x_grad,)


# =============================================================================
# Activations
# =============================================================================


def relu(x: Tensor) -> Tensor:
    """Rectified linear unit `max(x, 0)`."""
    mask = x.data > 0
    return _make_output(
        np.where(mask, x.data, 0).astype(x.dtype),
        creator_op=OpName.RELU,
        src=(x,),
        op_ctx={"mask": mask},
    )


@register_op(
    OpName.RELU,
    forward_fn=relu,
    op_type=OpType.ELEMENTWISE,
    op_inputs=OpInputs.UNARY,
    constraints={"x": "nonzero"},  # the kink at 0 is not differentiable
)
def relu_backward(
    *inputs: Tensor,  # noqa: ARG001
    compute_grad: tuple[bool],
    grad_out: np.ndarray,
    mask: np.ndarray,
) -> tuple[np.ndarray | None]:
    """Computes the gradient for `relu(x) = z`.

    Args:
        *inputs (Tensor): The inputs, expected to be of length 1.
            Expects: `tuple[0]` to be `x`.
        compute_grad (tuple[bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (np.ndarray): The gradient of the following
            operation.
        mask (np.ndarray): Where `x` was strictly positive in the forward pass.

    Returns:
        tuple[np.ndarray | None]: Gradient for `x`, or `None` if skipped.
    """
    x_grad = np.where(mask, grad_out, 0) if compute_grad[0] else None
    return (x_grad,)


def sigmoid(x: Tensor) -> Tensor:
    """Logistic function `1 / (1 + e^-x)`."""
    # tanh based form does not overflow for large negative inputs
    output = (0.5 * (1.0 + np.tanh(0.5 * x.data))).astype(x.dtype)
    return _make_output(output, creator_op=OpName.SIGMOID, src=(x,), op_ctx={"output": output})


@register_op(
    OpName.SIGMOID,
    forward_fn=sigmoid,
    op_type=OpType.ELEMENTWISE,
    op_inputs=OpInputs.UNARY,
)
def sigmoid_backward(
    *inputs: Tensor,  # noqa: ARG001
    compute_grad: tuple[bool],
    grad_out: np.ndarray,
    output: np.ndarray,
) -> tuple[np.ndarray | None]:
    """Computes the gradient for `sigmoid(x) = y` from the cached output `y`.

    Uses the identity `dy/dx = y * (1 - y)`.
    """
    x_grad = grad_out * output * (1 - output) if compute_grad[0] else None
    return (x_grad,)


def tanh(x: Tensor) -> Tensor:
    """Hyperbolic tangent."""
    output = np.tanh(x.data)
    return _make_output(output, creator_op=OpName.TANH, src=(x,), op_ctx={"output": output})


@register_op(
    OpName.TANH,
    forward_fn=tanh,
    op_type=OpType.ELEMENTWISE,
    op_inputs=OpInputs.UNARY,
)
def tanh_backward(
    *inputs: Tensor,  # noqa: ARG001
    compute_grad: tuple[bool],
    grad_out: np.ndarray,
    output: np.ndarray,
) -> tuple[np.ndarray | None]:
    """Computes the gradient for `tanh(x) = y` as `1 - y^2`."""
    x_grad = grad_out * (1 - output * output) if compute_grad[0] else None
    return (x_grad,)


def softmax(x: Tensor) -> Tensor:
    """Normalizes each row (last axis) of `x` into a probability distribution."""
    shifted = x.data - np.max(x.data, axis=-1, keepdims=True)  # for numerical stability
    exp = np.exp(shifted)
    output = exp / np.sum(exp, axis=-1, keepdims=True)
    return _make_output(output, creator_op=OpName.SOFTMAX, src=(x,), op_ctx={"output": output})


@register_op(
    OpName.SOFTMAX,
    forward_fn=softmax,
    op_type=OpType.ROWWISE,
    op_inputs=OpInputs.UNARY,
)
def softmax_backward(
    *inputs: Tensor,  # noqa: ARG001
    compute_grad: tuple[bool],
    grad_out: np.ndarray,
    output: np.ndarray,
) -> tuple[np.ndarray | None]:
    """Computes the gradient for `softmax(x) = s`.

    Applies the row-wise Jacobian `diag(s) - s s^T` to `grad_out` without
    materializing it: `s * (grad_out - sum(grad_out * s))`.

    Args:
        *inputs (Tensor): The inputs, expected to be of length 1.
            Expects: `tuple[0]` to be `x`.
        compute_grad (tuple[bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (np.ndarray): The gradient of the following
            operation.
        output (np.ndarray): The softmax output `s` of the forward pass.

    Returns:
        tuple[np.ndarray | None]: Gradient for `x`, or `None` if skipped.
    """
    if not compute_grad[0]:
        return (None,)
    row_dot = np.sum(grad_out * output, axis=-1, keepdims=True)
    return (output * (grad_out - row_dot),)


# =============================================================================
# Losses
# =============================================================================


def mse(predictions: Tensor, targets: Any) -> Tensor:
    """Mean squared error over all elements."""
    targets = _to_tensor(targets, like=predictions)
    _check_same_shape(predictions, targets, OpName.MSE.value)
    diff = predictions.data - targets.data
    loss = np.asarray(np.mean(diff * diff), dtype=predictions.dtype)
    return _make_output(
        loss,
        creator_op=OpName.MSE,
        src=(predictions, targets),
        op_ctx={"diff": diff},
    )


@register_op(
    OpName.MSE,
    forward_fn=mse,
    op_type=OpType.LOSS,
    op_inputs=OpInputs.BINARY,
    aliases=("mean_squared_error",),
)
def mse_backward(
    *inputs: Tensor,  # noqa: ARG001
    compute_grad: tuple[bool, bool],
    grad_out: np.ndarray,
    diff: np.ndarray,
) -> tuple[np.ndarray | None, np.ndarray | None]:
    """Computes the gradients of `mean((p - t)^2) = L`.

    Args:
        *inputs (Tensor): `(predictions, targets)`.
        compute_grad (tuple[bool, bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (np.ndarray): Upstream gradient of the scalar loss, usually 1.
        diff (np.ndarray): `p - t` from the forward pass.

    Returns:
        tuple[np.ndarray | None, np.ndarray | None]: Gradients for
            `(predictions, targets)`.
    """
    grad_p = (2.0 / diff.size) * diff * grad_out
    return (
        grad_p if compute_grad[0] else None,
        -grad_p if compute_grad[1] else None,
    )


def cross_entropy(predictions: Tensor, targets: Any) -> Tensor:
    """Categorical cross-entropy of probabilities, averaged over the batch.

    `predictions` are expected to be probabilities (e.g. a softmax output)
    and are clipped to `[EPSILON, 1]` before the logarithm.
    """
    targets = _to_tensor(targets, like=predictions)
    _check_same_shape(predictions, targets, OpName.CROSS_ENTROPY.value)
    clipped = np.clip(predictions.data, EPSILON, 1.0)
    n_rows = _num_rows(predictions)
    loss = np.asarray(-np.sum(targets.data * np.log(clipped)) / n_rows, dtype=predictions.dtype)
    return _make_output(
        loss,
        creator_op=OpName.CROSS_ENTROPY,
        src=(predictions, targets),
        op_ctx={"clipped": clipped, "n_rows": n_rows},
    )


@register_op(
    OpName.CROSS_ENTROPY,
    forward_fn=cross_entropy,
    op_type=OpType.LOSS,
    op_inputs=OpInputs.BINARY,
    aliases=("ce",),
    constraints={"x": "probability", "y": "probability"},
)
def cross_entropy_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool, bool],
    grad_out: np.ndarray,
    clipped: np.ndarray,
    n_rows: int,
) -> tuple[np.ndarray | None, np.ndarray | None]:
    """Computes the gradients of `-sum(t * log(p)) / N = L`.

    Args:
        *inputs (Tensor): `(predictions, targets)`.
        compute_grad (tuple[bool, bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (np.ndarray): Upstream gradient of the scalar loss, usually 1.
        clipped (np.ndarray): The clipped predictions of the forward pass.
        n_rows (int): The batch size `N`.

    Returns:
        tuple[np.ndarray | None, np.ndarray | None]: Gradients for
            `(predictions, targets)`.
    """
    targets = inputs[1]
    grad_p = -targets.data / clipped / n_rows * grad_out if compute_grad[0] else None
    grad_t = -np.log(clipped) / n_rows * grad_out if compute_grad[1] else None
    return grad_p, grad_t


def binary_cross_entropy(predictions: Tensor, targets: Any) -> Tensor:
    """Binary cross-entropy of probabilities, averaged over all elements."""
    targets = _to_tensor(targets, like=predictions)
    _check_same_shape(predictions, targets, OpName.BINARY_CROSS_ENTROPY.value)
    clipped = np.clip(predictions.data, EPSILON, 1.0 - EPSILON)
    t = targets.data
    loss = -np.mean(t * np.log(clipped) + (1 - t) * np.log(1 - clipped))
    return _make_output(
        np.asarray(loss, dtype=predictions.dtype),
        creator_op=OpName.BINARY_CROSS_ENTROPY,
        src=(predictions, targets),
        op_ctx={"clipped": clipped},
    )


@register_op(
    OpName.BINARY_CROSS_ENTROPY,
    forward_fn=binary_cross_entropy,
    op_type=OpType.LOSS,
    op_inputs=OpInputs.BINARY,
    aliases=("bce",),
    constraints={"x": "unit_interval", "y": "unit_interval"},
)
def binary_cross_entropy_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool, bool],
    grad_out: np.ndarray,
    clipped: np.ndarray,
) -> tuple[np.ndarray | None, np.ndarray | None]:
    """Computes the gradients of `-mean(t log(p) + (1 - t) log(1 - p)) = L`.

    Args:
        *inputs (Tensor): `(predictions, targets)`.
        compute_grad (tuple[bool, bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (np.ndarray): Upstream gradient of the scalar loss, usually 1.
        clipped (np.ndarray): The clipped predictions of the forward pass.

    Returns:
        tuple[np.ndarray | None, np.ndarray | None]: Gradients for
            `(predictions, targets)`.
    """
    t = inputs[1].data
    n_elem = clipped.size
    grad_p = (
        (clipped - t) / (clipped * (1 - clipped)) / n_elem * grad_out if compute_grad[0] else None
    )
    grad_t = (
        (np.log(1 - clipped) - np.log(clipped)) / n_elem * grad_out if compute_grad[1] else None
    )
    return grad_p, grad_t


def softmax_cross_entropy(logits: Tensor, targets: Any) -> Tensor:
    """Fused softmax and cross-entropy over raw scores, averaged over the batch.

    Uses the log-sum-exp trick, so no probability is ever clipped.
    """
    targets = _to_tensor(targets, like=logits)
    _check_same_shape(logits, targets, OpName.SOFTMAX_CROSS_ENTROPY.value)
    shifted = logits.data - np.max(logits.data, axis=-1, keepdims=True)
    log_probs = shifted - np.log(np.sum(np.exp(shifted), axis=-1, keepdims=True))
    n_rows = _num_rows(logits)
    loss = np.asarray(-np.sum(targets.data * log_probs) / n_rows, dtype=logits.dtype)
    return _make_output(
        loss,
        creator_op=OpName.SOFTMAX_CROSS_ENTROPY,
        src=(logits, targets),
        op_ctx={"log_probs": log_probs, "n_rows": n_rows},
    )


@register_op(
    OpName.SOFTMAX_CROSS_ENTROPY,
    forward_fn=softmax_cross_entropy,
    op_type=OpType.LOSS,
    op_inputs=OpInputs.BINARY,
    # the shortcut gradient assumes every target row sums to 1
    constraints={"y": "one_hot"},
)
def softmax_cross_entropy_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool, bool],
    grad_out: np.ndarray,
    log_probs: np.ndarray,
    n_rows: int,
) -> tuple[np.ndarray | None, np.ndarray | None]:
    """Computes the gradients of the fused loss with the `softmax - target` shortcut.

    Args:
        *inputs (Tensor): `(logits, targets)`, every target row summing to 1.
        compute_grad (tuple[bool, bool]): Flags indicating which input gradients
            to compute, aligned with `inputs`.
        grad_out (np.ndarray): Upstream gradient of the scalar loss, usually 1.
        log_probs (np.ndarray): Row-wise log-softmax of the logits.
        n_rows (int): The batch size `N`.

    Returns:
        tuple[np.ndarray | None, np.ndarray | None]: Gradients for `(logits, targets)`.
    """
    targets = inputs[1]
    grad_logits = (
        (np.exp(log_probs) - targets.data) / n_rows * grad_out if compute_grad[0] else None
    )
    grad_t = -log_probs / n_rows * grad_out if compute_grad[1] else None
    return grad_logits, grad_t


# =============================================================================
# Slicing
# =============================================================================


def slice(x: Tensor, *, start: int, end: int) -> Tensor:  # noqa: A001
    """Copy of the rows `[start, end)` along the leading axis of `x`.

    Raises:
        ValueError: If `x` is 0-d or the range is empty or out of bounds.
    """
    if x.ndim == 0:
        raise ValueError("Cannot slice a 0-d Tensor")
    if not 0 <= start < end <= x.shape[0]:
        raise ValueError(
            f"Invalid slice [{start}, {end}) for leading dimension of size {x.shape[0]}"
        )
    return _make_output(
        x.data[start:end].copy(),
        creator_op=OpName.SLICE,
        src=(x,),
        op_ctx={"start": start, "end": end},
    )


@register_op(
    OpName.SLICE,
    forward_fn=slice,
    op_type=OpType.MOVEMENT,
    op_inputs=OpInputs.UNARY,
)
def slice_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool],
    grad_out: np.ndarray,
    start: int,
    end: int,
) -> tuple[np.ndarray | None]:
    """Scatters `grad_out` back into rows `[start, end)`, all other rows get zero."""
    if not compute_grad[0]:
        return (None,)
    x_grad = np.zeros_like(inputs[0].data)
    x_grad[start:end] = grad_out
    return (x_grad,)


__all__ = [
    "EPSILON",
    "add",
    "binary_cross_entropy",
    "broadcastable",
    "cross_entropy",
    "matmul",
    "mse",
    "mul",
    "relu",
    "sigmoid",
    "slice",
    "softmax",
    "softmax_cross_entropy",
    "sub",
    "tanh",
    "transpose",
]
