"""Tests for the operation set.

Gradients are verified against centered finite differences. The test
configuration (input domains, skips) is embedded in the op registry via
OpSpec, so adding a new op requires providing test metadata at registration
time and it is picked up here automatically.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import numpy as np
import pytest
from radl import ShapeMismatch, Tensor, get_registry, no_grad, ops, tensor
from radl.registry import OpInputs, OpName, OpSpec, OpType

EPS = 1e-6
RTOL = 1e-3
ATOL = 1e-6

# Extra keyword arguments of ops that take more than tensors
OP_KWARGS: dict[str, dict[str, Any]] = {
    "slice": {"start": 1, "end": 3},
}


def generate_input(
    shape: tuple[int, ...],
    constraint: str | None = None,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Generate random input data respecting constraints.

    Args:
        shape (tuple[int, ...]): Shape of the array to generate.
        constraint (str | None): Constraint type. One of:
            None: uniform(-2.0, 2.0)
            "positive": uniform(0.1, 2.0)
            "nonzero": magnitude uniform(0.5, 2.0) with random sign, away from zero
            "unit_interval": uniform(0.1, 0.9)
            "probability": positive rows summing to 1
            "one_hot": one-hot rows
        rng (np.random.Generator | None): Random number generator.

    Returns:
        np.ndarray: Random float64 array of the specified shape.
    """
    if rng is None:
        rng = np.random.default_rng()

    if constraint == "positive":
        return rng.uniform(0.1, 2.0, shape)
    if constraint == "nonzero":
        return rng.choice([-1.0, 1.0], shape) * rng.uniform(0.5, 2.0, shape)
    if constraint == "unit_interval":
        return rng.uniform(0.1, 0.9, shape)
    if constraint == "probability":
        data = rng.uniform(0.1, 1.0, shape)
        return data / data.sum(axis=-1, keepdims=True)
    if constraint == "one_hot":
        data = np.zeros(shape)
        data[np.arange(shape[0]), rng.integers(0, shape[-1], shape[0])] = 1.0
        return data
    return rng.uniform(-2.0, 2.0, shape)


def fd_gradient(
    x: np.ndarray,
    func: Callable[[np.ndarray], float],
    eps: float = EPS,
) -> np.ndarray:
    """Compute the gradient of a scalar function via centered finite differences.

    Args:
        x (np.ndarray): Point at which to evaluate the gradient.
        func (Callable[[np.ndarray], float]): Scalar function of `x`.
        eps (float): Perturbation size for finite differences.

    Returns:
        np.ndarray: Gradient array with same shape as x.
    """
    grad = np.zeros_like(x)
    for idx in np.ndindex(x.shape):
        x_plus = x.copy()
        x_minus = x.copy()
        x_plus[idx] += eps
        x_minus[idx] -= eps
        grad[idx] = (func(x_plus) - func(x_minus)) / (2 * eps)
    return grad


def input_shapes(spec: OpSpec) -> list[tuple[int, ...]]:
    if spec.op_type == OpType.LINALG:
        return [(3, 4), (4, 2)]
    return [(3, 4)] * spec.op_inputs.value


# =============================================================================
# Gradient checks
# =============================================================================


@pytest.mark.parametrize("op_name", get_registry().op_names)
def test_grad_op(op_name: str) -> None:
    """Test the backward function of an op against finite differences.

    The scalar checked is `sum(forward(inputs) * grad_out)` for a random
    `grad_out`, whose gradient is exactly what the backward function computes.

    Args:
        op_name (str): Name of the operation to test.
    """
    spec = get_registry().get_op(op_name)
    assert spec is not None

    if spec.skip_test:
        pytest.skip(f"Skipped: {spec.skip_reason}")

    rng = np.random.default_rng(seed=42)
    constraints = spec.constraints or {}
    kwargs = OP_KWARGS.get(op_name, {})

    input_data = [
        generate_input(shape, constraints.get(key), rng)
        for shape, key in zip(input_shapes(spec), ("x", "y"), strict=False)
    ]
    inputs = [tensor(data, dtype=np.float64, requires_grad=True) for data in input_data]

    out = spec.forward_fn(*inputs, **kwargs)
    assert out.creator_op == spec.name
    grad_out = rng.standard_normal(out.shape)

    analytical = spec.backward_fn(
        *inputs,
        compute_grad=(True,) * len(inputs),
        grad_out=grad_out,
        **out.op_ctx,
    )
    assert len(analytical) == len(inputs)

    for i, data in enumerate(input_data):

        def scalar_fn(arr: np.ndarray, i: int = i) -> float:
            args = [Tensor(arr) if j == i else Tensor(d) for j, d in enumerate(input_data)]
            with no_grad():
                result = spec.forward_fn(*args, **kwargs)
            return float(np.sum(result.data * grad_out))

        fd_grad = fd_gradient(data, scalar_fn)
        analytical_np = np.asarray(analytical[i])

        assert analytical_np.shape == data.shape
        assert np.allclose(analytical_np, fd_grad, rtol=RTOL, atol=ATOL), (
            f"Gradient mismatch for {op_name} w.r.t. input {i}:\n"
            f"Analytical:\n{analytical_np}\n"
            f"FD:\n{fd_grad}\n"
            f"Max diff: {np.max(np.abs(analytical_np - fd_grad))}"
        )


@pytest.mark.parametrize("op_name", get_registry().op_names)
def test_backward_skips_inputs(op_name: str) -> None:
    spec = get_registry().get_op(op_name)
    assert spec is not None

    rng = np.random.default_rng(seed=0)
    constraints = spec.constraints or {}
    inputs = [
        tensor(generate_input(shape, constraints.get(key), rng), requires_grad=True)
        for shape, key in zip(input_shapes(spec), ("x", "y"), strict=False)
    ]
    out = spec.forward_fn(*inputs, **OP_KWARGS.get(op_name, {}))

    grads = spec.backward_fn(
        *inputs,
        compute_grad=(False,) * len(inputs),
        grad_out=np.ones(out.shape),
        **out.op_ctx,
    )
    assert all(grad is None for grad in grads)


@pytest.mark.parametrize(
    ("shape_x", "shape_y"),
    [
        ((3, 4), (4,)),  # bias over batch
        ((4,), (3, 4)),
        ((3, 4), ()),  # scalar
        ((2, 3, 4), (3, 4)),
    ],
)
@pytest.mark.parametrize("op_name", ["add", "sub", "mul"])
def test_grad_broadcast(op_name: str, shape_x: tuple[int, ...], shape_y: tuple[int, ...]) -> None:
    spec = get_registry().get_op(op_name)
    assert spec is not None

    rng = np.random.default_rng(seed=1)
    x_data = np.asarray(generate_input(shape_x, rng=rng))
    y_data = np.asarray(generate_input(shape_y, rng=rng))
    x = tensor(x_data, dtype=np.float64, requires_grad=True)
    y = tensor(y_data, dtype=np.float64, requires_grad=True)

    out = spec.forward_fn(x, y)
    grad_out = rng.standard_normal(out.shape)
    grad_x, grad_y = spec.backward_fn(x, y, compute_grad=(True, True), grad_out=grad_out)

    def scalar_x(arr: np.ndarray) -> float:
        return float(np.sum(spec.forward_fn(Tensor(arr), Tensor(y_data)).data * grad_out))

    def scalar_y(arr: np.ndarray) -> float:
        return float(np.sum(spec.forward_fn(Tensor(x_data), Tensor(arr)).data * grad_out))

    assert grad_x.shape == shape_x
    assert grad_y.shape == shape_y
    assert np.allclose(grad_x, fd_gradient(x_data, scalar_x), rtol=RTOL, atol=ATOL)
    assert np.allclose(grad_y, fd_gradient(y_data, scalar_y), rtol=RTOL, atol=ATOL)


# =============================================================================
# Forward semantics
# =============================================================================


def test_op_names_cover_all_ops() -> None:
    assert {name.value for name in OpName} <= set(get_registry().op_names)


def test_op_arity() -> None:
    unary = {"transpose", "relu", "sigmoid", "tanh", "softmax", "slice"}
    registry = get_registry()
    for name in OpName:
        spec = registry.get_op(name)
        assert spec is not None
        expected = OpInputs.UNARY if name.value in unary else OpInputs.BINARY
        assert spec.op_inputs == expected


def test_matmul_shape() -> None:
    a = tensor(np.ones((2, 3)))
    b = tensor(np.ones((3, 5)))
    out = ops.matmul(a, b)
    assert out.shape == (2, 5)
    assert np.allclose(out.data, 3.0)


@pytest.mark.parametrize(
    ("shape_a", "shape_b"),
    [
        ((2, 3), (4, 5)),
        ((2, 3), (3,)),
        ((3,), (3, 2)),
        ((2, 2, 3), (3, 2)),
    ],
)
def test_matmul_shape_mismatch(shape_a: tuple[int, ...], shape_b: tuple[int, ...]) -> None:
    with pytest.raises(ShapeMismatch):
        ops.matmul(tensor(np.ones(shape_a)), tensor(np.ones(shape_b)))


def test_shape_mismatch_is_value_error() -> None:
    with pytest.raises(ValueError, match="inner dimensions"):
        tensor(np.ones((2, 3))) @ tensor(np.ones((2, 3)))


@pytest.mark.parametrize(
    ("shape_x", "shape_y"),
    [
        ((3, 4), (3,)),
        ((3, 4), (2, 4)),
        ((4, 3), (3, 4)),
    ],
)
def test_elementwise_shape_mismatch(shape_x: tuple[int, ...], shape_y: tuple[int, ...]) -> None:
    x = tensor(np.ones(shape_x))
    y = tensor(np.ones(shape_y))
    for op in (ops.add, ops.sub, ops.mul):
        with pytest.raises(ShapeMismatch):
            op(x, y)


def test_add_bias_broadcast() -> None:
    x = tensor([[1.0, 2.0], [3.0, 4.0]])
    b = tensor([10.0, 20.0])
    assert np.array_equal((x + b).data, [[11.0, 22.0], [13.0, 24.0]])


def test_transpose_requires_matrix() -> None:
    assert ops.transpose(tensor(np.ones((2, 3)))).shape == (3, 2)
    with pytest.raises(ShapeMismatch):
        ops.transpose(tensor(np.ones(3)))


def test_relu_forward() -> None:
    out = ops.relu(tensor([-2.0, 0.0, 3.0]))
    assert np.array_equal(out.data, [0.0, 0.0, 3.0])


def test_relu_backward_zero_at_origin() -> None:
    x = tensor([-1.0, 0.0, 2.0], requires_grad=True)
    out = ops.relu(x)
    spec = get_registry().get_op("relu")
    (grad,) = spec.backward_fn(x, compute_grad=(True,), grad_out=np.ones(3), **out.op_ctx)
    assert np.array_equal(grad, [0.0, 0.0, 1.0])


def test_sigmoid_no_overflow() -> None:
    with np.errstate(over="raise"):
        out = ops.sigmoid(tensor([-1000.0, 0.0, 1000.0]))
    assert np.allclose(out.data, [0.0, 0.5, 1.0])


def test_tanh_range() -> None:
    out = ops.tanh(tensor(np.linspace(-5, 5, 11)))
    assert np.all(np.abs(out.data) < 1.0)


def test_softmax_rows_sum_to_one() -> None:
    rng = np.random.default_rng(3)
    out = ops.softmax(tensor(rng.uniform(-50, 50, (8, 10))))
    assert np.allclose(out.data.sum(axis=-1), 1.0, atol=1e-5)
    assert np.all(out.data >= 0)


def test_softmax_large_inputs_stable() -> None:
    out = ops.softmax(tensor([[1000.0, 1000.0]]))
    assert np.allclose(out.data, [[0.5, 0.5]])


def test_mse_value() -> None:
    loss = ops.mse(tensor([[1.0, 2.0]]), tensor([[0.0, 4.0]]))
    assert loss.shape == ()
    assert loss.item() == pytest.approx(2.5)


def test_cross_entropy_value() -> None:
    p = tensor([[0.5, 0.5], [0.9, 0.1]])
    t = tensor([[1.0, 0.0], [1.0, 0.0]])
    loss = ops.cross_entropy(p, t)
    assert loss.shape == ()
    assert loss.item() == pytest.approx(-(np.log(0.5) + np.log(0.9)) / 2, rel=1e-5)


def test_cross_entropy_clips_zero_probability() -> None:
    loss = ops.cross_entropy(tensor([[0.0, 1.0]]), tensor([[1.0, 0.0]]))
    assert np.isfinite(loss.item())
    assert loss.item() == pytest.approx(-np.log(ops.EPSILON), rel=1e-4)


def test_binary_cross_entropy_value() -> None:
    p = tensor([0.8, 0.3])
    t = tensor([1.0, 0.0])
    expected = -(np.log(0.8) + np.log(0.7)) / 2
    assert ops.binary_cross_entropy(p, t).item() == pytest.approx(expected, rel=1e-5)


def test_softmax_cross_entropy_matches_composition() -> None:
    rng = np.random.default_rng(5)
    logits = tensor(rng.standard_normal((4, 3)))
    targets = tensor(np.eye(3)[[0, 2, 1, 1]])
    fused = ops.softmax_cross_entropy(logits, targets)
    composed = ops.cross_entropy(ops.softmax(logits), targets)
    assert fused.item() == pytest.approx(composed.item(), rel=1e-5)


def test_softmax_cross_entropy_shortcut_gradient() -> None:
    logits = tensor(np.array([[1.0, 2.0, 3.0], [0.0, 0.0, 0.0]]), requires_grad=True)
    targets = tensor(np.array([[0.0, 0.0, 1.0], [1.0, 0.0, 0.0]]))
    ops.softmax_cross_entropy(logits, targets).backward()
    expected = (ops.softmax(tensor(logits.data)).data - targets.data) / 2
    assert np.allclose(logits.grad, expected, atol=1e-6)


@pytest.mark.parametrize(
    "loss_fn",
    [ops.mse, ops.cross_entropy, ops.binary_cross_entropy, ops.softmax_cross_entropy],
)
def test_loss_shape_mismatch(loss_fn: Callable[..., Tensor]) -> None:
    with pytest.raises(ShapeMismatch):
        loss_fn(tensor(np.full((2, 3), 0.5)), tensor(np.full((2, 4), 0.5)))


def test_loss_keeps_prediction_dtype() -> None:
    p = tensor(np.full((2, 3), 1 / 3), dtype=np.float32)
    t = tensor(np.eye(3)[[0, 1]], dtype=np.float64)
    assert ops.cross_entropy(p, t).dtype == np.float32


def test_slice_copies_rows() -> None:
    x = tensor(np.arange(12.0).reshape(4, 3))
    out = ops.slice(x, start=1, end=3)
    assert np.array_equal(out.data, [[3.0, 4.0, 5.0], [6.0, 7.0, 8.0]])

    out.data[0, 0] = -1.0
    assert x.data[1, 0] == 3.0  # no aliasing


def test_slice_backward_scatters() -> None:
    x = tensor(np.ones((4, 2)), requires_grad=True)
    out = ops.slice(x, start=1, end=3)
    spec = get_registry().get_op("slice")
    (grad,) = spec.backward_fn(
        x, compute_grad=(True,), grad_out=np.full((2, 2), 5.0), **out.op_ctx
    )
    assert np.array_equal(grad, [[0.0, 0.0], [5.0, 5.0], [5.0, 5.0], [0.0, 0.0]])


@pytest.mark.parametrize(("start", "end"), [(-1, 2), (2, 2), (3, 1), (0, 5)])
def test_slice_invalid_range(start: int, end: int) -> None:
    with pytest.raises(ValueError, match="Invalid slice"):
        ops.slice(tensor(np.ones((4, 2))), start=start, end=end)


def test_slice_scalar_raises() -> None:
    with pytest.raises(ValueError, match="0-d"):
        ops.slice(tensor(1.0), start=0, end=1)


def test_constants_are_wrapped() -> None:
    x = tensor([1.0, 2.0], requires_grad=True)
    out = ops.mul(x, 3)
    assert out.src[1].requires_grad is False
    assert out.src[1].dtype == x.dtype
    assert np.array_equal(out.data, [3.0, 6.0])


def test_requires_grad_propagation() -> None:
    a = tensor([1.0], requires_grad=True)
    b = tensor([2.0])
    assert (a + b).requires_grad
    assert not (b + b).requires_grad


def test_no_grad_builds_no_graph() -> None:
    a = tensor([1.0], requires_grad=True)
    with no_grad():
        out = a * a
    assert out.is_leaf()
    assert out.creator_op is None
    assert not out.requires_grad
