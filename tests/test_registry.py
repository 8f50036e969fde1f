"""Tests for registration, lookup and the life-cycle of the registry."""

from __future__ import annotations

from collections.abc import Iterator

import numpy as np
import pytest
from radl import (
    OpInputs,
    OpName,
    OpType,
    RegistryError,
    Tensor,
    get_registry,
    register_layer,
    register_op,
    registry_cleanup,
    registry_init,
    tensor,
)
from radl import registry as registry_module
from radl.registry import OpSpec, normalize_name


@pytest.fixture
def restore_registry() -> Iterator[None]:
    """Remove plugin registrations of a test and rebuild the builtin registry."""
    ops_before = dict(registry_module._OP_CATALOG)  # noqa: SLF001
    layers_before = dict(registry_module._LAYER_CATALOG)  # noqa: SLF001
    yield
    registry_module._OP_CATALOG.clear()  # noqa: SLF001
    registry_module._OP_CATALOG.update(ops_before)  # noqa: SLF001
    registry_module._LAYER_CATALOG.clear()  # noqa: SLF001
    registry_module._LAYER_CATALOG.update(layers_before)  # noqa: SLF001
    registry_cleanup()
    registry_init()


def _square(x: Tensor) -> Tensor:
    return Tensor(x.data * x.data, src=(x,), creator_op="square", requires_grad=x.requires_grad)


def _square_backward(
    *inputs: Tensor,
    compute_grad: tuple[bool],
    grad_out: np.ndarray,
) -> tuple[np.ndarray | None]:
    return (2 * inputs[0].data * grad_out if compute_grad[0] else None,)


def test_init_is_idempotent() -> None:
    assert registry_init() is registry_init()
    assert get_registry() is registry_init()


def test_cleanup_then_init_rebuilds(restore_registry: None) -> None:  # noqa: ARG001
    before = registry_init()
    registry_cleanup()
    assert not registry_module.is_initialized()

    after = registry_init()
    assert after is not before
    assert after.op_names == before.op_names
    assert after.layer_names == before.layer_names
    assert after.optimizer_names == before.optimizer_names


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("add", "add"),
        (OpName.MATMUL, "matmul"),
        ("subtract", "sub"),
        ("multiply", "mul"),
        ("ce", "cross_entropy"),
        ("bce", "binary_cross_entropy"),
        ("  ReLU ", "relu"),
        ("MSE", "mse"),
    ],
)
def test_op_lookup(name: str | OpName, expected: str) -> None:
    spec = get_registry().get_op(name)
    assert spec is not None
    assert spec.name == expected


def test_unknown_names_resolve_to_none() -> None:
    registry = get_registry()
    assert registry.get_op("conv2d") is None
    assert registry.get_layer("conv2d") is None
    assert registry.get_optimizer("rmsprop") is None


def test_op_names_exclude_aliases() -> None:
    names = get_registry().op_names
    assert "sub" in names
    assert "subtract" not in names
    assert len(names) == len(set(names))


def test_builtin_layers_and_optimizers() -> None:
    registry = get_registry()
    for name in ("linear", "relu", "sigmoid", "tanh", "softmax", "mse", "cross_entropy"):
        assert registry.get_layer(name) is not None
    assert set(registry.optimizer_names) == {"sgd", "adam"}


def test_tables_are_read_only() -> None:
    registry = get_registry()
    with pytest.raises(TypeError):
        registry.ops["add"] = registry.ops["mul"]  # type: ignore[index]
    with pytest.raises(AttributeError):
        registry.ops = {}  # type: ignore[misc]


def test_register_after_init_raises() -> None:
    registry_init()
    with pytest.raises(RegistryError, match="read-only"):
        register_op(
            "square",
            forward_fn=_square,
            op_type=OpType.ELEMENTWISE,
            op_inputs=OpInputs.UNARY,
        )(_square_backward)
    with pytest.raises(RegistryError, match="read-only"):
        register_layer("square", create_fn=lambda c, r: None, forward_fn=lambda layer, x: x)


def test_plugin_op(restore_registry: None) -> None:  # noqa: ARG001
    registry_cleanup()
    register_op(
        "square",
        forward_fn=_square,
        op_type=OpType.ELEMENTWISE,
        op_inputs=OpInputs.UNARY,
        aliases=("sq",),
    )(_square_backward)
    registry = registry_init()

    assert registry.get_op("sq") is registry.get_op("square")
    x = tensor([3.0], requires_grad=True)
    out = _square(x)
    assert out.backward_fn is _square_backward
    out.backward()
    assert np.array_equal(x.grad, [6.0])


def test_duplicate_registration_raises(restore_registry: None) -> None:  # noqa: ARG001
    registry_cleanup()
    with pytest.raises(RegistryError, match="already registered"):
        register_op(
            "relu",
            forward_fn=_square,
            op_type=OpType.ELEMENTWISE,
            op_inputs=OpInputs.UNARY,
        )(_square_backward)
    with pytest.raises(RegistryError, match="already registered"):
        register_op(
            "square",
            forward_fn=_square,
            op_type=OpType.ELEMENTWISE,
            op_inputs=OpInputs.UNARY,
            aliases=("ce",),
        )(_square_backward)


def test_explicit_registry_context() -> None:
    registry = get_registry()
    a = tensor([1.0], requires_grad=True)
    out = Tensor([2.0], src=(a,), creator_op=OpName.MUL, requires_grad=True, registry=registry)
    assert out.backward_fn is registry.get_op("mul").backward_fn


def test_skip_test_requires_reason() -> None:
    with pytest.raises(ValueError, match="skip_reason"):
        OpSpec(
            name="noop",
            forward_fn=_square,
            backward_fn=_square_backward,
            op_type=OpType.ELEMENTWISE,
            op_inputs=OpInputs.UNARY,
            skip_test=True,
        )


def test_normalize_name() -> None:
    assert normalize_name(OpName.SOFTMAX_CROSS_ENTROPY) == "softmax_cross_entropy"
    assert normalize_name(" Adam ") == "adam"
