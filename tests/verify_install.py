#!/usr/bin/env python3
"""Verify that radl is correctly installed and functional.

Run it in a fresh environment after installing the built wheel.
"""

import numpy as np

import radl


def test_version() -> None:
    """Verify version is accessible."""
    print(f"radl version: {radl.__version__}")
    assert radl.__version__, "Version should not be empty"


def test_registry() -> None:
    """Verify the builtin capabilities are registered."""
    registry = radl.get_registry()
    assert registry.get_op("matmul") is not None
    assert registry.get_layer("linear") is not None
    assert registry.get_optimizer("adam") is not None


def test_tensor_operations() -> None:
    """Test basic tensor creation and operations."""
    x = radl.tensor([1.0, 2.0, 3.0], requires_grad=True)
    loss = radl.ops.mse(x * 2, np.zeros(3))
    loss.backward()
    assert np.allclose(x.grad, 8 * x.data / 3), f"Unexpected gradient {x.grad}"


def test_model_forward() -> None:
    """Test basic model creation and forward pass."""
    model = radl.Network(
        [
            radl.Linear(3, 4),
            radl.Activation("relu"),
            radl.Linear(4, 1),
        ]
    )

    x = radl.tensor([[1.0, 2.0, 3.0]])
    out = model(x)

    assert out.shape == (1, 1), f"Expected (1, 1), got {out.shape}"


def main() -> None:
    """Run all verification tests."""
    print("Running installation verification tests...")
    print("-" * 40)

    test_version()
    test_registry()
    test_tensor_operations()
    test_model_forward()

    print("-" * 40)
    print("All installation tests passed!")


if __name__ == "__main__":
    main()
