"""Neural network layers, resolved by name through the registry.

A layer is one of three kinds: `Linear` owns a weight and a bias, `Activation`
and `Loss` own no parameters and delegate to the operation of the same name.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from .autograd import zero_grad
from .errors import RegistryError, ShapeMismatch
from .registry import OpName, OpType, get_registry, normalize_name, register_layer
from .tensor import DEFAULT_DTYPE, Parameter, Tensor, randn

if TYPE_CHECKING:
    from enum import Enum

    from .registry import LayerSpec, OpSpec, Registry


logger = logging.getLogger(__name__)


INPUT_N_DIM = 2

ACTIVATION_NAMES = (OpName.RELU, OpName.SIGMOID, OpName.TANH, OpName.SOFTMAX)
LOSS_NAMES = (
    OpName.MSE,
    OpName.CROSS_ENTROPY,
    OpName.BINARY_CROSS_ENTROPY,
    OpName.SOFTMAX_CROSS_ENTROPY,
)


@dataclass
class LayerConfig:
    """Configuration record of a layer.

    Attributes:
        name (str | Enum): The registered layer kind, e.g. `"linear"` or `"relu"`.
        params (dict[str, Any]): Keyword arguments of the layer constructor,
            e.g. ``{"in_features": 784, "out_features": 64}`` for `"linear"`.
    """

    name: str | Enum
    params: dict[str, Any] = field(default_factory=dict)


class Layer(ABC):
    """Abstract Base Class (ABC) for all layers.

    Resolves its forward capability from the registry at construction.

    Args:
        name (str | Enum): The registered layer kind.
        registry (Registry | None): Registry to resolve the layer kind from.
            Defaults to None, meaning the process-wide registry.

    Raises:
        RegistryError: If no layer kind `name` is registered.
    """

    def __init__(self, name: str | Enum, *, registry: Registry | None = None) -> None:
        self.registry = registry or get_registry()
        spec: LayerSpec | None = self.registry.get_layer(name)
        if spec is None:
            raise RegistryError(f'Unknown layer "{normalize_name(name)}"')
        self.name = spec.name
        self.forward_fn = spec.forward_fn

    def __call__(self, x: Tensor, **kwargs: Any) -> Tensor:
        """Forward pass, see `forward`."""
        return self.forward(x, **kwargs)

    def forward(self, x: Tensor, **kwargs: Any) -> Tensor:
        """Forward pass through the registered forward function.

        Args:
            x (Tensor): Input
            **kwargs (Any): Additional input, e.g. `targets` of a loss layer.

        Returns:
            Tensor: Transformed output
        """
        return self.forward_fn(self, x, **kwargs)

    @abstractmethod
    def get_parameters(self) -> list[Parameter]:
        """The parameters owned by this layer, in a fixed order.

        Returns:
            list[Parameter]: A new list referencing the parameters,
                empty if the layer has none.
        """

    @property
    def parameters(self) -> list[Parameter]:
        return self.get_parameters()

    @property
    def requires_grad(self) -> bool:
        """Whether **all** parameters of the layer require a gradient.

        Returns:
            bool: `False` if just one parameter is frozen
                (`param.requires_grad==False`).
        """
        return all(param.requires_grad for param in self.parameters)

    @requires_grad.setter
    def requires_grad(self, value: bool) -> None:
        """Freeze (`False`) or unfreeze (`True`) all parameters of the layer."""
        for param in self.parameters:
            param.requires_grad = value

    def zero_grad(self) -> None:
        """Reset the gradients of all owned parameters to zero."""
        for param in self.parameters:
            zero_grad(param)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class Linear(Layer):
    """Dense layer computing `x @ weight + bias`.

    The weight is He initialized from a seeded normal distribution,
    the bias starts at zero.

    Args:
        in_features (int): Input dimension size.
        out_features (int): Output dimension size.
        seed (int | None): Seed of the weight initialization. Defaults to 42.
        dtype (Any): Data type of the parameters. Defaults to `float32`.
        registry (Registry | None): Registry to resolve the layer kind from.
    """

    def __init__(
        self,
        in_features: int,
        out_features: int,
        *,
        seed: int | None = 42,
        dtype: Any = DEFAULT_DTYPE,
        registry: Registry | None = None,
    ) -> None:
        super().__init__("linear", registry=registry)
        if in_features < 1 or out_features < 1:
            raise ValueError(
                f"Layer dimensions must be positive, got in_features={in_features}, "
                f"out_features={out_features}"
            )
        self.in_features = in_features
        self.out_features = out_features

        # He initialization, suited for ReLU activations
        scale = np.sqrt(2.0 / in_features)
        noise = randn((in_features, out_features), seed=seed, dtype=dtype).data
        self.weight = Parameter(noise * scale, dtype=dtype)
        self.bias = Parameter(np.zeros((out_features,), dtype=dtype))

    def get_parameters(self) -> list[Parameter]:
        return [self.weight, self.bias]

    def __repr__(self) -> str:
        return f"Linear(in_features={self.in_features}, out_features={self.out_features})"


class Activation(Layer):
    """Parameter-free layer applying the activation operation of the same name.

    Args:
        name (str | Enum): One of `"relu"`, `"sigmoid"`, `"tanh"`, `"softmax"`.
        registry (Registry | None): Registry to resolve the layer and operation from.

    Raises:
        RegistryError: If the layer or operation is not registered.
        ValueError: If `name` is a loss.
    """

    def __init__(self, name: str | Enum, *, registry: Registry | None = None) -> None:
        super().__init__(name, registry=registry)
        self.op = _resolve_op(self.registry, self.name)
        if self.op.op_type == OpType.LOSS:
            raise ValueError(f'"{self.name}" is a loss, use Loss("{self.name}") instead')

    def get_parameters(self) -> list[Parameter]:
        return []


class Loss(Layer):
    """Parameter-free layer reducing predictions and targets to a scalar loss.

    Targets are either passed on every call (`layer(predictions, targets=y)`)
    or bound once at construction.

    Args:
        name (str | Enum): The loss, e.g. `"cross_entropy"` or `"mse"`.
        targets (Tensor | None): Targets used when a call passes none.
            Defaults to None.
        registry (Registry | None): Registry to resolve the layer and operation from.

    Raises:
        RegistryError: If the layer or operation is not registered.
        ValueError: If `name` is not a loss.
    """

    def __init__(
        self,
        name: str | Enum,
        *,
        targets: Tensor | None = None,
        registry: Registry | None = None,
    ) -> None:
        super().__init__(name, registry=registry)
        self.op = _resolve_op(self.registry, self.name)
        if self.op.op_type != OpType.LOSS:
            raise ValueError(f'"{self.name}" is not a loss operation')
        self.targets = targets

    def get_parameters(self) -> list[Parameter]:
        return []


def _resolve_op(registry: Registry, name: str) -> OpSpec:
    op = registry.get_op(name)
    if op is None:
        raise RegistryError(f'Layer "{name}" requires the operation "{name}", which is unknown')
    return op


def _check_tensor(x: Any, what: str) -> None:
    if not isinstance(x, Tensor):
        raise TypeError(f'Expected {what} to be a Tensor, found "{type(x).__name__}"')


def linear_forward(layer: Linear, x: Tensor) -> Tensor:
    """Forward pass of a `Linear` layer.

    Args:
        layer (Linear): The layer.
        x (Tensor): Input of shape `[batch, in_features]`.

    Returns:
        Tensor: Output of shape `[batch, out_features]`.

    Raises:
        ShapeMismatch: If `x` is not 2-D or has the wrong feature dimension.
    """
    _check_tensor(x, "layer input")
    if x.ndim != INPUT_N_DIM:
        raise ShapeMismatch(
            "Input must have two dimensions, dim[0] -> sample dim, dim[1] -> feature dim, "
            f"got shape {x.shape}"
        )
    if x.shape[1] != layer.in_features:
        raise ShapeMismatch(
            f"Input feature dim {x.shape[1]} does not match layer input dim {layer.in_features}"
        )
    return x @ layer.weight + layer.bias


def activation_forward(layer: Activation, x: Tensor) -> Tensor:
    """Forward pass of an `Activation` layer."""
    _check_tensor(x, "layer input")
    return layer.op.forward_fn(x)


def loss_forward(layer: Loss, predictions: Tensor, targets: Tensor | None = None) -> Tensor:
    """Forward pass of a `Loss` layer.

    Args:
        layer (Loss): The layer.
        predictions (Tensor): Output of the previous layer.
        targets (Tensor | None): Targets of the batch. Defaults to None,
            meaning the targets bound to the layer.

    Returns:
        Tensor: The scalar loss.

    Raises:
        ValueError: If neither the call nor the layer provides targets.
    """
    _check_tensor(predictions, "predictions")
    targets = targets if targets is not None else layer.targets
    if targets is None:
        raise ValueError(f'Loss layer "{layer.name}" called without targets')
    return layer.op.forward_fn(predictions, targets)


def _create_linear(config: LayerConfig, registry: Registry) -> Linear:
    return Linear(**config.params, registry=registry)


def _create_activation(config: LayerConfig, registry: Registry) -> Activation:
    return Activation(config.name, **config.params, registry=registry)


def _create_loss(config: LayerConfig, registry: Registry) -> Loss:
    return Loss(config.name, **config.params, registry=registry)


def create_layer(config: LayerConfig, *, registry: Registry | None = None) -> Layer:
    """Build a layer from its configuration record.

    Args:
        config (LayerConfig): Layer kind and constructor arguments.
        registry (Registry | None): Registry to resolve the layer kind from.
            Defaults to None, meaning the process-wide registry.

    Returns:
        Layer: The constructed layer.

    Raises:
        RegistryError: If the layer kind is not registered.

    Example:
        >>> create_layer(LayerConfig("linear", {"in_features": 784, "out_features": 64}))
        Linear(in_features=784, out_features=64)
    """
    registry = registry or get_registry()
    spec = registry.get_layer(config.name)
    if spec is None:
        raise RegistryError(
            f'Unknown layer "{normalize_name(config.name)}", '
            f"registered layers: {', '.join(registry.layer_names)}"
        )
    layer = spec.create_fn(config, registry)
    logger.debug("Created layer %r", layer)
    return layer


register_layer("linear", create_fn=_create_linear, forward_fn=linear_forward)
for _name in ACTIVATION_NAMES:
    register_layer(_name, create_fn=_create_activation, forward_fn=activation_forward)
for _name in LOSS_NAMES:
    register_layer(_name, create_fn=_create_loss, forward_fn=loss_forward)


__all__ = [
    "Activation",
    "Layer",
    "LayerConfig",
    "Linear",
    "Loss",
    "activation_forward",
    "create_layer",
    "linear_forward",
    "loss_forward",
]
