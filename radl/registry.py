"""Name based lookup of operations, layers and optimizers.

Builtin capabilities declare themselves at import time with `register_op`,
`register_layer` and `register_optimizer`. `registry_init` then freezes
everything that was declared into a read-only `Registry`, which is the context
object consulted by tensors, layers, optimizers and the training loop.

The OpType enum is inspired by tinygrad's op categorization, thanks @tinygrad!
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from .errors import RegistryError

if TYPE_CHECKING:
    import numpy as np

    from .layer import Layer, LayerConfig
    from .optimizer import Optimizer
    from .tensor import Tensor


logger = logging.getLogger(__name__)


# Backward functions return raw gradient buffers (one per input, `None` if skipped)
BackwardFn = Callable[..., tuple["np.ndarray | None", ...]]
ForwardFn = Callable[..., "Tensor"]
LayerCreateFn = Callable[["LayerConfig", "Registry"], "Layer"]
LayerForwardFn = Callable[..., "Tensor"]
OptimizerInitStateFn = Callable[..., Any]
OptimizerStepFn = Callable[["Optimizer"], None]
OptimizerFreeStateFn = Callable[[Any], None]


class OpName(str, Enum):
    """Canonical names of the builtin operations."""

    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    MATMUL = "matmul"
    TRANSPOSE = "transpose"
    RELU = "relu"
    SIGMOID = "sigmoid"
    TANH = "tanh"
    SOFTMAX = "softmax"
    MSE = "mse"
    CROSS_ENTROPY = "cross_entropy"
    BINARY_CROSS_ENTROPY = "binary_cross_entropy"
    SOFTMAX_CROSS_ENTROPY = "softmax_cross_entropy"
    SLICE = "slice"


class OpType(Enum):
    """Operation category by computational behavior."""

    ELEMENTWISE = "elementwise"  # Point-wise: add, mul, relu, etc.
    ROWWISE = "rowwise"  # Normalization along the last axis: softmax
    LINALG = "linalg"  # Linear algebra: matmul
    MOVEMENT = "movement"  # Data movement: transpose, slice
    LOSS = "loss"  # Reduction of predictions and targets to a scalar


class OpInputs(Enum):
    """Number of tensor inputs to an operation.

    The enum value equals the input count, e.g. `OpInputs.BINARY.value == 2`.
    """

    UNARY = 1
    BINARY = 2


def normalize_name(name: str | Enum) -> str:
    """Normalize a name for registry lookup.

    Args:
        name (str | Enum): A plain name or an enum member such as `OpName.ADD`.

    Returns:
        str: The lower-cased, stripped lookup key.

    Examples:
        >>> normalize_name(OpName.ADD)
        "add"
        >>> normalize_name(" ReLU ")
        "relu"
    """
    if isinstance(name, Enum):
        name = name.value
    return str(name).strip().lower()


@dataclass(frozen=True)
class OpSpec:
    """Specification of a differentiable operation.

    Attributes:
        name (str): Canonical operation name, also the tag stored on output Tensors.
        forward_fn (ForwardFn): Computes the output Tensor from the input Tensors.
        backward_fn (BackwardFn): Computes the gradients of the inputs.
        op_type (OpType): Operation category.
        op_inputs (OpInputs): Number of tensor inputs.
        aliases (tuple[str, ...]): Additional lookup names.
        constraints (dict[str, str] | None): Input domains for gradient checking.
            Maps input name (`"x"`, `"y"`) to a constraint, e.g. ``{"x": "positive"}``.
        skip_test (bool): Whether to skip automated finite difference testing.
        skip_reason (str | None): Reason for skipping. Required if skip_test=True.
    """

    name: str
    forward_fn: ForwardFn
    backward_fn: BackwardFn
    op_type: OpType
    op_inputs: OpInputs
    aliases: tuple[str, ...] = ()
    constraints: dict[str, str] | None = None
    skip_test: bool = False
    skip_reason: str | None = None

    def __post_init__(self) -> None:
        """Validate that skip_reason is provided when skip_test is True.

        Raises:
            ValueError: If skip_test is True but skip_reason is None or empty.
        """
        if self.skip_test and not self.skip_reason:
            raise ValueError("skip_reason is required when skip_test=True")


@dataclass(frozen=True)
class LayerSpec:
    """Constructor and forward capability of a layer kind."""

    name: str
    create_fn: LayerCreateFn
    forward_fn: LayerForwardFn


@dataclass(frozen=True)
class OptimizerSpec:
    """State life-cycle and update capabilities of an optimizer kind."""

    name: str
    init_state_fn: OptimizerInitStateFn
    step_fn: OptimizerStepFn
    free_state_fn: OptimizerFreeStateFn


# Everything declared so far, keyed by canonical name and aliases
_OP_CATALOG: dict[str, OpSpec] = {}
_LAYER_CATALOG: dict[str, LayerSpec] = {}
_OPTIMIZER_CATALOG: dict[str, OptimizerSpec] = {}

_ACTIVE: Registry | None = None


@dataclass(frozen=True)
class Registry:
    """Read-only lookup tables for ops, layers and optimizers.

    Instances are built by `registry_init`. Lookups return `None` for unknown
    names, callers must check the result before use.
    """

    ops: Mapping[str, OpSpec] = field(default_factory=lambda: MappingProxyType({}))
    layers: Mapping[str, LayerSpec] = field(default_factory=lambda: MappingProxyType({}))
    optimizers: Mapping[str, OptimizerSpec] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def get_op(self, name: str | Enum) -> OpSpec | None:
        """Resolve an operation.

        Args:
            name (str | Enum): Operation name or alias (e.g. `"add"`, `OpName.MATMUL`).

        Returns:
            OpSpec | None: The specification, or None if not found.
        """
        return self.ops.get(normalize_name(name))

    def get_layer(self, name: str | Enum) -> LayerSpec | None:
        """Resolve a layer kind by name, `None` if unknown."""
        return self.layers.get(normalize_name(name))

    def get_optimizer(self, name: str | Enum) -> OptimizerSpec | None:
        """Resolve an optimizer kind by name, `None` if unknown."""
        return self.optimizers.get(normalize_name(name))

    @property
    def op_names(self) -> tuple[str, ...]:
        """Canonical operation names in registration order (aliases excluded)."""
        return tuple(key for key, spec in self.ops.items() if key == spec.name)

    @property
    def layer_names(self) -> tuple[str, ...]:
        return tuple(self.layers)

    @property
    def optimizer_names(self) -> tuple[str, ...]:
        return tuple(self.optimizers)


def _check_writable(catalog: Mapping[str, Any], names: tuple[str, ...]) -> None:
    if _ACTIVE is not None:
        raise RegistryError(
            "The registry is initialized and read-only. "
            "Call registry_cleanup() before registering new capabilities."
        )
    for name in names:
        if name in catalog:
            raise RegistryError(f'"{name}" is already registered')


def register_op(  # noqa: PLR0913
    name: str | Enum,
    *,
    forward_fn: ForwardFn,
    op_type: OpType,
    op_inputs: OpInputs,
    aliases: tuple[str, ...] = (),
    constraints: dict[str, str] | None = None,
    skip_test: bool = False,
    skip_reason: str | None = None,
) -> Callable[[BackwardFn], BackwardFn]:
    """Decorator factory registering a backward function together with its forward.

    Args:
        name (str | Enum): Canonical operation name.
        forward_fn (ForwardFn): The forward computation.
        op_type (OpType): Operation category.
        op_inputs (OpInputs): Number of tensor inputs.
        aliases (tuple[str, ...]): Additional lookup names. Defaults to ().
        constraints (dict[str, str] | None): Input constraints for testing.
        skip_test (bool): Whether to skip automated finite difference testing.
        skip_reason (str | None): Reason for skipping. Required if skip_test=True.

    Returns:
        Callable[[BackwardFn], BackwardFn]: Decorator that registers the op.

    Raises:
        RegistryError: If the registry is already initialized or a name is taken.
    """
    canonical_name = normalize_name(name)
    names = (canonical_name, *(normalize_name(alias) for alias in aliases))

    def decorator(backward_fn: BackwardFn) -> BackwardFn:
        _check_writable(_OP_CATALOG, names)
        spec = OpSpec(
            name=canonical_name,
            forward_fn=forward_fn,
            backward_fn=backward_fn,
            op_type=op_type,
            op_inputs=op_inputs,
            aliases=names[1:],
            constraints=constraints,
            skip_test=skip_test,
            skip_reason=skip_reason,
        )
        for key in names:
            _OP_CATALOG[key] = spec
        return backward_fn

    return decorator


def register_layer(
    name: str | Enum,
    *,
    create_fn: LayerCreateFn,
    forward_fn: LayerForwardFn,
) -> None:
    """Register a layer kind.

    Args:
        name (str | Enum): The layer name used in `LayerConfig`.
        create_fn (LayerCreateFn): Builds a layer from its config.
        forward_fn (LayerForwardFn): Computes `forward_fn(layer, x, **kwargs)`.

    Raises:
        RegistryError: If the registry is already initialized or the name is taken.
    """
    key = normalize_name(name)
    _check_writable(_LAYER_CATALOG, (key,))
    _LAYER_CATALOG[key] = LayerSpec(name=key, create_fn=create_fn, forward_fn=forward_fn)


def register_optimizer(
    name: str | Enum,
    *,
    init_state_fn: OptimizerInitStateFn,
    step_fn: OptimizerStepFn,
    free_state_fn: OptimizerFreeStateFn,
) -> None:
    """Register an optimizer kind.

    Args:
        name (str | Enum): The optimizer name used in `OptimizerConfig`.
        init_state_fn (OptimizerInitStateFn): Builds the per-parameter state,
            called as `init_state_fn(params, **hyper_parameters)`.
        step_fn (OptimizerStepFn): Updates the parameters of an optimizer in place.
        free_state_fn (OptimizerFreeStateFn): Releases the state.

    Raises:
        RegistryError: If the registry is already initialized or the name is taken.
    """
    key = normalize_name(name)
    _check_writable(_OPTIMIZER_CATALOG, (key,))
    _OPTIMIZER_CATALOG[key] = OptimizerSpec(
        name=key,
        init_state_fn=init_state_fn,
        step_fn=step_fn,
        free_state_fn=free_state_fn,
    )


def _import_builtins() -> None:
    """Import the modules whose top-level code registers the builtins."""
    from . import layer, ops, optimizer  # noqa: F401, PLC0415


def registry_init() -> Registry:
    """Build the process-wide registry from everything declared so far.

    Idempotent: if a registry is already active it is returned unchanged.

    Returns:
        Registry: The active, read-only registry.
    """
    global _ACTIVE
    if _ACTIVE is not None:
        return _ACTIVE

    _import_builtins()

    registry = Registry(
        ops=MappingProxyType(dict(_OP_CATALOG)),
        layers=MappingProxyType(dict(_LAYER_CATALOG)),
        optimizers=MappingProxyType(dict(_OPTIMIZER_CATALOG)),
    )
    _ACTIVE = registry
    logger.debug(
        "Registry initialized: %d ops, %d layers, %d optimizers",
        len(registry.op_names),
        len(registry.layers),
        len(registry.optimizers),
    )
    return registry


def registry_cleanup() -> None:
    """Drop the process-wide registry and its tables.

    Registration is possible again afterwards. The next `registry_init`
    (or `get_registry`) builds a fresh registry.
    """
    global _ACTIVE
    _ACTIVE = None
    logger.debug("Registry cleaned up")


def is_initialized() -> bool:
    """Whether a process-wide registry is currently active."""
    return _ACTIVE is not None


def get_registry() -> Registry:
    """The active registry, initialized on first use.

    Returns:
        Registry: The process-wide registry.
    """
    return registry_init()


__all__ = [
    "BackwardFn",
    "ForwardFn",
    "LayerSpec",
    "OpInputs",
    "OpName",
    "OpSpec",
    "OpType",
    "OptimizerSpec",
    "Registry",
    "get_registry",
    "is_initialized",
    "normalize_name",
    "register_layer",
    "register_op",
    "register_optimizer",
    "registry_cleanup",
    "registry_init",
]
