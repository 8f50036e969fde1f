"""RADL: Registry Autograd Deep Learning.

A minimal training engine built on NumPy: Tensors with reverse-mode autograd,
and operations, layers and optimizers resolved by name from a registry.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("py-radl")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for uninstalled package
from . import ops
from .autograd import (
    backward,
    toposort,
    zero_grad,
)
from .data import (
    load_idx_images,
    load_idx_labels,
    make_classification,
    one_hot,
)
from .errors import (
    RegistryError,
    ShapeMismatch,
)
from .grad_mode import (
    is_grad_enabled,
    no_grad,
    no_grad_fn,
    set_global_grad_mode,
)
from .layer import (
    Activation,
    Layer,
    LayerConfig,
    Linear,
    Loss,
    create_layer,
)
from .network import (
    History,
    Network,
    accuracy,
    iter_minibatches,
    train,
)
from .optimizer import (
    SGD,
    Adam,
    Optimizer,
    OptimizerConfig,
    create_optimizer,
)
from .registry import (
    OpInputs,
    OpName,
    OpSpec,
    OpType,
    Registry,
    get_registry,
    register_layer,
    register_op,
    register_optimizer,
    registry_cleanup,
    registry_init,
)
from .tensor import (
    Parameter,
    Tensor,
    empty,
    ones,
    ones_like,
    randn,
    tensor,
    zeros,
    zeros_like,
)

registry_init()

__all__ = [
    "SGD",
    "Activation",
    "Adam",
    "History",
    "Layer",
    "LayerConfig",
    "Linear",
    "Loss",
    "Network",
    "OpInputs",
    "OpName",
    "OpSpec",
    "OpType",
    "Optimizer",
    "OptimizerConfig",
    "Parameter",
    "Registry",
    "RegistryError",
    "ShapeMismatch",
    "Tensor",
    "__version__",
    "accuracy",
    "backward",
    "create_layer",
    "create_optimizer",
    "empty",
    "get_registry",
    "is_grad_enabled",
    "iter_minibatches",
    "load_idx_images",
    "load_idx_labels",
    "make_classification",
    "no_grad",
    "no_grad_fn",
    "one_hot",
    "ones",
    "ones_like",
    "ops",
    "randn",
    "register_layer",
    "register_op",
    "register_optimizer",
    "registry_cleanup",
    "registry_init",
    "set_global_grad_mode",
    "tensor",
    "toposort",
    "train",
    "zero_grad",
    "zeros",
    "zeros_like",
]
