"""Optimizers updating parameters in place from their gradients.

Each optimizer kind is registered as three functions: one building the
per-parameter state, one applying a single update step and one releasing
the state. `Optimizer` resolves them by name and drives them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from .autograd import zero_grad
from .errors import RegistryError
from .grad_mode import no_grad_fn
from .registry import get_registry, normalize_name, register_optimizer
from .tensor import Tensor

if TYPE_CHECKING:
    from collections.abc import Sequence
    from enum import Enum

    from .registry import OptimizerSpec, Registry


logger = logging.getLogger(__name__)


@dataclass
class OptimizerConfig:
    """Configuration record of an optimizer.

    Attributes:
        name (str | Enum): The registered optimizer kind, `"sgd"` or `"adam"`.
        params (dict[str, Any]): Hyper-parameters, e.g. ``{"lr": 0.01}``.
            Missing ones take the defaults of the optimizer kind.
    """

    name: str | Enum
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class SGDState:
    """Hyper-parameters and momentum velocity of SGD."""

    lr: float
    momentum: float
    weight_decay: float
    # one buffer per parameter, None without momentum
    velocity: list[np.ndarray] | None


@dataclass
class AdamState:
    """Hyper-parameters, moment estimates and step counter of Adam."""

    lr: float
    beta_1: float
    beta_2: float
    epsilon: float
    weight_decay: float
    m: list[np.ndarray]
    v: list[np.ndarray]
    t: int = 0


def _check_lr(lr: float, weight_decay: float) -> None:
    if lr <= 0:
        raise ValueError(f"lr must be positive, got {lr}")
    if weight_decay < 0:
        raise ValueError(f"weight_decay must be non-negative, got {weight_decay}")


def sgd_init_state(
    params: Sequence[Tensor],
    *,
    lr: float = 1e-2,
    momentum: float = 0.0,
    weight_decay: float = 0.0,
) -> SGDState:
    """Build the state of stochastic gradient descent.

    **Standard SGD:** `momentum=0, weight_decay=0`
    **SGD w/ momentum:** `0<momentum<1, weight_decay=0`
    **SGDW:** `weight_decay>0`

    Args:
        params (Sequence[Tensor]): Parameters to optimize.
        lr (float): The learning rate. Defaults to 1e-2.
        momentum (float): Fraction of the previous velocity kept in each
            step. `0` disables momentum and its buffers. Defaults to 0.
        weight_decay (float): Decoupled decay rate of the parameters.
            A typical value is `0.01`. Defaults to 0.

    Returns:
        SGDState: The fresh state.

    Raises:
        ValueError: If a hyper-parameter is out of range.
    """
    _check_lr(lr, weight_decay)
    if not 0 <= momentum < 1:
        raise ValueError(f"momentum must be in [0, 1), got {momentum}")

    velocity = [np.zeros_like(p.data) for p in params] if momentum > 0 else None
    return SGDState(lr=lr, momentum=momentum, weight_decay=weight_decay, velocity=velocity)


def sgd_step(optimizer: Optimizer) -> None:
    """Performs a single gradient descent step.

    Parameters without a gradient are skipped.
    """
    state: SGDState = optimizer.state
    for idx, param in enumerate(optimizer.params):
        if param.grad is None:
            continue

        if state.weight_decay > 0:
            param.data *= 1 - state.lr * state.weight_decay

        if state.velocity is not None:
            velocity = state.velocity[idx]
            velocity *= state.momentum
            velocity -= state.lr * param.grad
            param.data += velocity
        else:
            param.data -= state.lr * param.grad


def sgd_free_state(state: SGDState) -> None:
    state.velocity = None


def adam_init_state(  # noqa: PLR0913
    params: Sequence[Tensor],
    *,
    lr: float = 1e-3,
    beta_1: float = 0.9,
    beta_2: float = 0.999,
    epsilon: float = 1e-8,
    weight_decay: float = 0.0,
) -> AdamState:
    """Build the state of Adam.

    Note: By setting `weight_decay` > 0 this becomes `AdamW`.

    Args:
        params (Sequence[Tensor]): Parameters to optimize.
        lr (float): The learning rate, also called `alpha`
            in the paper. Defaults to 1e-3.
        beta_1 (float): Exponential decay rate for
            the momentum. Defaults to 0.9.
        beta_2 (float): Exponential decay rate for
            the noise. Defaults to 0.999.
        epsilon (float): Value added to the denominator to improve
            numerical stability and avoid division by zero. Defaults to 1e-8.
        weight_decay (float): Decoupled decay rate of the parameters.
            Defaults to `0`, meaning vanilla Adam is used.

    Returns:
        AdamState: The fresh state with zeroed moments and `t=0`.

    Raises:
        ValueError: If a hyper-parameter is out of range.
    """
    _check_lr(lr, weight_decay)
    for beta_name, beta in (("beta_1", beta_1), ("beta_2", beta_2)):
        if not 0 <= beta < 1:
            raise ValueError(f"{beta_name} must be in [0, 1), got {beta}")
    if epsilon <= 0:
        raise ValueError(f"epsilon must be positive, got {epsilon}")

    return AdamState(
        lr=lr,
        beta_1=beta_1,
        beta_2=beta_2,
        epsilon=epsilon,
        weight_decay=weight_decay,
        m=[np.zeros_like(p.data) for p in params],
        v=[np.zeros_like(p.data) for p in params],
    )


def adam_step(optimizer: Optimizer) -> None:
    """Performs a single Adam step.

    Follows algorithm 1 of the paper: https://arxiv.org/pdf/1412.6980
    The step counter `t` is shared by all parameters and advances once
    per call. Parameters without a gradient are skipped.
    """
    state: AdamState = optimizer.state
    state.t += 1
    bias_correction_1 = 1 - state.beta_1**state.t
    bias_correction_2 = 1 - state.beta_2**state.t

    for idx, param in enumerate(optimizer.params):
        grad = param.grad
        if grad is None:
            continue

        m, v = state.m[idx], state.v[idx]
        m *= state.beta_1
        m += (1 - state.beta_1) * grad
        v *= state.beta_2
        v += (1 - state.beta_2) * grad * grad

        m_hat = m / bias_correction_1
        v_hat = v / bias_correction_2

        if state.weight_decay > 0:
            param.data *= 1 - state.lr * state.weight_decay
        param.data -= state.lr * m_hat / (np.sqrt(v_hat) + state.epsilon)


def adam_free_state(state: AdamState) -> None:
    state.m = []
    state.v = []
    state.t = 0


class Optimizer:
    """Optimizer driving a registered optimizer kind over a list of parameters.

    The parameters are referenced, not owned: they are updated in place and
    stay usable after `free`.

    Args:
        params (Sequence[Tensor]): Parameters to optimize, leaves that require
            a gradient (e.g. from `Network.parameters`).
        config (OptimizerConfig): Optimizer kind and hyper-parameters.
        registry (Registry | None): Registry to resolve the optimizer kind from.
            Defaults to None, meaning the process-wide registry.

    Raises:
        ValueError: If `params` is empty or contains a non-leaf or a Tensor
            that does not require a gradient.
        TypeError: If `params` contains something other than a Tensor.
        RegistryError: If the optimizer kind is not registered.
    """

    def __init__(
        self,
        params: Sequence[Tensor],
        config: OptimizerConfig,
        *,
        registry: Registry | None = None,
    ) -> None:
        params = list(params)
        if len(params) == 0:
            raise ValueError("Must pass at least one parameter to optimize.")
        for param in params:
            if not isinstance(param, Tensor):
                raise TypeError(
                    "All parameters passed to the optimizer must be of type Tensor, "
                    f'found "{type(param).__name__}"'
                )
            if not param.is_leaf():
                raise ValueError(
                    "Parameters should always be leaves and therefore "
                    "should not have any parents/src "
                    "from which they were created."
                )
            if not param.requires_grad:
                raise ValueError("All parameters passed to the optimizer must require a gradient.")

        registry = registry or get_registry()
        spec: OptimizerSpec | None = registry.get_optimizer(config.name)
        if spec is None:
            raise RegistryError(
                f'Unknown optimizer "{normalize_name(config.name)}", '
                f"registered optimizers: {', '.join(registry.optimizer_names)}"
            )

        self.name = spec.name
        self.params = params
        self._step_fn = spec.step_fn
        self._free_state_fn = spec.free_state_fn
        self.state: Any = spec.init_state_fn(self.params, **config.params)
        logger.debug(
            'Created optimizer "%s" for %d parameters with %s',
            self.name,
            len(self.params),
            config.params,
        )

    @no_grad_fn
    def step(self) -> None:
        """Update all parameters in place from their current gradients.

        Raises:
            RuntimeError: If the state was already released with `free`.
        """
        if self.state is None:
            raise RuntimeError(f'Optimizer "{self.name}" was freed and cannot step anymore.')
        self._step_fn(self)

    def zero_grad(self) -> None:
        """Reset the gradients of all optimized parameters to zero."""
        for param in self.params:
            zero_grad(param)

    def free(self) -> None:
        """Release the per-parameter state. The parameters are left untouched."""
        if self.state is None:
            return
        self._free_state_fn(self.state)
        self.state = None
        logger.debug('Freed state of optimizer "%s"', self.name)

    def __repr__(self) -> str:
        return f'{type(self).__name__}(name="{self.name}", num_params={len(self.params)})'


class SGD(Optimizer):
    """Stochastic gradient descent, see `sgd_init_state` for the arguments."""

    def __init__(
        self,
        params: Sequence[Tensor],
        *,
        lr: float = 1e-2,
        momentum: float = 0.0,
        weight_decay: float = 0.0,
        registry: Registry | None = None,
    ) -> None:
        config = OptimizerConfig(
            "sgd",
            {"lr": lr, "momentum": momentum, "weight_decay": weight_decay},
        )
        super().__init__(params, config, registry=registry)


class Adam(Optimizer):
    """Adam optimizer, see `adam_init_state` for the arguments."""

    def __init__(  # noqa: PLR0913
        self,
        params: Sequence[Tensor],
        *,
        lr: float = 1e-3,
        beta_1: float = 0.9,
        beta_2: float = 0.999,
        epsilon: float = 1e-8,
        weight_decay: float = 0.0,
        registry: Registry | None = None,
    ) -> None:
        config = OptimizerConfig(
            "adam",
            {
                "lr": lr,
                "beta_1": beta_1,
                "beta_2": beta_2,
                "epsilon": epsilon,
                "weight_decay": weight_decay,
            },
        )
        super().__init__(params, config, registry=registry)


def create_optimizer(
    params: Sequence[Tensor],
    config: OptimizerConfig,
    *,
    registry: Registry | None = None,
) -> Optimizer:
    """Build an optimizer from its configuration record.

    Example:
        >>> create_optimizer(net.parameters, OptimizerConfig("adam", {"lr": 1e-3}))
        Optimizer(name="adam", num_params=4)
    """
    return Optimizer(params, config, registry=registry)


register_optimizer(
    "sgd",
    init_state_fn=sgd_init_state,
    step_fn=sgd_step,
    free_state_fn=sgd_free_state,
)
register_optimizer(
    "adam",
    init_state_fn=adam_init_state,
    step_fn=adam_step,
    free_state_fn=adam_free_state,
)


__all__ = [
    "SGD",
    "Adam",
    "AdamState",
    "Optimizer",
    "OptimizerConfig",
    "SGDState",
    "adam_free_state",
    "adam_init_state",
    "adam_step",
    "create_optimizer",
    "sgd_free_state",
    "sgd_init_state",
    "sgd_step",
]
