"""Sequential networks and the mini-batch training loop."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from .autograd import backward
from .errors import RegistryError, ShapeMismatch
from .grad_mode import no_grad_fn
from .layer import Layer, Loss
from .registry import OpType, get_registry, normalize_name
from .tensor import Tensor

if TYPE_CHECKING:
    from enum import Enum

    from .optimizer import Optimizer
    from .registry import Registry
    from .tensor import Parameter


logger = logging.getLogger(__name__)


class Network:
    """An ordered sequence of layers, each feeding its output into the next one.

    Args:
        layers (Sequence[Layer] | None): The initial layers. Defaults to None.

    Example:
        >>> net = Network([Linear(784, 64), Activation("relu"), Linear(64, 10)])
        >>> logits = net(x)
    """

    def __init__(self, layers: Sequence[Layer] | None = None) -> None:
        self.layers: list[Layer] = []
        for layer in layers or ():
            self.add_layer(layer)

    def add_layer(self, layer: Layer) -> Network:
        """Append `layer` to the end of the network.

        Returns:
            Network: self, for method chaining.
        """
        if not isinstance(layer, Layer):
            raise TypeError(f'Expected a Layer, found "{type(layer).__name__}"')
        self.layers.append(layer)
        return self

    def remove_last_layer(self) -> Layer:
        """Remove the last layer, e.g. a loss layer before inference.

        Returns:
            Layer: The removed layer.

        Raises:
            IndexError: If the network has no layers.
        """
        if not self.layers:
            raise IndexError("Cannot remove a layer from an empty network")
        return self.layers.pop()

    def forward(self, x: Tensor, *, targets: Tensor | None = None) -> Tensor:
        """Forward pass.

        Calls all layers subsequently in the order they were added.
        Loss layers receive `targets`.

        Args:
            x (Tensor): Input
            targets (Tensor | None): Targets for loss layers. Defaults to None.

        Returns:
            Tensor: Transformed output

        Raises:
            ValueError: If the network has no layers.
        """
        if not self.layers:
            raise ValueError("Cannot run the forward pass of an empty network")
        for layer in self.layers:
            x = layer(x, targets=targets) if isinstance(layer, Loss) else layer(x)
        return x

    def __call__(self, x: Tensor, *, targets: Tensor | None = None) -> Tensor:
        return self.forward(x, targets=targets)

    @no_grad_fn
    def predict(self, x: Tensor) -> Tensor:
        """Inference without graph building. Loss layers are skipped."""
        for layer in self.layers:
            if not isinstance(layer, Loss):
                x = layer(x)
        return x

    @property
    def parameters(self) -> list[Parameter]:
        """The parameters of all layers, in layer order."""
        return [param for layer in self.layers for param in layer.parameters]

    def zero_grad(self) -> None:
        """Reset the gradients of all parameters to zero."""
        for layer in self.layers:
            layer.zero_grad()

    def __len__(self) -> int:
        return len(self.layers)

    def __repr__(self) -> str:
        inner = ", ".join(repr(layer) for layer in self.layers)
        return f"Network([{inner}])"


@dataclass
class History:
    """Container for per-epoch training metrics.

    Attributes:
        history (dict[str, list[float]]): Mapping from metric name
            (`"loss"`, `"accuracy"`) to a list of per-epoch values.
        epoch (list[int]): Zero-based epoch indices aligned with `history`.
    """

    history: dict[str, list[float]] = field(default_factory=dict)
    epoch: list[int] = field(default_factory=list)

    def append_epoch(self, epoch_idx: int, logs: Mapping[str, float]) -> None:
        """Append the already aggregated metrics of a completed epoch."""
        self.epoch.append(int(epoch_idx))
        for key, value in logs.items():
            self.history.setdefault(key, []).append(float(value))

    def last(self) -> dict[str, float]:
        """Metrics of the most recent epoch, empty before the first one."""
        return {key: values[-1] for key, values in self.history.items() if values}


def _as_tensor(x: Any, name: str) -> Tensor:
    if isinstance(x, Tensor):
        return x
    if isinstance(x, np.ndarray):
        return Tensor(x)
    raise TypeError(f'Expected "{name}" to be a Tensor or ndarray, found "{type(x).__name__}"')


def iter_minibatches(
    inputs: Tensor,
    labels: Tensor,
    batch_size: int,
) -> Iterator[tuple[Tensor, Tensor]]:
    """Yield consecutive `(inputs, labels)` batches along the leading axis.

    Batches are taken in order without shuffling. The last batch holds the
    remaining rows and may be smaller than `batch_size`.

    Args:
        inputs (Tensor): Samples of shape `[N, ...]`.
        labels (Tensor): Labels of shape `[N, ...]`.
        batch_size (int): Rows per batch.

    Yields:
        tuple[Tensor, Tensor]: Sliced copies of the inputs and labels.

    Raises:
        ValueError: If `batch_size < 1` or the leading dimensions differ.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    if inputs.ndim == 0 or labels.ndim == 0 or inputs.shape[0] != labels.shape[0]:
        raise ValueError(
            "inputs and labels must have the same leading dimension, "
            f"got shapes {inputs.shape} and {labels.shape}"
        )

    num_samples = inputs.shape[0]
    for start in range(0, num_samples, batch_size):
        end = min(start + batch_size, num_samples)
        yield inputs.slice(start, end), labels.slice(start, end)


def accuracy(predictions: Tensor, labels: Tensor) -> float:
    """Fraction of rows whose arg-max of `predictions` matches the arg-max of `labels`.

    Args:
        predictions (Tensor): Scores or probabilities of shape `[N, C]`.
        labels (Tensor): One-hot labels of shape `[N, C]`.

    Returns:
        float: The accuracy in `[0, 1]`.

    Raises:
        ShapeMismatch: If the shapes differ.
    """
    if predictions.shape != labels.shape:
        raise ShapeMismatch(
            f"predictions and labels must have the same shape, "
            f"got {predictions.shape} and {labels.shape}"
        )
    hits = np.argmax(predictions.data, axis=-1) == np.argmax(labels.data, axis=-1)
    return float(np.mean(hits))


def train(  # noqa: PLR0913
    network: Network,
    optimizer: Optimizer,
    inputs: Tensor,
    labels: Tensor,
    *,
    epochs: int,
    batch_size: int,
    loss_name: str | Enum = "cross_entropy",
    verbose: bool = False,
    registry: Registry | None = None,
) -> History:
    """Train `network` in place with mini-batch gradient descent.

    Each batch runs the forward pass, computes the named loss against the
    labels, backpropagates, updates the parameters with `optimizer` and
    resets the gradients of all parameters.

    Args:
        network (Network): The network to train. Its output is compared to
            the labels, so it must not end with a loss layer.
        optimizer (Optimizer): Optimizer over the parameters of `network`.
        inputs (Tensor): Training samples of shape `[N, features]`.
        labels (Tensor): Targets of shape `[N, classes]`, usually one-hot.
        epochs (int): Number of passes over the data.
        batch_size (int): Rows per mini-batch, the last one may be smaller.
        loss_name (str | Enum): Registered loss operation.
            Defaults to `"cross_entropy"`.
        verbose (bool): Whether to log a summary of every epoch at INFO level.
            Defaults to False.
        registry (Registry | None): Registry to resolve the loss from.
            Defaults to None, meaning the process-wide registry.

    Returns:
        History: Batch-size weighted average `loss` and `accuracy` per epoch.

    Raises:
        ValueError: If `epochs < 1`, `batch_size < 1`, the leading dimensions
            of `inputs` and `labels` differ, the network is empty or ends
            with a loss layer, or `loss_name` is not a loss.
        RegistryError: If `loss_name` is not registered.
    """
    if epochs < 1:
        raise ValueError(f"epochs must be >= 1, got {epochs}")
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    if not network.layers:
        raise ValueError("Cannot train an empty network")
    if isinstance(network.layers[-1], Loss):
        raise ValueError(
            "The network ends with a loss layer, remove it with remove_last_layer() "
            "and pass its name as loss_name instead"
        )

    inputs = _as_tensor(inputs, "inputs")
    labels = _as_tensor(labels, "labels")

    registry = registry or get_registry()
    loss_spec = registry.get_op(loss_name)
    if loss_spec is None:
        raise RegistryError(f'Unknown loss "{normalize_name(loss_name)}"')
    if loss_spec.op_type != OpType.LOSS:
        raise ValueError(f'"{loss_spec.name}" is not a loss operation')

    history = History()
    for epoch in range(epochs):
        total_loss = 0.0
        total_hits = 0.0
        num_seen = 0

        for x_batch, y_batch in iter_minibatches(inputs, labels, batch_size):
            predictions = network(x_batch)
            loss = loss_spec.forward_fn(predictions, y_batch)
            backward(loss)
            optimizer.step()
            network.zero_grad()

            n = x_batch.shape[0]
            total_loss += loss.item() * n
            total_hits += accuracy(predictions, y_batch) * n
            num_seen += n

        logs = {"loss": total_loss / num_seen, "accuracy": total_hits / num_seen}
        history.append_epoch(epoch, logs)
        if verbose:
            logger.info(
                "Epoch %d/%d - loss: %.4f - accuracy: %.4f",
                epoch + 1,
                epochs,
                logs["loss"],
                logs["accuracy"],
            )

    return history


__all__ = [
    "History",
    "Network",
    "accuracy",
    "iter_minibatches",
    "train",
]
