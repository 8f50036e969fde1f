"""Reverse-mode automatic differentiation over the Tensor graph."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import numpy as np

from .errors import RegistryError, ShapeMismatch
from .grad_mode import no_grad
from .tensor import Tensor

logger = logging.getLogger(__name__)

GRAPH_RELEASED_MSG = (
    "Trying to backpropagate through a graph that was already released, "
    "use backward(retain_graph=True) to traverse it more than once"
)


def toposort(root: Tensor) -> list[Tensor]:
    """Performs topological sort on a graph.

    `root` is the starting point of the graph. Only inputs that require a
    gradient are followed, constants and frozen leaves are not part of the
    result.

    Args:
        root (Tensor): The starting point of the graph.
            Expected to have an attribute `src` denoting
            a list of its inputs, also being of type `Tensor`.

    Raises:
        ValueError: If the graph, with the starting point
            given by `root`, is not a DAG.
        RuntimeError: If an input was released by an earlier backward pass.

    Returns:
        list[Tensor]: The ordered nodes, every node after all of its inputs.
            `root` is the last element.
    """
    ordered_nodes: list[Tensor] = []
    currently_visiting: set[Tensor] = set()
    done: set[Tensor] = set()

    stack: list[tuple[Tensor, bool]] = [(root, False)]
    while stack:
        node, expanded = stack.pop()
        if node in done:
            continue

        if expanded:
            ordered_nodes.append(node)
            currently_visiting.discard(node)
            done.add(node)
            continue

        stack.append((node, True))
        currently_visiting.add(node)
        for neighbor in reversed(node.src):
            if not neighbor.requires_grad or neighbor in done:
                continue
            if neighbor in currently_visiting:
                raise ValueError("Cycle in computation graph detected, but only DAG allowed!")
            if neighbor.is_released():
                raise RuntimeError(GRAPH_RELEASED_MSG)
            stack.append((neighbor, False))

    return ordered_nodes


def _accumulate(node: Tensor, grad: np.ndarray) -> None:
    """Add `grad` into the gradient buffer of `node`, allocating it on first write."""
    if grad.shape != node.shape:
        raise ShapeMismatch(
            f"Gradient of shape {grad.shape} does not match Tensor of shape {node.shape}"
            + (f' created by "{node.creator_op}"' if node.creator_op else "")
        )
    if node.grad is None:
        node.grad = np.zeros_like(node.data)
    node.grad += grad


def _release_graph(topo_nodes: Iterable[Tensor]) -> None:
    """Cut all links of the traversed graph so it can be garbage collected.

    Gradients are kept, so they stay readable after the backward pass.
    """
    released = 0
    for node in topo_nodes:
        if not node.is_leaf():
            node.release()
            released += 1
    logger.debug("Released %d graph nodes", released)


def backward(root: Tensor, *, retain_graph: bool = False) -> None:
    """Perform backpropagation on the computation graph with respect to `root`.

    Seeds the gradient of `root` with ones and visits every node of the graph
    after all of its consumers, adding the gradient contribution of each
    consumer into the gradient buffer of its inputs. A Tensor used by several
    operations therefore receives the sum of all contributions.

    Gradients of leaves (e.g. parameters) accumulate across calls until they
    are reset with `zero_grad`. Gradients of intermediate Tensors only hold the
    result of the latest traversal.

    Args:
        root (Tensor): The Tensor to differentiate, usually a scalar loss.
        retain_graph (bool): Whether to keep the graph for another backward
            pass (`True`), or to release it afterwards (`False`).
            Defaults to False.

    Raises:
        ValueError: If `root` does not require a gradient, or the graph
            contains a cycle.
        RegistryError: If an intermediate Tensor has no backward function.
        RuntimeError: If the graph was released by an earlier backward pass.
        ShapeMismatch: If a backward function returns a gradient whose
            shape differs from its input.
    """
    if not isinstance(root, Tensor):
        raise TypeError(f'Expected "root" to be a Tensor, found "{type(root).__name__}"')
    if not root.requires_grad:
        raise ValueError(
            "Cannot backpropagate from a Tensor that does not require a gradient. "
            "Was it created inside a no_grad() block?"
        )
    if root.is_released():
        raise RuntimeError(GRAPH_RELEASED_MSG)

    node_order = toposort(root)

    # gradients of activations are scratch space of a single traversal
    for node in node_order:
        if not node.is_leaf():
            node.grad = None

    _accumulate(root, np.ones(root.shape, dtype=root.dtype))

    with no_grad():
        for node in reversed(node_order):
            # "node.grad is None": the node does not contribute to `root`
            # "node.is_leaf()": there are no inputs to pass gradients to
            if node.grad is None or node.is_leaf():
                continue

            compute_grad = tuple(src.requires_grad for src in node.src)
            if not any(compute_grad):
                continue

            if node.backward_fn is None:
                raise RegistryError(
                    f'No backward function for "{node.creator_op}" in the computation graph'
                )

            logger.debug('Calling backward function: "%s"', node.backward_fn.__name__)

            src_grads = node.backward_fn(
                *node.src,
                compute_grad=compute_grad,
                grad_out=node.grad,
                **node.op_ctx,
            )
            if len(src_grads) != len(node.src):
                raise ShapeMismatch(
                    f'Backward function of "{node.creator_op}" returned {len(src_grads)} '
                    f"gradients for {len(node.src)} inputs"
                )

            for src, src_grad in zip(node.src, src_grads, strict=True):
                if src_grad is None or not src.requires_grad:
                    continue
                _accumulate(src, np.asarray(src_grad))

    if not retain_graph:
        _release_graph(node_order)


def zero_grad(tensor: Tensor) -> None:
    """Reset the gradient buffer of `tensor` to zero.

    A Tensor that never received a gradient keeps `grad=None`.

    Args:
        tensor (Tensor): The Tensor whose gradient to reset.
    """
    if tensor.grad is not None:
        tensor.grad.fill(0)


__all__ = [
    "backward",
    "toposort",
    "zero_grad",
]
