"""Datasets: IDX (MNIST) binary files and a synthetic classification problem."""

from __future__ import annotations

import logging
import os
import struct
from typing import Any

import numpy as np

from .tensor import DEFAULT_DTYPE, Tensor

logger = logging.getLogger(__name__)


IDX_IMAGES_MAGIC = 2051
IDX_LABELS_MAGIC = 2049

# big-endian uint32 fields
_IMAGES_HEADER = struct.Struct(">IIII")  # magic, count, rows, cols
_LABELS_HEADER = struct.Struct(">II")  # magic, count

# fraction of active features in a synthetic class prototype
_PROTOTYPE_DENSITY = 0.2


def _read_header(f: Any, header: struct.Struct, expected_magic: int, path: Any) -> tuple[int, ...]:
    raw = f.read(header.size)
    if len(raw) != header.size:
        raise ValueError(f'File "{path}" is too short for an IDX header')
    fields = header.unpack(raw)
    if fields[0] != expected_magic:
        raise ValueError(
            f'Invalid magic number {fields[0]} in "{path}", expected {expected_magic}'
        )
    return fields[1:]


def _read_payload(f: Any, num_bytes: int, path: Any) -> np.ndarray:
    raw = f.read(num_bytes)
    if len(raw) != num_bytes:
        raise ValueError(
            f'Truncated payload in "{path}": expected {num_bytes} bytes, found {len(raw)}'
        )
    return np.frombuffer(raw, dtype=np.uint8)


def one_hot(indices: Any, num_classes: int) -> Tensor:
    """Encode class indices as one-hot rows.

    Args:
        indices (Any): Integer class indices of shape `[N]`.
        num_classes (int): Number of classes `C`.

    Returns:
        Tensor: A `float32` Tensor of shape `[N, C]`.

    Raises:
        ValueError: If an index is outside `[0, num_classes)`.
    """
    indices = np.asarray(indices, dtype=np.int64).reshape(-1)
    if num_classes < 1:
        raise ValueError(f"num_classes must be positive, got {num_classes}")
    if indices.size > 0 and (indices.min() < 0 or indices.max() >= num_classes):
        raise ValueError(f"Class indices must be in [0, {num_classes}), got {indices}")

    encoded = np.zeros((indices.size, num_classes), dtype=DEFAULT_DTYPE)
    encoded[np.arange(indices.size), indices] = 1.0
    return Tensor(encoded)


def load_idx_images(path: str | os.PathLike[str], limit: int | None = None) -> Tensor:
    """Load an IDX image file, e.g. `train-images-idx3-ubyte`.

    Args:
        path (str | os.PathLike[str]): Path of the file.
        limit (int | None): Keep only the first `limit` images.
            Defaults to None, meaning all images.

    Returns:
        Tensor: Images of shape `[count, rows * cols]`, scaled to `[0, 1]`.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the magic number is wrong or the payload is truncated.
    """
    with open(path, "rb") as f:
        count, rows, cols = _read_header(f, _IMAGES_HEADER, IDX_IMAGES_MAGIC, path)
        if limit is not None:
            count = min(count, limit)
        pixels = _read_payload(f, count * rows * cols, path)

    images = pixels.reshape(count, rows * cols).astype(DEFAULT_DTYPE) / 255.0
    logger.debug('Loaded %d images of %dx%d pixels from "%s"', count, rows, cols, path)
    return Tensor(images)


def load_idx_labels(
    path: str | os.PathLike[str],
    num_classes: int = 10,
    limit: int | None = None,
) -> Tensor:
    """Load an IDX label file, e.g. `train-labels-idx1-ubyte`, as one-hot rows.

    Args:
        path (str | os.PathLike[str]): Path of the file.
        num_classes (int): Number of classes. Defaults to 10.
        limit (int | None): Keep only the first `limit` labels.
            Defaults to None, meaning all labels.

    Returns:
        Tensor: One-hot labels of shape `[count, num_classes]`.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the magic number is wrong, the payload is truncated
            or a label is not below `num_classes`.
    """
    with open(path, "rb") as f:
        (count,) = _read_header(f, _LABELS_HEADER, IDX_LABELS_MAGIC, path)
        if limit is not None:
            count = min(count, limit)
        labels = _read_payload(f, count, path)

    logger.debug('Loaded %d labels from "%s"', count, path)
    return one_hot(labels, num_classes)


def make_classification(
    num_samples: int,
    num_features: int,
    num_classes: int,
    *,
    noise: float = 0.3,
    seed: int | None = 42,
) -> tuple[Tensor, Tensor]:
    """Generate a synthetic, learnable classification dataset.

    Mimics normalized pixel images: every class has a random binary prototype
    with about 20% active features, each sample is the prototype of its class
    plus Gaussian noise, clipped to `[0, 1]`.

    Args:
        num_samples (int): Number of samples `N`.
        num_features (int): Number of features per sample.
        num_classes (int): Number of classes `C`.
        noise (float): Standard deviation of the noise. Defaults to 0.3.
        seed (int | None): Seed of the random generator, equal seeds give
            equal datasets. Defaults to 42.

    Returns:
        tuple[Tensor, Tensor]: Inputs `[N, num_features]` and one-hot labels `[N, C]`.
    """
    if num_samples < 1 or num_features < 1 or num_classes < 1:
        raise ValueError(
            "num_samples, num_features and num_classes must be positive, got "
            f"{num_samples}, {num_features} and {num_classes}"
        )
    rng = np.random.default_rng(seed)
    prototypes = (rng.random((num_classes, num_features)) < _PROTOTYPE_DENSITY).astype(np.float64)
    classes = rng.integers(0, num_classes, size=num_samples)
    samples = prototypes[classes] + noise * rng.standard_normal((num_samples, num_features))
    samples = np.clip(samples, 0.0, 1.0)
    return Tensor(samples.astype(DEFAULT_DTYPE)), one_hot(classes, num_classes)


__all__ = [
    "IDX_IMAGES_MAGIC",
    "IDX_LABELS_MAGIC",
    "load_idx_images",
    "load_idx_labels",
    "make_classification",
    "one_hot",
]
