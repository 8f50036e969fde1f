"""Exceptions raised by radl."""


class ShapeMismatch(ValueError):  # noqa: N818
    """Raised when the shapes of operands are incompatible for an operation."""


class RegistryError(LookupError):
    """Raised when a capability cannot be resolved from, or added to, the registry."""


__all__ = [
    "RegistryError",
    "ShapeMismatch",
]
