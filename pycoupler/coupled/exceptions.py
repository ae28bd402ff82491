"""
Error taxonomy of the coupler.

- ConfigurationError: fatal at startup (unknown flux scheme, unknown mode,
  missing model role, non-positive or non-dividing coupling interval).
- FractionSumError / MissingFieldError: precondition violations, raised at the
  point where they are detected.
- ConservationError: hard-fail conservation check.
- InterfaceWarning: category for undefined-but-tolerated operations on
  component models (e.g. a stub that ignores an update); never raised.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid run configuration detected before the coupling loop starts."""


class FractionSumError(ValueError):
    """Surface area fractions do not sum to one in at least one column."""


class MissingFieldError(KeyError):
    """A component model does not expose a field the coupler requested."""

    def __init__(self, model: str, name: str) -> None:
        super().__init__(f"{model} does not provide field {name!r}")
        self.model = model
        self.name = name

    def __str__(self) -> str:  # KeyError would repr() the message
        return str(self.args[0])


class ConservationError(RuntimeError):
    """A global energy or water budget drifted beyond the allowed tolerance."""


class InterfaceWarning(UserWarning):
    """An optional component-model capability is undefined and was skipped."""
