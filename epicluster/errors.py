"""Exceptions raised by epicluster.

None of these are retried: they all signal a malformed analysis setup.
"""
from __future__ import annotations


class EpiclusterError(Exception):
    """Base class for all epicluster errors."""


class ValidationError(EpiclusterError, ValueError):
    """Distance matrices disagree on shape, labels or symmetry."""


class ConfigurationError(EpiclusterError, ValueError):
    """Missing or ambiguous analysis configuration (e.g. no cutoff for a stream)."""


class InvalidParameterError(EpiclusterError, ValueError):
    """Numeric input outside its domain."""


class EmptyInputError(EpiclusterError, ValueError):
    """Nothing to cluster."""


class NumericalNonConvergence(EpiclusterError, RuntimeError):
    """A root-find or bracket search ran out of iterations."""
