"""Compilation errors — every failure aborts the pass and names its culprit."""

from __future__ import annotations


class ValidationError(ValueError):
    """Base class for all policy compilation failures."""


class SelectorValidationError(ValidationError):
    """A selector was constructed with invalid arguments."""


class AnchorCapabilityError(ValidationError):
    """A document anchor is not purely an endpoint or purely a node."""


class CounterpartCapabilityError(ValidationError):
    """A rule counterpart cannot be expressed in the requested direction."""


class UnhandledSelectorVariantError(TypeError):
    """A dispatch site received a selector variant it does not know about.

    Signals a programming error rather than bad input.
    """


class DuplicatePolicyError(ValidationError):
    """Two documents in one catalog share a name."""
