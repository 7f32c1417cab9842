"""recordhistory Decorators - the Versioned mixin and @versioned."""

from recordhistory.decorators.versioned import Versioned, versioned  # noqa: F401

__all__ = ["Versioned", "versioned"]
