"""
Errors
======
Exception types raised across the self-heal subsystem.

Only configuration problems abort a run. Everything else (a failing step,
a rejected patch, a failed re-generation) is recorded as data by the
component that hit it.
"""
from typing import List


class SelfHealError(Exception):
    """Base class for self-heal errors."""


class FlowValidationError(SelfHealError):
    """The flow document is malformed; nothing can be run."""


class GeneratorInvocationError(SelfHealError):
    """Re-generation inside an isolated tree failed or timed out."""


class SchemaValidationError(SelfHealError):
    """A result document does not match its JSON schema."""

    def __init__(self, document: str, errors: List[str]):
        self.document = document
        self.errors = errors
        super().__init__(f"{document} failed schema validation: {'; '.join(errors[:5])}")
