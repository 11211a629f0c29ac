"""Exception types raised by capindex."""


class CapIndexError(Exception):
    """Base class for capindex errors."""


class ConfigValidationError(CapIndexError, ValueError):
    """Raised when an index configuration violates range or ordering rules.

    Carries every violation found so they can all be fixed in one pass.
    """

    def __init__(self, violations, source: str | None = None):
        self.violations = list(violations)
        self.source = source
        where = f" in {source}" if source else ""
        lines = [f"  {v.field}: {v.reason}" for v in self.violations]
        super().__init__(f"Invalid index configuration{where}:\n" + "\n".join(lines))


class LockTimeout(CapIndexError, TimeoutError):
    """Raised when a file lock could not be acquired before the deadline."""

    def __init__(self, path, holder: str | None, waited_ms: float):
        self.path = path
        self.holder = holder
        self.waited_ms = waited_ms
        held_by = f" (held by {holder})" if holder else ""
        super().__init__(f"Timed out after {waited_ms:.0f}ms waiting for lock {path}{held_by}")


class ElementStoreError(CapIndexError):
    """The element store could not answer a request."""


class ElementReadError(ElementStoreError):
    """Content for a single element could not be read."""

    def __init__(self, element_id: str, reason: str):
        self.element_id = element_id
        self.reason = reason
        super().__init__(f"Cannot read element {element_id}: {reason}")


class CircularInitializationError(CapIndexError, RuntimeError):
    """A lazy provider was asked for its instance while still building it."""
