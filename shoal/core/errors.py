"""Error taxonomy for the Shoal transfer engine.

Every error raised by the core derives from ShoalError so adapters can
catch business-rule failures in one place while letting store and
network failures propagate unchanged.

- ValidationError: the request itself is malformed or cannot be honoured
  (bad quantity, identical source/target, not enough fish).
- NotFoundError: a plan, task, fish reference or aquarium is missing.
- StateError: a status transition was attempted from an illegal state.
- EmptyPlanError: a plan with no tasks was finalized.
- ConcurrentModificationError: a document changed between read and commit.
"""


class ShoalError(Exception):
    """Base class for all domain errors raised by the core."""


class ValidationError(ShoalError, ValueError):
    """The request violates a business rule and cannot be applied."""


class NotFoundError(ShoalError, LookupError):
    """A referenced document does not exist."""

    def __init__(self, kind: str, doc_id: str):
        self.kind = kind
        self.doc_id = doc_id
        super().__init__(f"{kind} {doc_id} not found")


class StateError(ShoalError):
    """A status transition was requested from an illegal source state."""

    def __init__(self, attempted: str, actual: str, hint: str | None = None):
        self.attempted = attempted
        self.actual = actual
        message = f"Cannot {attempted} while status is '{actual}'"
        if hint:
            message = f"{message}: {hint}"
        super().__init__(message)


class EmptyPlanError(StateError):
    """A plan with zero tasks cannot be finalized."""

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        ShoalError.__init__(
            self, f"Transfer plan {plan_id} has no tasks and cannot be finalized"
        )
        self.attempted = "finalize"
        self.actual = "empty"


class ConcurrentModificationError(ShoalError):
    """A batch precondition failed because a document changed since it was read.

    Nothing in the batch was written. Callers may reload and retry.
    """

    def __init__(self, collection: str, doc_id: str, expected: int, actual: int | None):
        self.collection = collection
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual
        found = "missing" if actual is None else f"version {actual}"
        super().__init__(
            f"{collection}/{doc_id} changed concurrently "
            f"(expected version {expected}, found {found})"
        )


__all__ = [
    "ConcurrentModificationError",
    "EmptyPlanError",
    "NotFoundError",
    "ShoalError",
    "StateError",
    "ValidationError",
]
