# payrecon/core/exceptions.py

"""
Reconciliation errors.

Ambiguous matches are not errors; they come back as review / conflict /
no_match decisions.
"""


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class BatchRejectedError(ReconciliationError):
    """Structural input problem: nothing in the batch is processed."""


class NotFoundError(ReconciliationError):
    """A referenced payment, account or case does not exist."""


class InvalidResolutionError(ReconciliationError):
    """A duplicate case resolution that cannot be applied."""


class PersistenceError(ReconciliationError):
    """
    A batch write failed part way.

    Chunks written before the failure stay committed; ids are
    deterministic so the batch can be retried.
    """

    def __init__(self, message: str, committed_chunks: int = 0):
        super().__init__(message)
        self.committed_chunks = committed_chunks
