"""Error kinds raised by the matching engine.

Missing data is never an error: absent vectors or attributes degrade a score
to 0. These exceptions cover caller contract violations and backend failures.
"""


class InvalidInput(ValueError):
    """Structurally malformed input (non-finite vector entries, wrong types)."""


class StoreUnavailable(RuntimeError):
    """The persistence backend could not complete a read or write.

    Raised with the underlying exception chained. Retry policy belongs to the
    caller.
    """
