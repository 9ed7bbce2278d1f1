"""
Custom exception hierarchy for trailguard.

Hierarchy:

    TrailguardError (base)
    ├── OperationalError: transient/retryable (price feed, signer, store)
    │   └── StoreError
    ├── DataError: bad input, skip this position, don't halt
    │   └── PositionNotFoundError
    ├── InvariantError: position invariant broken
    │   ├── InvariantViolation
    │   └── InvalidTransition
    └── ConfigurationError: fatal at startup

Rules:
    - OperationalError: catch, log, retry on the next tracking cycle
    - DataError: catch, log, skip this position
    - InvariantError: never silently continued; the cycle aborts and is logged
    - ConfigurationError: only raised before the tracker starts
"""


class TrailguardError(Exception):
    """Base exception for all trailguard errors."""
    pass


# ============ OPERATIONAL (transient, retryable) ============

class OperationalError(TrailguardError):
    """Transient/retryable error: price feed, signer service, storage.

    Treatment: catch, log, continue to next cycle.
    """
    pass


class StoreError(OperationalError):
    """Position store read/write failed."""
    pass


# ============ DATA (bad input) ============

class DataError(TrailguardError):
    """Bad data: unknown position, malformed record."""
    pass


class PositionNotFoundError(DataError):
    """Raised when a position id is not known to the store or tracker."""
    pass


# ============ INVARIANT (safety violation) ============

class InvariantError(TrailguardError):
    """Position invariant violation."""
    pass


class InvariantViolation(InvariantError):
    """An immutable field was changed or a monotonic field went backwards."""
    pass


class InvalidTransition(InvariantError):
    """A state transition not allowed by the position state machine."""
    pass


# ============ CONFIGURATION (fatal at startup) ============

class ConfigurationError(TrailguardError):
    """Missing or invalid configuration. Fatal at startup."""
    pass
