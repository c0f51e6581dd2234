"""Error taxonomy for the geography engine.

NotFound is never raised: unknown codes yield empty option lists or None.
Unresolvable hierarchies are returned as PartialHierarchy values.
"""


class GeographyError(Exception):
    """Base class for geography engine errors."""


class StoreError(GeographyError):
    """A backing-store query failed."""


class TransientStoreError(StoreError):
    """Backing store timed out or was unreachable. Safe to retry."""


class SearchUnavailableError(GeographyError):
    """Search could not reach the backing store.

    Distinct from an empty result so callers can tell "no matches" from
    "search unavailable".
    """


class CapacityExceededError(GeographyError):
    """The per-barangay sequence no longer fits its 4-digit field."""

    def __init__(self, barangay_code: str, sequence: int) -> None:
        self.barangay_code = barangay_code
        self.sequence = sequence
        super().__init__(
            f"Household sequence {sequence} exceeds 9999 for barangay "
            f"{barangay_code}; the code format needs migration"
        )


class UniquenessConflictError(GeographyError):
    """Concurrent household creation kept colliding on the same code."""

    def __init__(self, barangay_code: str, attempts: int, last_code: str) -> None:
        self.barangay_code = barangay_code
        self.attempts = attempts
        self.last_code = last_code
        super().__init__(
            f"Household code collision for barangay {barangay_code} after "
            f"{attempts} attempts (last tried {last_code})"
        )
