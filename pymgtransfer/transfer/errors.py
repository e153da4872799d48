"""pymgtransfer.transfer.errors"""


class TransferContractError(ValueError):
    """A caller broke the transfer contract (level, vector length, residency)."""


class UnsupportedElementError(TransferContractError):
    """No precomputed interpolation table for the (dim, degree) pair."""


class HierarchyInconsistencyError(ValueError):
    """The DoF hierarchy or its constraints contradict each other."""
