# pymgtransfer/transfer/__init__.py
from .errors import TransferContractError, UnsupportedElementError, HierarchyInconsistencyError
from .metadata import LevelMetadataBuilder, LevelTransferMetadata
from .sequential import SequentialTransferEngine
from .vector import DeviceVector
from .parallel import ParallelTransferEngine
from .harness import (HarnessConfig, HarnessReport, LevelDiscrepancy,
                      TransferCase, TransferEquivalenceHarness)

__all__ = [
    'TransferContractError', 'UnsupportedElementError', 'HierarchyInconsistencyError',
    'LevelMetadataBuilder', 'LevelTransferMetadata',
    'SequentialTransferEngine', 'ParallelTransferEngine', 'DeviceVector',
    'HarnessConfig', 'HarnessReport', 'LevelDiscrepancy', 'TransferCase',
    'TransferEquivalenceHarness',
]
