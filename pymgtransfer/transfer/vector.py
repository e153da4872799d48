"""pymgtransfer.transfer.vector

DoF vector with an explicit residency. Host code never sees the device
buffer directly; values move only through `copy_from_host` / `copy_to_host`,
which are synchronous.
"""
from __future__ import annotations

import numpy as np

from pymgtransfer.transfer.errors import TransferContractError

DEVICES = ("cpu", "cuda")


def _cuda():
    from numba import cuda
    if not cuda.is_available():
        raise TransferContractError("device 'cuda' requested but no CUDA device is available")
    return cuda


class DeviceVector:
    """
    Dense float64 vector resident on a compute device.

    ``"cpu"`` keeps a private numpy buffer used by the threaded kernels,
    ``"cuda"`` a `numba.cuda` device array.
    """

    def __init__(self, size: int, device: str = "cpu"):
        if device not in DEVICES:
            raise TransferContractError(f"unknown device {device!r}; choose from {DEVICES}")
        if size < 0:
            raise TransferContractError("size must be non-negative")
        self.device = device
        self.size = int(size)
        if device == "cpu":
            self._data = np.zeros(self.size, dtype=np.float64)
        else:
            self._data = _cuda().to_device(np.zeros(self.size, dtype=np.float64))

    @classmethod
    def from_host(cls, array, device: str = "cpu") -> "DeviceVector":
        array = np.asarray(array, dtype=np.float64)
        if array.ndim != 1:
            raise TransferContractError("host array must be 1D")
        vec = cls(array.shape[0], device)
        vec.copy_from_host(array)
        return vec

    @property
    def data(self):
        """The device buffer, for kernels."""
        return self._data

    def __len__(self) -> int:
        return self.size

    def copy_from_host(self, array) -> None:
        array = np.ascontiguousarray(array, dtype=np.float64)
        if array.shape != (self.size,):
            raise TransferContractError(f"cannot copy {array.shape[0]} host entries into a vector of {self.size}")
        if self.device == "cpu":
            np.copyto(self._data, array)
        else:
            self._data.copy_to_device(array)

    def copy_to_host(self, out: np.ndarray = None) -> np.ndarray:
        if out is not None and (out.shape != (self.size,) or out.dtype != np.float64):
            raise TransferContractError(f"host buffer must be float64 with {self.size} entries")
        if self.device == "cpu":
            if out is None:
                return self._data.copy()
            np.copyto(out, self._data)
            return out
        host = self._data.copy_to_host()
        if out is None:
            return host
        np.copyto(out, host)
        return out

    def fill(self, value: float) -> None:
        if self.device == "cpu":
            self._data.fill(value)
        else:
            self._data.copy_to_device(np.full(self.size, value, dtype=np.float64))

    def __repr__(self):
        return f"<DeviceVector size={self.size} device={self.device}>"
