from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .exceptions import ReorderError
from .ir import LogicalTensor

# bf16 values live in float32 storage, rounded to bfloat16 precision.
_STORAGE_DTYPES: Dict[str, Any] = {
    "f32": np.float32,
    "bf16": np.float32,
    "f16": np.float16,
    "s32": np.int32,
    "s8": np.int8,
    "u8": np.uint8,
    "boolean": np.bool_,
}


def storage_dtype(data_type: str) -> np.dtype:
    try:
        return np.dtype(_STORAGE_DTYPES[data_type])
    except KeyError as exc:
        raise ReorderError(f"Unsupported data type '{data_type}'") from exc


def is_integer_type(data_type: str) -> bool:
    return data_type in {"s32", "s8", "u8"}


def round_to_bf16(values: np.ndarray) -> np.ndarray:
    arr = np.ascontiguousarray(values, dtype=np.float32)
    bits = arr.view(np.uint32).astype(np.uint64)
    rounded = (bits + 0x7FFF + ((bits >> 16) & 1)) & 0xFFFF0000
    out = rounded.astype(np.uint32).view(np.float32)
    # rounding must not turn NaN payloads into infinities
    return np.where(np.isnan(arr), arr, out)


def convert(values: np.ndarray, data_type: str) -> np.ndarray:
    """Convert ``values`` to ``data_type`` with saturation and round-half-to-even."""
    target = storage_dtype(data_type)
    values = np.asarray(values)
    if data_type == "boolean":
        return values != 0
    if data_type == "bf16":
        return round_to_bf16(values.astype(np.float32))
    if not is_integer_type(data_type):
        return values.astype(target)
    info = np.iinfo(target)
    if values.dtype.kind in {"f", "c"}:
        arr = np.rint(values.astype(np.float64))
    else:
        arr = values.astype(np.int64)
    return np.clip(arr, info.min, info.max).astype(target)


@dataclass(frozen=True)
class MemoryDesc:
    data_type: str
    shape: Tuple[int, ...]

    @classmethod
    def from_tensor(cls, lt: LogicalTensor) -> "MemoryDesc":
        return cls(lt.data_type, tuple(int(dim) for dim in lt.shape))

    @property
    def nelems(self) -> int:
        return int(np.prod(self.shape, dtype=np.int64)) if self.shape else 1


class Memory:
    """Host buffer bound to a :class:`MemoryDesc`."""

    def __init__(self, desc: MemoryDesc, data: Optional[Any] = None):
        self._desc = desc
        dtype = storage_dtype(desc.data_type)
        if data is None:
            self._data = np.zeros(desc.shape, dtype=dtype)
            return
        arr = np.asarray(data)
        if arr.dtype != dtype:
            raise ReorderError(
                f"Buffer of dtype {arr.dtype} cannot back '{desc.data_type}' memory"
            )
        if arr.size != desc.nelems:
            raise ReorderError(
                f"Buffer with {arr.size} elements cannot back shape {desc.shape}"
            )
        self._data = arr.reshape(desc.shape)

    @classmethod
    def for_tensor(cls, lt: LogicalTensor) -> "Memory":
        return cls(MemoryDesc.from_tensor(lt))

    @property
    def desc(self) -> MemoryDesc:
        return self._desc

    @property
    def data(self) -> np.ndarray:
        return self._data

    @property
    def nelems(self) -> int:
        return self._desc.nelems

    def clone_descriptor(self, other: MemoryDesc) -> "Memory":
        """View the same elements under ``other``'s shape, keeping this data type."""
        if other.nelems != self.nelems:
            raise ReorderError(
                f"Cannot describe {self.nelems} elements with shape {other.shape}"
            )
        return Memory(MemoryDesc(self._desc.data_type, other.shape), self._data)

    def reorder_from(self, src: "Memory") -> None:
        """Copy ``src`` into this buffer in place, converting type and layout."""
        if src.nelems != self.nelems:
            raise ReorderError(
                f"Reorder between {src.desc.shape} and {self._desc.shape} changes element count"
            )
        converted = convert(src.data, self._desc.data_type).reshape(self._desc.shape)
        np.copyto(self._data, converted, casting="unsafe")

    def copy(self) -> "Memory":
        return Memory(self._desc, self._data.copy())

    def __repr__(self) -> str:
        return f"Memory({self._desc.data_type}, shape={self._desc.shape})"
