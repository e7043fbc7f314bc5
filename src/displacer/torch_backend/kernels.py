from __future__ import annotations

from typing import Callable, Dict

import numpy as np
import torch

from ..core.ir import Op
from ..core.op_meta import Arg
from ..core.reference import Kernel, channel_params


def _as_tensor(values: np.ndarray, dtype: torch.dtype = torch.float64) -> torch.Tensor:
    return torch.from_numpy(np.ascontiguousarray(values)).to(dtype=dtype)


def _quantize(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    src = _as_tensor(args[Arg.SRC])
    scales, zps = channel_params(op, src.ndim)
    # torch.round rounds half to even, matching np.rint
    return torch.round(src / _as_tensor(scales) + _as_tensor(zps)).numpy()


def _dequantize(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    src = _as_tensor(args[Arg.SRC])
    scales, zps = channel_params(op, src.ndim)
    return ((src - _as_tensor(zps)) * _as_tensor(scales)).numpy()


def _type_cast(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    return args[Arg.SRC]


def _reshape(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    src = torch.from_numpy(np.ascontiguousarray(args[Arg.SRC]))
    return src.reshape(tuple(op.outputs[0].shape)).numpy()


def _transpose(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    src = torch.from_numpy(np.ascontiguousarray(args[Arg.SRC]))
    order = [(axis + src.ndim) % src.ndim for axis in op.attr_s64_vector("order")]
    return src.permute(*order).contiguous().numpy()


def _matmul(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    src = _as_tensor(args[Arg.SRC])
    wei = _as_tensor(args[Arg.WEIGHTS])
    if op.attr_bool("transpose_a", False):
        src = src.transpose(-1, -2)
    if op.attr_bool("transpose_b", False):
        wei = wei.transpose(-1, -2)
    dst = torch.matmul(src, wei)
    if Arg.BIAS in args:
        dst = dst + _as_tensor(args[Arg.BIAS])
    return dst.numpy()


_BINARY: Dict[str, Callable[[torch.Tensor, torch.Tensor], torch.Tensor]] = {
    "Add": torch.add,
    "Subtract": torch.sub,
    "Multiply": torch.mul,
    "Divide": torch.div,
    "Maximum": torch.maximum,
    "Minimum": torch.minimum,
}


def _binary(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    lhs = _as_tensor(args[Arg.SRC])
    rhs = _as_tensor(args[Arg.SRC_1])
    return _BINARY[op.kind](lhs, rhs).numpy()


TORCH_KERNELS: Dict[str, Kernel] = {
    "Quantize": _quantize,
    "Dequantize": _dequantize,
    "TypeCast": _type_cast,
    "StaticReshape": _reshape,
    "StaticTranspose": _transpose,
    "MatMul": _matmul,
    **{kind: _binary for kind in _BINARY},
}
