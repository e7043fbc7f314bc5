from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from .exceptions import InvalidArgumentsError, ReorderError, UnimplementedError
from .ir import DATA_TYPES, LogicalTensor, Op
from .memory import Memory, MemoryDesc, convert, is_integer_type
from .op_meta import Arg, Driver, input_args, kind_to_driver

logger = logging.getLogger(__name__)

_FLOAT_TYPES = frozenset({"f32", "bf16", "f16"})
_INT8_TYPES = frozenset({"s8", "u8"})
_COMPUTE_DRIVERS = frozenset(
    {Driver.CONV, Driver.DECONV, Driver.MATMUL, Driver.POOL, Driver.BINARY}
)
_WEIGHTED_DRIVERS = frozenset({Driver.CONV, Driver.DECONV, Driver.MATMUL})

_ARITY: Dict[Driver, Tuple[int, int]] = {
    Driver.CONV: (2, 3),
    Driver.DECONV: (2, 3),
    Driver.MATMUL: (2, 3),
    Driver.BINARY: (2, 2),
    Driver.POOL: (1, 1),
    Driver.REORDER: (1, 1),
    Driver.CUSTOM: (1, 1),
}


@dataclass
class ExecutionContext:
    """
    Explicit execution context for reference primitives.

    * ``engine`` selects the device the reference kernels run on; only ``"cpu"``
      is available.
    * ``backend`` picks the kernel implementation: ``"numpy"`` (default) or
      ``"torch"`` for the layout/quantization kernels.
    * ``seed`` makes reference input filling reproducible across runs.
    """

    engine: str = "cpu"
    backend: str = "numpy"
    seed: int = 0

    def normalized(self) -> "ExecutionContext":
        engine = (self.engine or "cpu").lower()
        if engine != "cpu":
            raise ValueError(f"Reference execution only supports the CPU engine; received '{self.engine}'")
        backend = (self.backend or "numpy").lower()
        if backend not in {"numpy", "torch"}:
            raise ValueError(f"Unsupported reference backend: {self.backend}")
        seed = int(self.seed)
        if seed < 0:
            raise ValueError("seed must be non-negative")
        return replace(self, engine=engine, backend=backend, seed=seed)


Kernel = Callable[[Op, Dict[Arg, np.ndarray]], np.ndarray]


class ReferencePrimitive:
    """Reference execution of a single graph op on host memory."""

    def __init__(self, op: Op):
        self.op = op
        self.driver: Optional[Driver] = None
        self.ctx: Optional[ExecutionContext] = None
        self._args: Dict[Arg, Memory] = {}

    # Construction --------------------------------------------------------------

    def construct(self, ctx: ExecutionContext) -> "ReferencePrimitive":
        """Validate the op for the reference engine.

        Raises :class:`InvalidArgumentsError` when the op description itself is
        malformed and :class:`UnimplementedError` when it is well formed but the
        reference engine has no kernel for the kind or data-type combination.
        """
        self.ctx = ctx.normalized()
        op = self.op
        try:
            self.driver = kind_to_driver(op.kind)
        except KeyError as exc:
            raise UnimplementedError(f"No reference kernel for op kind '{op.kind}'", op_id=op.id) from exc
        _check_arity(op, self.driver)
        for lt in (*op.inputs, *op.outputs):
            if lt.data_type not in DATA_TYPES:
                raise InvalidArgumentsError(
                    f"Tensor {lt.id} has unknown data type '{lt.data_type}'", op_id=op.id
                )
        _check_data_types(op, self.driver)
        _check_shapes(op)
        logger.debug("Constructed reference %s for op %d", op.kind, op.id)
        return self

    def _require_constructed(self) -> None:
        if self.ctx is None:
            raise RuntimeError(f"Reference primitive for op {self.op.id} was not constructed")

    # Memory --------------------------------------------------------------------

    def bind_reference_memory(self) -> None:
        """Allocate every argument; inputs receive deterministic reference data."""
        self._require_constructed()
        args = input_args(self.op.kind, len(self.op.inputs))
        for arg, lt in zip(args, self.op.inputs):
            self._args[arg] = _fill_reference(lt, arg, self.op.id, self.ctx.seed)
        self._args[Arg.DST] = Memory.for_tensor(self.op.outputs[0])

    def arg(self, arg: Arg) -> Memory:
        try:
            return self._args[arg]
        except KeyError as exc:
            raise KeyError(f"Op {self.op.id} ({self.op.kind}) has no bound argument {arg.name}") from exc

    def replace_arg(self, arg: Arg, memory: Memory) -> None:
        current = self.arg(arg)
        if current.desc != memory.desc:
            raise ReorderError(
                f"Argument {arg.name} expects {current.desc}, received {memory.desc}"
            )
        self._args[arg] = memory

    # Execution -----------------------------------------------------------------

    def execute(self) -> Memory:
        self._require_constructed()
        kernels = _kernels_for(self.ctx.backend)
        kernel = kernels.get(self.op.kind)
        if kernel is None:
            raise UnimplementedError(
                f"Reference backend '{self.ctx.backend}' cannot execute '{self.op.kind}'",
                op_id=self.op.id,
            )
        values = {arg: memory.data for arg, memory in self._args.items() if arg != Arg.DST}
        result = kernel(self.op, values)
        dst = self._args[Arg.DST]
        if result.size != dst.nelems:
            raise ReorderError(
                f"Kernel for op {self.op.id} produced {result.size} elements, expected {dst.nelems}"
            )
        np.copyto(
            dst.data,
            convert(result, dst.desc.data_type).reshape(dst.desc.shape),
            casting="unsafe",
        )
        return dst


# Validation ------------------------------------------------------------------


def _check_arity(op: Op, driver: Driver) -> None:
    low, high = _ARITY[driver]
    if not low <= len(op.inputs) <= high:
        raise InvalidArgumentsError(
            f"{op.kind} expects {low}..{high} inputs, received {len(op.inputs)}", op_id=op.id
        )
    if len(op.outputs) != 1:
        raise InvalidArgumentsError(
            f"{op.kind} expects exactly one output, received {len(op.outputs)}", op_id=op.id
        )


def _check_data_types(op: Op, driver: Driver) -> None:
    src = op.inputs[0].data_type
    dst = op.outputs[0].data_type
    if driver in _COMPUTE_DRIVERS and src not in _FLOAT_TYPES | _INT8_TYPES:
        raise UnimplementedError(f"{op.kind} has no kernel for {src} source", op_id=op.id)
    if driver in _WEIGHTED_DRIVERS:
        wei = op.inputs[1].data_type
        if src in _INT8_TYPES and wei != "s8":
            raise UnimplementedError(f"{op.kind} has no kernel for {src}:{wei}", op_id=op.id)
        if src in _FLOAT_TYPES and wei != src:
            raise UnimplementedError(f"{op.kind} has no kernel for {src}:{wei}", op_id=op.id)
    elif driver == Driver.POOL:
        if src in _INT8_TYPES and dst != src:
            raise UnimplementedError(f"{op.kind} has no kernel for {src}:{dst}", op_id=op.id)
    elif driver == Driver.BINARY:
        if src in _INT8_TYPES and dst in {"bf16", "f16"}:
            raise UnimplementedError(f"{op.kind} has no kernel for {src}:{dst}", op_id=op.id)
    elif op.kind == "Quantize":
        if src not in _FLOAT_TYPES or dst not in _INT8_TYPES:
            raise InvalidArgumentsError(f"Quantize cannot map {src} to {dst}", op_id=op.id)
    elif op.kind == "Dequantize":
        if src not in _INT8_TYPES | {"s32"} or dst not in _FLOAT_TYPES:
            raise InvalidArgumentsError(f"Dequantize cannot map {src} to {dst}", op_id=op.id)


def _check_shapes(op: Op) -> None:
    src = op.inputs[0]
    dst = op.outputs[0]
    if op.kind == "StaticReshape" or op.kind == "TypeCast":
        if src.nelems != dst.nelems:
            raise InvalidArgumentsError(
                f"{op.kind} cannot map shape {src.shape} to {dst.shape}", op_id=op.id
            )
    elif op.kind == "StaticTranspose":
        order = op.attr_s64_vector("order", None)
        if order is None:
            raise InvalidArgumentsError("StaticTranspose requires an 'order' attribute", op_id=op.id)
        in_range = all(-src.ndims <= axis < src.ndims for axis in order)
        normalized = sorted((axis + src.ndims) % src.ndims for axis in order) if in_range else []
        if len(order) != src.ndims or not in_range or normalized != list(range(src.ndims)):
            raise InvalidArgumentsError(
                f"Order {order} is not a permutation of {src.ndims} axes", op_id=op.id
            )
    elif op.kind in {"Quantize", "Dequantize"}:
        _quantization_params(op)
    elif op.kind == "MatMul":
        _matmul_dims(op)
    elif kind_to_driver(op.kind) == Driver.BINARY:
        try:
            np.broadcast_shapes(tuple(op.inputs[0].shape), tuple(op.inputs[1].shape))
        except ValueError as exc:
            raise InvalidArgumentsError(
                f"{op.kind} inputs {op.inputs[0].shape} and {op.inputs[1].shape} do not broadcast",
                op_id=op.id,
            ) from exc


def _matmul_dims(op: Op) -> Tuple[int, int]:
    src, wei = op.inputs[0].shape, op.inputs[1].shape
    if len(src) < 2 or len(wei) < 2:
        raise InvalidArgumentsError("MatMul inputs need at least two dimensions", op_id=op.id)
    k_src = src[-2] if op.attr_bool("transpose_a", False) else src[-1]
    k_wei = wei[-1] if op.attr_bool("transpose_b", False) else wei[-2]
    if k_src != k_wei:
        raise InvalidArgumentsError(
            f"MatMul reduction dims differ: {k_src} vs {k_wei}", op_id=op.id
        )
    return k_src, k_wei


def _quantization_params(op: Op) -> Tuple[np.ndarray, np.ndarray, int]:
    """Return scales, zero points and the channel axis (-1 for per-tensor)."""
    scales = op.attr_f32_vector("scales", None)
    if not scales:
        raise InvalidArgumentsError(f"{op.kind} requires non-empty 'scales'", op_id=op.id)
    zps = op.attr_s64_vector("zps", None) or [0] * len(scales)
    if len(zps) != len(scales):
        raise InvalidArgumentsError(
            f"{op.kind} has {len(scales)} scales but {len(zps)} zero points", op_id=op.id
        )
    qtype = op.attr_str("qtype", "per_tensor")
    ndims = op.inputs[0].ndims
    if qtype == "per_tensor":
        if len(scales) != 1:
            raise InvalidArgumentsError("Per-tensor quantization takes one scale", op_id=op.id)
        return np.asarray(scales, np.float64), np.asarray(zps, np.float64), -1
    if qtype != "per_channel":
        raise InvalidArgumentsError(f"Unknown qtype '{qtype}'", op_id=op.id)
    axis = op.attr_s64("axis", 1)
    if ndims == 0 or not -ndims <= axis < ndims:
        raise InvalidArgumentsError(f"Axis {axis} out of range for {ndims} dims", op_id=op.id)
    axis = (axis + ndims) % ndims
    if op.inputs[0].shape[axis] != len(scales):
        raise InvalidArgumentsError(
            f"Expected {op.inputs[0].shape[axis]} scales along axis {axis}, got {len(scales)}",
            op_id=op.id,
        )
    return np.asarray(scales, np.float64), np.asarray(zps, np.float64), axis


def channel_params(op: Op, ndims: int) -> Tuple[np.ndarray, np.ndarray]:
    scales, zps, axis = _quantization_params(op)
    if axis < 0:
        return scales.reshape(()), zps.reshape(())
    shape = [1] * ndims
    shape[axis] = scales.size
    return scales.reshape(shape), zps.reshape(shape)


# Reference filling -----------------------------------------------------------

_RANGES: Dict[Tuple[str, str], Tuple[int, int]] = {
    ("s8", "src"): (-6, 6),
    ("u8", "src"): (0, 12),
    ("s8", "wei"): (-2, 2),
    ("u8", "wei"): (0, 4),
    ("s32", "src"): (-32, 32),
    ("float", "src"): (-8, 8),
    ("float", "wei"): (-2, 2),
}


def _fill_reference(lt: LogicalTensor, arg: Arg, op_id: int, seed: int) -> Memory:
    desc = MemoryDesc.from_tensor(lt)
    rng = np.random.default_rng([seed, abs(int(op_id)), int(arg)])
    if lt.data_type == "boolean":
        return Memory(desc, rng.integers(0, 2, size=desc.shape).astype(np.bool_))
    role = "wei" if arg in {Arg.WEIGHTS, Arg.BIAS} else "src"
    family = lt.data_type if is_integer_type(lt.data_type) else "float"
    low, high = _RANGES.get((family, role), _RANGES[(family, "src")])
    # Small integers keep reference results exact in every data type.
    values = rng.integers(low, high + 1, size=desc.shape)
    return Memory(desc, convert(values, lt.data_type))


# NumPy kernels ---------------------------------------------------------------


def _quantize(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    src = args[Arg.SRC].astype(np.float64)
    scales, zps = channel_params(op, src.ndim)
    return np.rint(src / scales + zps)


def _dequantize(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    src = args[Arg.SRC].astype(np.float64)
    scales, zps = channel_params(op, src.ndim)
    return (src - zps) * scales


def _type_cast(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    return args[Arg.SRC]


def _reshape(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    return args[Arg.SRC].reshape(op.outputs[0].shape)


def _transpose(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    src = args[Arg.SRC]
    order = [(axis + src.ndim) % src.ndim for axis in op.attr_s64_vector("order")]
    return np.transpose(src, order)


def _matmul(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    src = args[Arg.SRC].astype(np.float64)
    wei = args[Arg.WEIGHTS].astype(np.float64)
    if op.attr_bool("transpose_a", False):
        src = np.swapaxes(src, -1, -2)
    if op.attr_bool("transpose_b", False):
        wei = np.swapaxes(wei, -1, -2)
    dst = np.matmul(src, wei)
    if Arg.BIAS in args:
        dst = dst + args[Arg.BIAS].astype(np.float64)
    return dst


_BINARY: Dict[str, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    "Add": np.add,
    "Subtract": np.subtract,
    "Multiply": np.multiply,
    "Divide": np.divide,
    "Maximum": np.maximum,
    "Minimum": np.minimum,
}


def _binary(op: Op, args: Dict[Arg, np.ndarray]) -> np.ndarray:
    lhs = args[Arg.SRC].astype(np.float64)
    rhs = args[Arg.SRC_1].astype(np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        return _BINARY[op.kind](lhs, rhs)


NUMPY_KERNELS: Dict[str, Kernel] = {
    "Quantize": _quantize,
    "Dequantize": _dequantize,
    "TypeCast": _type_cast,
    "StaticReshape": _reshape,
    "StaticTranspose": _transpose,
    "MatMul": _matmul,
    **{kind: _binary for kind in _BINARY},
}


def _kernels_for(backend: str) -> Dict[str, Kernel]:
    if backend == "torch":
        from ..torch_backend.kernels import TORCH_KERNELS

        return TORCH_KERNELS
    return NUMPY_KERNELS


def supported_kinds(backend: str = "numpy") -> Sequence[str]:
    return sorted(_kernels_for(backend))
