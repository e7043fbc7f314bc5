from __future__ import annotations

from enum import Enum, IntEnum
from typing import Dict, Tuple


class Arg(IntEnum):
    SRC = 1
    SRC_1 = 2
    DST = 17
    WEIGHTS = 33
    BIAS = 41


class Driver(str, Enum):
    CONV = "conv"
    DECONV = "deconv"
    POOL = "pool"
    MATMUL = "matmul"
    BINARY = "binary"
    REORDER = "reorder"
    CUSTOM = "custom"


MAIN_OP_KINDS = frozenset(
    {
        "Convolution",
        "ConvTranspose",
        "AvgPool",
        "MaxPool",
        "MatMul",
        "Add",
        "Divide",
        "Maximum",
        "Minimum",
        "Multiply",
        "Subtract",
    }
)

PASS_THROUGH_KINDS = frozenset(
    {"StaticTranspose", "StaticReshape", "TypeCast", "Quantize", "Dequantize"}
)

# Weight-bearing kernels have no u8 x u8 implementation.
WEIGHTED_KINDS = frozenset({"MatMul", "Convolution", "ConvTranspose"})

_KIND_TO_DRIVER: Dict[str, Driver] = {
    "Convolution": Driver.CONV,
    "ConvTranspose": Driver.DECONV,
    "AvgPool": Driver.POOL,
    "MaxPool": Driver.POOL,
    "MatMul": Driver.MATMUL,
    "Add": Driver.BINARY,
    "Divide": Driver.BINARY,
    "Maximum": Driver.BINARY,
    "Minimum": Driver.BINARY,
    "Multiply": Driver.BINARY,
    "Subtract": Driver.BINARY,
    "Quantize": Driver.REORDER,
    "Dequantize": Driver.REORDER,
    "TypeCast": Driver.REORDER,
    "StaticReshape": Driver.CUSTOM,
    "StaticTranspose": Driver.CUSTOM,
}

_DRIVER_PORTS: Dict[Driver, Tuple[Arg, ...]] = {
    Driver.CONV: (Arg.SRC, Arg.WEIGHTS, Arg.BIAS),
    Driver.DECONV: (Arg.SRC, Arg.WEIGHTS, Arg.BIAS),
    Driver.MATMUL: (Arg.SRC, Arg.WEIGHTS, Arg.BIAS),
    Driver.BINARY: (Arg.SRC, Arg.SRC_1),
    Driver.POOL: (Arg.SRC,),
    Driver.REORDER: (Arg.SRC,),
    Driver.CUSTOM: (Arg.SRC,),
}


def is_main_op(kind: str) -> bool:
    return kind in MAIN_OP_KINDS


def is_pass_through(kind: str) -> bool:
    return kind in PASS_THROUGH_KINDS


def kind_to_driver(kind: str) -> Driver:
    try:
        return _KIND_TO_DRIVER[kind]
    except KeyError as exc:
        raise KeyError(f"No driver family registered for op kind '{kind}'") from exc


def port_to_arg(kind: str, port: int) -> Arg:
    """Map an input port of a graph op to the argument its reference kernel binds."""
    ports = _DRIVER_PORTS[kind_to_driver(kind)]
    if port < 0 or port >= len(ports):
        raise IndexError(f"Op kind '{kind}' has no input port {port}")
    return ports[port]


def input_args(kind: str, count: int) -> Tuple[Arg, ...]:
    return tuple(port_to_arg(kind, port) for port in range(count))
