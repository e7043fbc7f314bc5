from __future__ import annotations

from typing import Callable, Dict, List, Sequence

from .exceptions import InvalidArgumentsError, ReverseExecutionError
from .ir import Attribute, Op


def inverse_permutation(order: Sequence[int]) -> List[int]:
    """Return ``P'`` with ``P'[(P[i] + n) % n] == i``; negative axes are allowed."""
    ndims = len(order)
    inverse = [0] * ndims
    for index, axis in enumerate(order):
        inverse[(int(axis) + ndims) % ndims] = index
    return inverse


def _swap_ports(op: Op) -> Op:
    return op.evolve(inputs=op.outputs, outputs=op.inputs)


def _invert_quantize(op: Op) -> Op:
    # same scales and zero points apply in both directions
    return _swap_ports(op).evolve(kind="Dequantize")


def _invert_dequantize(op: Op) -> Op:
    return _swap_ports(op).evolve(kind="Quantize")


def _invert_transpose(op: Op) -> Op:
    order = op.attr_s64_vector("order", None)
    if order is None:
        raise InvalidArgumentsError("StaticTranspose requires an 'order' attribute", op_id=op.id)
    return _swap_ports(op).with_attr("order", Attribute.s64_vector(inverse_permutation(order)))


_INVERTERS: Dict[str, Callable[[Op], Op]] = {
    "Quantize": _invert_quantize,
    "Dequantize": _invert_dequantize,
    "StaticTranspose": _invert_transpose,
    # shape and type are carried by the swapped logical tensors
    "StaticReshape": _swap_ports,
    "TypeCast": _swap_ports,
}

INVERTIBLE_KINDS = frozenset(_INVERTERS)


def invert_op(op: Op) -> Op:
    """Build the op undoing ``op``; the source op is left untouched."""
    inverter = _INVERTERS.get(op.kind)
    if inverter is None:
        raise ReverseExecutionError(op.kind, op_id=op.id)
    return inverter(op)
