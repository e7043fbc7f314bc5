from __future__ import annotations

import logging
from typing import AbstractSet, Tuple

from .graph import Graph
from .inversion import invert_op
from .ir import LogicalTensor
from .memory import Memory
from .op_meta import Arg
from .reference import ExecutionContext, ReferencePrimitive

logger = logging.getLogger(__name__)


def propagate_reverse(
    graph: Graph,
    partition_ids: AbstractSet[int],
    tensor: LogicalTensor,
    memory: Memory,
    ctx: ExecutionContext,
) -> Tuple[LogicalTensor, Memory]:
    """Undo the partition ops between ``tensor`` and the partition boundary.

    ``memory`` holds data for ``tensor``. Each in-partition producer is
    inverted and executed on the reference engine until the producer lookup
    leaves the partition; the returned tensor and memory then describe the
    displaced partition input.
    """
    current_lt, current = tensor, memory
    while True:
        producer = graph.producer_of(current_lt.id)
        if producer is None or producer.id not in partition_ids:
            return current_lt, current
        inverted = invert_op(producer)
        prim = ReferencePrimitive(inverted).construct(ctx)
        prim.bind_reference_memory()
        # stage the data in the descriptor the inverted op expects
        staged = Memory(prim.arg(Arg.SRC).desc)
        staged.reorder_from(current.clone_descriptor(staged.desc))
        prim.replace_arg(Arg.SRC, staged)
        current = prim.execute()
        logger.debug(
            "Reversed op %d (%s) as %s: tensor %d -> %d",
            producer.id,
            producer.kind,
            inverted.kind,
            current_lt.id,
            inverted.outputs[0].id,
        )
        current_lt = inverted.outputs[0]
