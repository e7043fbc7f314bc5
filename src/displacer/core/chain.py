from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AbstractSet, Dict, Optional

from .graph import Graph
from .ir import LogicalTensor, Op
from .op_meta import is_main_op, is_pass_through

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisplacementEntry:
    main_op_index: int
    port: int
    boundary: LogicalTensor

    def main_op(self, graph: Graph) -> Op:
        return graph.op_at(self.main_op_index)


def locate_displacements(
    graph: Graph, partition_ids: AbstractSet[int]
) -> Dict[int, DisplacementEntry]:
    """Find the partition inputs that need quantization-aware filling.

    The pattern searched for, walking up from every input of a main op::

        boundary tensor      <- produced outside the partition, or a graph input
        |
        Dequantize           <- first one met on the way up
        |
        [pass-through op]*
        |
        main op

    Entries are keyed by boundary tensor id; when several branches reach the
    same boundary tensor the chronologically first discovery is kept.
    """
    table: Dict[int, DisplacementEntry] = {}
    for index, op in enumerate(graph.ops):
        if op.id not in partition_ids or not is_main_op(op.kind):
            continue
        for port in range(len(op.inputs)):
            entry = _walk_branch(graph, partition_ids, index, port)
            if entry is None:
                continue
            kept = table.setdefault(entry.boundary.id, entry)
            if kept is not entry:
                logger.debug(
                    "Boundary tensor %d already claimed by op %d port %d; dropping op %d port %d",
                    entry.boundary.id,
                    graph.op_at(kept.main_op_index).id,
                    kept.port,
                    op.id,
                    port,
                )
    logger.debug("Located %d displaced tensors: %s", len(table), sorted(table))
    return table


def _walk_branch(
    graph: Graph, partition_ids: AbstractSet[int], main_index: int, port: int
) -> Optional[DisplacementEntry]:
    lt = graph.op_at(main_index).inputs[port]
    while True:
        parent = graph.producer_of(lt.id)
        if parent is None:
            return None
        if parent.kind == "Dequantize":
            # accepted only without a predecessor inside the partition
            dq_input = parent.inputs[0]
            before = graph.producer_of(dq_input.id)
            if before is None or before.id not in partition_ids:
                return DisplacementEntry(main_index, port, dq_input)
            return None
        if not is_pass_through(parent.kind):
            return None
        lt = parent.inputs[0]
