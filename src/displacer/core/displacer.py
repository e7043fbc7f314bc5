from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .chain import DisplacementEntry, locate_displacements
from .exceptions import (
    DisplacerError,
    ReverseExecutionError,
    UnboundDisplacerError,
    UnimplementedError,
)
from .filling import gen_quantize_filling
from .graph import Graph
from .memory import Memory
from .op_meta import port_to_arg
from .propagate import propagate_reverse
from .reference import ExecutionContext

logger = logging.getLogger(__name__)


class Status(str, Enum):
    OK = "OK"
    SKIP = "SKIP"
    FAIL = "FAIL"


@dataclass(frozen=True)
class DisplaceResult:
    status: Status
    error: Optional[DisplacerError] = None

    @property
    def ok(self) -> bool:
        return self.status is Status.OK

    @property
    def reason(self) -> Optional[str]:
        return None if self.error is None else str(self.error)


_OK = DisplaceResult(Status.OK)


class PartitionDataDisplacer:
    """Replace partition input data with quantization-friendly values.

    The displacement table is computed once from ``graph`` and
    ``partition_ids`` and never changes afterwards. ``graph`` is only
    referenced and must stay alive (and unmodified) as long as the displacer.
    A displacer built without a graph is unbound and fails every request.
    """

    def __init__(
        self,
        graph: Optional[Graph] = None,
        partition_ids: Iterable[int] = (),
        ctx: Optional[ExecutionContext] = None,
    ):
        self._graph = graph
        self._partition_ids = frozenset(int(op_id) for op_id in partition_ids)
        self._ctx = (ctx or ExecutionContext()).normalized()
        table = {} if graph is None else locate_displacements(graph, self._partition_ids)
        self._table: Mapping[int, DisplacementEntry] = MappingProxyType(table)

    @property
    def displacements(self) -> Mapping[int, DisplacementEntry]:
        return self._table

    @property
    def partition_ids(self) -> frozenset:
        return self._partition_ids

    def __contains__(self, tensor_id: object) -> bool:
        return tensor_id in self._table

    def displace(self, tensor_id: int, buffer: Memory) -> DisplaceResult:
        """Overwrite ``buffer`` with displaced data for ``tensor_id`` when needed.

        Tensors outside the displacement table are left untouched and report
        OK. A skip from the reference engine leaves ``buffer`` untouched too.
        """
        if self._graph is None:
            error = UnboundDisplacerError("Displacer is not bound to a graph")
            logger.warning("%s", error)
            return DisplaceResult(Status.FAIL, error)
        entry = self._table.get(tensor_id)
        if entry is None:
            return _OK
        try:
            self._displace(entry, buffer)
        except UnimplementedError as exc:
            logger.info("Skipping displacement of tensor %d: %s", tensor_id, exc)
            return DisplaceResult(Status.SKIP, exc)
        except ReverseExecutionError as exc:
            logger.error("Reverse propagation for tensor %d hit an uninvertible op: %s", tensor_id, exc)
            return DisplaceResult(Status.FAIL, exc)
        except DisplacerError as exc:
            logger.warning("Displacement of tensor %d failed: %s", tensor_id, exc)
            return DisplaceResult(Status.FAIL, exc)
        return _OK

    def _displace(self, entry: DisplacementEntry, buffer: Memory) -> None:
        main_op = entry.main_op(self._graph)
        arg = port_to_arg(main_op.kind, entry.port)
        generated = gen_quantize_filling(main_op, arg, entry.boundary.data_type, self._ctx)
        final_lt, final = propagate_reverse(
            self._graph,
            self._partition_ids,
            main_op.inputs[entry.port],
            generated,
            self._ctx,
        )
        logger.debug(
            "Displacing tensor %d with data reversed to tensor %d",
            entry.boundary.id,
            final_lt.id,
        )
        buffer.reorder_from(final.clone_descriptor(buffer.desc))
