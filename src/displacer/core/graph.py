from __future__ import annotations

import heapq
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .exceptions import GraphError
from .ir import ATTR_TYPES, DATA_TYPES, Attribute, LogicalTensor, Op

logger = logging.getLogger(__name__)


class Graph:
    """Read-only arena of ops kept in chronological (topological) order.

    Ops are addressed by their index in :attr:`ops`. The arena is a tuple and
    is never reallocated after construction, so indices stay valid for the
    lifetime of the graph and may be held by any number of readers.
    """

    def __init__(self, ops: Iterable[Op]):
        ordered = _topological_order(list(ops))
        self._ops: Tuple[Op, ...] = tuple(ordered)
        self._producer: Dict[int, int] = {}
        self._index_by_id: Dict[int, int] = {}
        for index, op in enumerate(self._ops):
            if op.id in self._index_by_id:
                raise GraphError("Duplicate op id", op_id=op.id)
            self._index_by_id[op.id] = index
            for lt in op.outputs:
                if lt.id in self._producer:
                    other = self._ops[self._producer[lt.id]].id
                    raise GraphError(
                        f"Tensor is produced by both op {other} and op {op.id}",
                        tensor_id=lt.id,
                    )
                self._producer[lt.id] = index

    # Accessors -----------------------------------------------------------------

    @property
    def ops(self) -> Tuple[Op, ...]:
        return self._ops

    def __len__(self) -> int:
        return len(self._ops)

    def __iter__(self) -> Iterator[Op]:
        return iter(self._ops)

    def op_at(self, index: int) -> Op:
        return self._ops[index]

    def index_of(self, op_id: int) -> int:
        try:
            return self._index_by_id[op_id]
        except KeyError as exc:
            raise GraphError("Unknown op id", op_id=op_id) from exc

    def op_by_id(self, op_id: int) -> Op:
        return self._ops[self.index_of(op_id)]

    def producer_index(self, tensor_id: int) -> Optional[int]:
        return self._producer.get(tensor_id)

    def producer_of(self, tensor_id: int) -> Optional[Op]:
        """Return the op writing ``tensor_id`` or ``None`` for a graph input."""
        index = self._producer.get(tensor_id)
        return None if index is None else self._ops[index]

    def tensors(self) -> Dict[int, LogicalTensor]:
        seen: Dict[int, LogicalTensor] = {}
        for op in self._ops:
            for lt in (*op.inputs, *op.outputs):
                seen.setdefault(lt.id, lt)
        return seen

    def tensor(self, tensor_id: int) -> LogicalTensor:
        found = self.tensors().get(tensor_id)
        if found is None:
            raise GraphError("Unknown tensor id", tensor_id=tensor_id)
        return found

    def input_tensors(self, partition_ids: Iterable[int]) -> List[LogicalTensor]:
        """Tensors a partition consumes but does not produce, in first-use order."""
        members = frozenset(partition_ids)
        result: Dict[int, LogicalTensor] = {}
        for op in self._ops:
            if op.id not in members:
                continue
            for lt in op.inputs:
                producer = self.producer_of(lt.id)
                if producer is None or producer.id not in members:
                    result.setdefault(lt.id, lt)
        return list(result.values())

    # Deserialization -----------------------------------------------------------

    @classmethod
    def from_mapping(cls, document: Mapping[str, Any]) -> "Graph":
        records = document.get("graph")
        if not isinstance(records, list):
            raise GraphError("Graph document requires a 'graph' list of ops")
        ops = [_op_from_mapping(record) for record in records]
        logger.debug("Deserialized %d ops", len(ops))
        return cls(ops)

    @classmethod
    def from_json(cls, text: str) -> "Graph":
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise GraphError(f"Malformed graph JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise GraphError("Graph JSON must be an object")
        return cls.from_mapping(document)


def load_graph(path: Union[str, Path]) -> Graph:
    path = Path(path)
    return Graph.from_json(path.read_text(encoding="utf-8"))


def _topological_order(ops: Sequence[Op]) -> List[Op]:
    producers: Dict[int, int] = {}
    for index, op in enumerate(ops):
        for lt in op.outputs:
            producers.setdefault(lt.id, index)
    pending = [0] * len(ops)
    consumers: Dict[int, List[int]] = {index: [] for index in range(len(ops))}
    for index, op in enumerate(ops):
        parents = {producers[lt.id] for lt in op.inputs if lt.id in producers}
        parents.discard(index)
        pending[index] = len(parents)
        for parent in parents:
            consumers[parent].append(index)

    # smallest original index first, so already sorted input is kept as is
    ready = [index for index in range(len(ops)) if pending[index] == 0]
    heapq.heapify(ready)
    ordered: List[Op] = []
    while ready:
        index = heapq.heappop(ready)
        ordered.append(ops[index])
        for child in consumers[index]:
            pending[child] -= 1
            if pending[child] == 0:
                heapq.heappush(ready, child)
    if len(ordered) != len(ops):
        stuck = [ops[index].id for index in range(len(ops)) if pending[index] > 0]
        raise GraphError(f"Graph contains a cycle through ops {stuck}")
    return ordered


def _tensor_from_mapping(record: Mapping[str, Any]) -> LogicalTensor:
    try:
        tensor_id = int(record["id"])
        data_type = str(record["dtype"])
    except (KeyError, TypeError, ValueError) as exc:
        raise GraphError(f"Logical tensor record is missing 'id' or 'dtype': {record}") from exc
    if data_type not in DATA_TYPES:
        raise GraphError(f"Unsupported data type '{data_type}'", tensor_id=tensor_id)
    try:
        shape = tuple(int(dim) for dim in record.get("shape", ()))
        stride = tuple(int(dim) for dim in record.get("stride", ()))
    except (TypeError, ValueError) as exc:
        raise GraphError(f"Malformed shape or stride: {exc}", tensor_id=tensor_id) from exc
    return LogicalTensor(
        id=tensor_id,
        data_type=data_type,
        shape=shape,
        stride=stride,
        layout_type=str(record.get("layout_type", "strided")),
        property_type=str(record.get("property_type", "undef")),
    )


def _attr_from_mapping(name: str, record: Mapping[str, Any], op_id: int) -> Attribute:
    attr_type = record.get("type") if isinstance(record, Mapping) else None
    if attr_type not in ATTR_TYPES:
        raise GraphError(f"Attribute '{name}' has unsupported type '{attr_type}'", op_id=op_id)
    if "value" not in record:
        raise GraphError(f"Attribute '{name}' has no value", op_id=op_id)
    value = record["value"]
    try:
        if attr_type == "s64":
            return Attribute.s64(value)
        if attr_type == "s64[]":
            return Attribute.s64_vector(value or ())
        if attr_type == "f32":
            return Attribute.f32(value)
        if attr_type == "f32[]":
            return Attribute.f32_vector(value or ())
    except (TypeError, ValueError) as exc:
        raise GraphError(
            f"Attribute '{name}' value {value!r} is not a valid '{attr_type}'", op_id=op_id
        ) from exc
    if attr_type == "bool":
        return Attribute.boolean(value)
    return Attribute.string(value)


def _op_from_mapping(record: Mapping[str, Any]) -> Op:
    try:
        op_id = int(record["id"])
        kind = str(record["kind"])
    except (KeyError, TypeError, ValueError) as exc:
        raise GraphError(f"Op record is missing 'id' or 'kind': {record}") from exc
    raw_attrs = record.get("attrs") or {}
    if not isinstance(raw_attrs, Mapping):
        raise GraphError("Op 'attrs' must be an object", op_id=op_id)
    attrs = {
        str(name): _attr_from_mapping(str(name), value, op_id)
        for name, value in raw_attrs.items()
    }
    return Op(
        id=op_id,
        kind=kind,
        name=str(record.get("name", "")),
        inputs=tuple(_tensor_from_mapping(lt) for lt in record.get("inputs", ())),
        outputs=tuple(_tensor_from_mapping(lt) for lt in record.get("outputs", ())),
        attrs=attrs,
    )
