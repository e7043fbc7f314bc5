from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _load_version

from .core.chain import DisplacementEntry, locate_displacements
from .core.displacer import DisplaceResult, PartitionDataDisplacer, Status
from .core.exceptions import (
    DisplacerError,
    GraphError,
    InvalidArgumentsError,
    ReorderError,
    ReverseExecutionError,
    UnboundDisplacerError,
    UnimplementedError,
)
from .core.filling import gen_quantize_filling
from .core.graph import Graph, load_graph
from .core.inversion import invert_op, inverse_permutation
from .core.ir import Attribute, LogicalTensor, Op
from .core.memory import Memory, MemoryDesc
from .core.op_meta import Arg, Driver, kind_to_driver, port_to_arg
from .core.propagate import propagate_reverse
from .core.reference import ExecutionContext, ReferencePrimitive

try:
    __version__ = _load_version("partition-displacer")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "PartitionDataDisplacer",
    "DisplaceResult",
    "Status",
    "DisplacementEntry",
    "locate_displacements",
    "gen_quantize_filling",
    "propagate_reverse",
    "invert_op",
    "inverse_permutation",
    "Graph",
    "load_graph",
    "Op",
    "LogicalTensor",
    "Attribute",
    "Memory",
    "MemoryDesc",
    "Arg",
    "Driver",
    "kind_to_driver",
    "port_to_arg",
    "ExecutionContext",
    "ReferencePrimitive",
    "DisplacerError",
    "GraphError",
    "InvalidArgumentsError",
    "ReorderError",
    "ReverseExecutionError",
    "UnboundDisplacerError",
    "UnimplementedError",
    "__version__",
]
