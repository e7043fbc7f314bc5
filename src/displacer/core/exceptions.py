from __future__ import annotations

from typing import Optional


class DisplacerError(Exception):
    """Base class for displacer-specific exceptions."""


class GraphError(DisplacerError, ValueError):
    def __init__(
        self,
        message: str,
        *,
        op_id: Optional[int] = None,
        tensor_id: Optional[int] = None,
    ):
        detail = _format_location(op_id, tensor_id)
        super().__init__(f"{message}{detail}")
        self.op_id = op_id
        self.tensor_id = tensor_id


class InvalidArgumentsError(DisplacerError, ValueError):
    def __init__(self, message: str, *, op_id: Optional[int] = None):
        super().__init__(f"{message}{_format_location(op_id, None)}")
        self.op_id = op_id


class UnimplementedError(DisplacerError, NotImplementedError):
    def __init__(self, message: str, *, op_id: Optional[int] = None):
        super().__init__(f"{message}{_format_location(op_id, None)}")
        self.op_id = op_id


class ReverseExecutionError(DisplacerError, RuntimeError):
    def __init__(self, kind: str, *, op_id: Optional[int] = None):
        super().__init__(
            f"Reverse execution is not defined for op kind '{kind}'"
            f"{_format_location(op_id, None)}"
        )
        self.kind = kind
        self.op_id = op_id


class UnboundDisplacerError(DisplacerError, RuntimeError):
    pass


class ReorderError(DisplacerError, ValueError):
    pass


def _format_location(op_id: Optional[int], tensor_id: Optional[int]) -> str:
    if op_id is None and tensor_id is None:
        return ""
    location = []
    if op_id is not None:
        location.append(f"op {op_id}")
    if tensor_id is not None:
        location.append(f"tensor {tensor_id}")
    return f" ({', '.join(location)})"
