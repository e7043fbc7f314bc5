from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .exceptions import InvalidArgumentsError

DATA_TYPES = ("f32", "bf16", "f16", "s32", "s8", "u8", "boolean")
ATTR_TYPES = ("s64", "s64[]", "f32", "f32[]", "string", "bool")

_MISSING = object()


@dataclass(frozen=True)
class LogicalTensor:
    id: int
    data_type: str
    shape: Tuple[int, ...] = ()
    stride: Tuple[int, ...] = ()
    layout_type: str = "strided"
    property_type: str = "undef"

    def with_data_type(self, data_type: str) -> "LogicalTensor":
        return replace(self, data_type=data_type)

    @property
    def ndims(self) -> int:
        return len(self.shape)

    @property
    def nelems(self) -> int:
        count = 1
        for dim in self.shape:
            count *= int(dim)
        return count


@dataclass(frozen=True)
class Attribute:
    type: str
    value: Any

    @classmethod
    def s64(cls, value: int) -> "Attribute":
        return cls("s64", int(value))

    @classmethod
    def s64_vector(cls, values: Sequence[int]) -> "Attribute":
        return cls("s64[]", tuple(int(v) for v in values))

    @classmethod
    def f32(cls, value: float) -> "Attribute":
        return cls("f32", float(value))

    @classmethod
    def f32_vector(cls, values: Sequence[float]) -> "Attribute":
        return cls("f32[]", tuple(float(v) for v in values))

    @classmethod
    def string(cls, value: str) -> "Attribute":
        return cls("string", str(value))

    @classmethod
    def boolean(cls, value: bool) -> "Attribute":
        return cls("bool", bool(value))


@dataclass(frozen=True)
class Op:
    id: int
    kind: str
    inputs: Tuple[LogicalTensor, ...] = ()
    outputs: Tuple[LogicalTensor, ...] = ()
    attrs: Mapping[str, Attribute] = field(default_factory=dict)
    name: str = ""

    def evolve(self, **changes: Any) -> "Op":
        """Return a copy with ``changes`` applied; tuples and attrs are re-wrapped."""
        if "inputs" in changes:
            changes["inputs"] = tuple(changes["inputs"])
        if "outputs" in changes:
            changes["outputs"] = tuple(changes["outputs"])
        if "attrs" in changes:
            changes["attrs"] = dict(changes["attrs"])
        return replace(self, **changes)

    def with_input_type(self, port: int, data_type: str) -> "Op":
        inputs = list(self.inputs)
        inputs[port] = inputs[port].with_data_type(data_type)
        return self.evolve(inputs=inputs)

    def with_output_type(self, port: int, data_type: str) -> "Op":
        outputs = list(self.outputs)
        outputs[port] = outputs[port].with_data_type(data_type)
        return self.evolve(outputs=outputs)

    def with_attr(self, name: str, attr: Attribute) -> "Op":
        attrs = dict(self.attrs)
        attrs[name] = attr
        return self.evolve(attrs=attrs)

    def has_attr(self, name: str) -> bool:
        return name in self.attrs

    # Typed attribute reads -----------------------------------------------------

    def _attr(self, name: str, expected: str, default: Any) -> Any:
        attr = self.attrs.get(name)
        if attr is None:
            if default is _MISSING:
                raise InvalidArgumentsError(
                    f"{self.kind} has no attribute '{name}'", op_id=self.id
                )
            return default
        if attr.type != expected:
            raise InvalidArgumentsError(
                f"Attribute '{name}' of {self.kind} is '{attr.type}', expected '{expected}'",
                op_id=self.id,
            )
        return attr.value

    def attr_s64(self, name: str, default: Any = _MISSING) -> Optional[int]:
        return self._attr(name, "s64", default)

    def attr_s64_vector(self, name: str, default: Any = _MISSING) -> Optional[List[int]]:
        value = self._attr(name, "s64[]", default)
        return None if value is None else list(value)

    def attr_f32(self, name: str, default: Any = _MISSING) -> Optional[float]:
        return self._attr(name, "f32", default)

    def attr_f32_vector(self, name: str, default: Any = _MISSING) -> Optional[List[float]]:
        value = self._attr(name, "f32[]", default)
        return None if value is None else list(value)

    def attr_str(self, name: str, default: Any = _MISSING) -> Optional[str]:
        return self._attr(name, "string", default)

    def attr_bool(self, name: str, default: Any = _MISSING) -> Optional[bool]:
        return self._attr(name, "bool", default)

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "inputs": [(lt.id, lt.data_type) for lt in self.inputs],
            "outputs": [(lt.id, lt.data_type) for lt in self.outputs],
        }
