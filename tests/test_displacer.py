import numpy as np
import pytest

from displacer import (
    Arg,
    Attribute,
    ExecutionContext,
    Graph,
    InvalidArgumentsError,
    Memory,
    PartitionDataDisplacer,
    ReverseExecutionError,
    Status,
    UnboundDisplacerError,
    UnimplementedError,
    gen_quantize_filling,
)
from tests._graphs import (
    SCALE,
    ZERO_POINT,
    dequantize,
    int8_matmul_graph,
    lt,
    op,
    quantize_reference,
)


def _filled(tensor, value=7) -> Memory:
    buffer = Memory.for_tensor(tensor)
    buffer.data[...] = value
    return buffer


def test_displacement_table_for_int8_matmul():
    graph = int8_matmul_graph()
    displacer = PartitionDataDisplacer(graph, [0, 1, 2, 3])

    assert sorted(displacer.displacements) == [0, 5]
    src_entry = displacer.displacements[0]
    assert src_entry.main_op(graph).kind == "MatMul"
    assert src_entry.port == 0
    assert src_entry.boundary.data_type == "u8"
    assert displacer.displacements[5].port == 1
    assert 0 in displacer and 1 not in displacer


def test_displacement_table_is_read_only():
    displacer = PartitionDataDisplacer(int8_matmul_graph(), [0, 1, 2, 3])
    with pytest.raises(TypeError):
        displacer.displacements[9] = displacer.displacements[0]  # type: ignore[index]


def test_untracked_tensor_leaves_buffer_untouched():
    graph = int8_matmul_graph()
    displacer = PartitionDataDisplacer(graph, [0, 1, 2, 3])
    buffer = _filled(graph.tensor(1), value=3.25)
    before = buffer.data.tobytes()

    result = displacer.displace(1, buffer)

    assert result.status is Status.OK
    assert result.error is None
    assert buffer.data.tobytes() == before


def test_transpose_chain_matches_quantized_matmul_filling():
    graph = int8_matmul_graph()
    ctx = ExecutionContext(seed=11)
    displacer = PartitionDataDisplacer(graph, [0, 1, 2, 3], ctx)
    buffer = _filled(graph.tensor(0))

    result = displacer.displace(0, buffer)
    assert result.ok

    matmul = graph.op_by_id(3)
    generated = gen_quantize_filling(matmul, Arg.SRC, "u8", ctx.normalized())
    assert generated.desc.shape == (3, 2)
    expected = quantize_reference(generated.data, SCALE, ZERO_POINT, "u8").T
    np.testing.assert_array_equal(buffer.data, expected)


def test_weights_are_requantized_with_their_own_parameters():
    graph = int8_matmul_graph()
    ctx = ExecutionContext(seed=3)
    displacer = PartitionDataDisplacer(graph, [0, 1, 2, 3], ctx)
    buffer = _filled(graph.tensor(5))

    assert displacer.displace(5, buffer).ok

    generated = gen_quantize_filling(graph.op_by_id(3), Arg.WEIGHTS, "s8", ctx.normalized())
    expected = quantize_reference(generated.data, 0.25, 0, "s8")
    np.testing.assert_array_equal(buffer.data, expected)


def test_displace_is_deterministic():
    graph = int8_matmul_graph()
    displacer = PartitionDataDisplacer(graph, [0, 1, 2, 3], ExecutionContext(seed=5))
    first, second = _filled(graph.tensor(0)), _filled(graph.tensor(0), value=1)

    assert displacer.displace(0, first).status is Status.OK
    assert displacer.displace(0, second).status is Status.OK
    np.testing.assert_array_equal(first.data, second.data)


def test_reshape_and_typecast_chain_reaches_boundary():
    t0, t1 = lt(0, "u8", (2, 3)), lt(1, "f32", (2, 3))
    t2, t3 = lt(2, "bf16", (2, 3)), lt(3, "bf16", (3, 2))
    w, out = lt(4, "bf16", (2, 2)), lt(5, "bf16", (3, 2))
    graph = Graph(
        [
            dequantize(0, t0, t1),
            op(1, "TypeCast", [t1], [t2]),
            op(2, "StaticReshape", [t2], [t3]),
            op(3, "MatMul", [t3, w], [out]),
        ]
    )
    ctx = ExecutionContext(seed=2)
    displacer = PartitionDataDisplacer(graph, [0, 1, 2, 3], ctx)
    buffer = _filled(t0)

    assert displacer.displace(0, buffer).ok

    generated = gen_quantize_filling(graph.op_by_id(3), Arg.SRC, "u8", ctx.normalized())
    expected = quantize_reference(generated.data.reshape(2, 3), SCALE, ZERO_POINT, "u8")
    np.testing.assert_array_equal(buffer.data, expected)


def test_dequantize_outside_partition_copies_generated_data():
    graph = int8_matmul_graph()
    ctx = ExecutionContext(seed=8)
    # only the matmul and transpose are scheduled together
    displacer = PartitionDataDisplacer(graph, [1, 3], ctx)
    assert sorted(displacer.displacements) == [0, 5]
    buffer = _filled(graph.tensor(0))

    assert displacer.displace(0, buffer).ok

    generated = gen_quantize_filling(graph.op_by_id(3), Arg.SRC, "u8", ctx.normalized())
    # the transpose is undone, the dequantize is not part of the walk
    np.testing.assert_array_equal(buffer.data, generated.data.T)


def test_unsupported_filling_skips_without_touching_buffer():
    t0, t1 = lt(0, "s32", (2, 2)), lt(1, "f32", (2, 2))
    w, out = lt(2, "f32", (2, 2)), lt(3, "f32", (2, 2))
    graph = Graph([dequantize(0, t0, t1), op(1, "MatMul", [t1, w], [out])])
    displacer = PartitionDataDisplacer(graph, [0, 1])
    buffer = _filled(t0, value=42)
    before = buffer.data.tobytes()

    result = displacer.displace(0, buffer)

    assert result.status is Status.SKIP
    assert isinstance(result.error, UnimplementedError)
    assert buffer.data.tobytes() == before


def test_invalid_main_op_fails_without_touching_buffer():
    t0, t1 = lt(0, "u8", (2, 3)), lt(1, "f32", (2, 3))
    w, out = lt(2, "f32", (5, 4)), lt(3, "f32", (2, 4))
    graph = Graph([dequantize(0, t0, t1), op(1, "MatMul", [t1, w], [out])])
    displacer = PartitionDataDisplacer(graph, [0, 1])
    buffer = _filled(t0, value=9)
    before = buffer.data.tobytes()

    result = displacer.displace(0, buffer)

    assert result.status is Status.FAIL
    assert isinstance(result.error, InvalidArgumentsError)
    assert "reduction dims" in result.reason
    assert buffer.data.tobytes() == before


def test_mistyped_transpose_order_fails_instead_of_raising():
    t0, t1, t2 = lt(0, "u8", (2, 3)), lt(1, "f32", (2, 3)), lt(2, "f32", (3, 2))
    w, out = lt(3, "f32", (2, 4)), lt(4, "f32", (3, 4))
    graph = Graph(
        [
            dequantize(0, t0, t1),
            op(1, "StaticTranspose", [t1], [t2], order=Attribute.s64(1)),
            op(2, "MatMul", [t2, w], [out]),
        ]
    )
    displacer = PartitionDataDisplacer(graph, [0, 1, 2])
    buffer = _filled(t0)
    before = buffer.data.tobytes()

    result = displacer.displace(0, buffer)

    assert result.status is Status.FAIL
    assert isinstance(result.error, InvalidArgumentsError)
    assert result.error.op_id == 1
    assert "'order'" in result.reason
    assert buffer.data.tobytes() == before


def test_first_discovered_boundary_wins():
    t0, t1 = lt(0, "u8", (2, 2)), lt(1, "f32", (2, 2))
    w, mm_out = lt(2, "f32", (2, 2)), lt(3, "f32", (2, 2))
    other, add_out = lt(4, "f32", (2, 2)), lt(5, "f32", (2, 2))
    graph = Graph(
        [
            dequantize(0, t0, t1),
            op(1, "MatMul", [t1, w], [mm_out]),
            op(2, "Add", [other, t1], [add_out]),
        ]
    )
    ctx = ExecutionContext(seed=4)
    displacer = PartitionDataDisplacer(graph, [0, 1, 2], ctx)

    entry = displacer.displacements[0]
    assert entry.main_op(graph).id == 1
    assert entry.port == 0

    buffer = _filled(t0)
    assert displacer.displace(0, buffer).ok
    generated = gen_quantize_filling(graph.op_by_id(1), Arg.SRC, "u8", ctx.normalized())
    np.testing.assert_array_equal(
        buffer.data, quantize_reference(generated.data, SCALE, ZERO_POINT, "u8")
    )


def test_same_op_reaching_one_boundary_twice_keeps_first_port():
    t0, t1, t2 = lt(0, "s8", (4,)), lt(1, "f32", (4,)), lt(2, "f32", (4,))
    out = lt(3, "f32", (4,))
    graph = Graph(
        [
            dequantize(0, t0, t1),
            dequantize(1, t0, t2),
            op(2, "Multiply", [t1, t2], [out]),
        ]
    )
    displacer = PartitionDataDisplacer(graph, [0, 1, 2])
    assert displacer.displacements[0].port == 0


def test_unbound_displacer_fails():
    displacer = PartitionDataDisplacer()
    buffer = _filled(lt(0, "u8", (2,)))

    result = displacer.displace(0, buffer)

    assert result.status is Status.FAIL
    assert isinstance(result.error, UnboundDisplacerError)


def test_uninvertible_op_is_reported_as_fail(monkeypatch):
    # located chains only hold invertible ops, so the error has to be injected
    from displacer.core import displacer as displacer_module

    def _raise(*_args, **_kwargs):
        raise ReverseExecutionError("ReLU", op_id=9)

    monkeypatch.setattr(displacer_module, "propagate_reverse", _raise)
    graph = int8_matmul_graph()
    displacer = PartitionDataDisplacer(graph, [0, 1, 2, 3])
    buffer = _filled(graph.tensor(0))
    before = buffer.data.tobytes()

    result = displacer.displace(0, buffer)

    assert result.status is Status.FAIL
    assert isinstance(result.error, ReverseExecutionError)
    assert "ReLU" in result.reason
    assert buffer.data.tobytes() == before


def test_independent_displacers_do_not_share_tables():
    graph = int8_matmul_graph()
    full = PartitionDataDisplacer(graph, [0, 1, 2, 3])
    empty = PartitionDataDisplacer(graph, [0, 1])
    assert sorted(full.displacements) == [0, 5]
    assert dict(empty.displacements) == {}
