import numpy as np
import pytest

from displacer import Memory, MemoryDesc, ReorderError
from displacer.core.memory import convert, round_to_bf16


def test_convert_rounds_half_to_even_and_saturates():
    values = np.array([1.5, 2.5, -0.5, 300.0, -300.0], dtype=np.float32)
    np.testing.assert_array_equal(convert(values, "s8"), [2, 2, 0, 127, -128])
    np.testing.assert_array_equal(convert(values, "u8"), [2, 2, 0, 255, 0])


def test_convert_integers_saturate_without_wrapping():
    values = np.array([-1, 256, 70000], dtype=np.int64)
    np.testing.assert_array_equal(convert(values, "u8"), [0, 255, 255])


def test_bf16_rounding_ties_to_even():
    values = np.array([1.0 + 2.0**-8, 1.0 + 3 * 2.0**-8, 3.0], dtype=np.float32)
    np.testing.assert_array_equal(round_to_bf16(values), [1.0, 1.015625, 3.0])


def test_reorder_converts_type_and_shape_in_place():
    dst = Memory(MemoryDesc("u8", (2, 2)))
    backing = dst.data
    src = Memory(MemoryDesc("f32", (4,)), np.array([0.4, 1.6, 254.5, 300.0], dtype=np.float32))

    dst.reorder_from(src)

    assert dst.data is backing
    np.testing.assert_array_equal(dst.data, [[0, 2], [254, 255]])


def test_reorder_rejects_element_count_change():
    dst = Memory(MemoryDesc("f32", (3,)))
    with pytest.raises(ReorderError):
        dst.reorder_from(Memory(MemoryDesc("f32", (4,))))


def test_clone_descriptor_keeps_type_and_data():
    src = Memory(MemoryDesc("s8", (2, 3)), np.arange(6, dtype=np.int8).reshape(2, 3))
    view = src.clone_descriptor(MemoryDesc("f32", (3, 2)))
    assert view.desc == MemoryDesc("s8", (3, 2))
    np.testing.assert_array_equal(view.data.ravel(), np.arange(6))


def test_memory_rejects_mismatched_backing_array():
    with pytest.raises(ReorderError, match="cannot back"):
        Memory(MemoryDesc("u8", (2,)), np.zeros(2, dtype=np.int8))
    with pytest.raises(ReorderError, match="cannot back"):
        Memory(MemoryDesc("u8", (3,)), np.zeros(2, dtype=np.uint8))
