from __future__ import annotations

import logging

from .ir import Op
from .memory import Memory
from .op_meta import WEIGHTED_KINDS, Arg, Driver, kind_to_driver
from .reference import ExecutionContext, ReferencePrimitive

logger = logging.getLogger(__name__)


def quantized_variant(main_op: Op, data_type: str) -> Op:
    """Clone ``main_op`` so it consumes ``data_type`` directly."""
    op = main_op.with_input_type(0, data_type)
    if len(op.inputs) > 1:
        # u8:u8 has no weighted kernel, use u8:s8 instead
        wei_type = "s8" if main_op.kind in WEIGHTED_KINDS and data_type == "u8" else data_type
        op = op.with_input_type(1, wei_type)
    driver = kind_to_driver(op.kind)
    if driver in {Driver.POOL, Driver.BINARY}:
        # pool lacks x8:f32 and binary lacks x8:x8:bf16, keep the output in x8
        op = op.with_output_type(0, op.inputs[0].data_type)
    elif op.outputs[0].data_type != "bf16":
        op = op.with_output_type(0, "f32")
    return op


def gen_quantize_filling(
    main_op: Op, arg: Arg, data_type: str, ctx: ExecutionContext
) -> Memory:
    """Materialize reference data for ``arg`` of ``main_op`` fed with ``data_type``.

    ``InvalidArgumentsError`` and ``UnimplementedError`` from the reference
    engine propagate unchanged; the caller maps them to fail and skip.
    """
    op = quantized_variant(main_op, data_type)
    prim = ReferencePrimitive(op).construct(ctx)
    prim.bind_reference_memory()
    memory = prim.arg(arg)
    logger.debug(
        "Generated %s filling for op %d (%s) argument %s",
        memory.desc.data_type,
        main_op.id,
        main_op.kind,
        arg.name,
    )
    return memory
