from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import FrozenSet, List, Optional

import numpy as np

from .core.displacer import PartitionDataDisplacer, Status
from .core.exceptions import GraphError
from .core.graph import Graph, load_graph
from .core.ir import LogicalTensor
from .core.memory import Memory, MemoryDesc, convert
from .core.reference import ExecutionContext


def _load(path: Path) -> Graph:
    try:
        return load_graph(path)
    except FileNotFoundError as exc:
        raise SystemExit(f"Graph file not found: {path}") from exc
    except GraphError as exc:
        raise SystemExit(f"Invalid graph {path}: {exc}") from exc


def _parse_partition(graph: Graph, spec: Optional[str]) -> FrozenSet[int]:
    if spec is None or spec == "all":
        return frozenset(op.id for op in graph.ops)
    try:
        return frozenset(int(item) for item in spec.split(",") if item.strip())
    except ValueError as exc:
        raise SystemExit(f"Invalid partition '{spec}': expected comma separated op ids") from exc


def _ordinary_filling(lt: LogicalTensor, seed: int) -> Memory:
    desc = MemoryDesc.from_tensor(lt)
    rng = np.random.default_rng([seed, abs(lt.id)])
    values = rng.integers(-8, 9, size=desc.shape)
    return Memory(desc, convert(values, lt.data_type))


def _inspect(args: argparse.Namespace) -> None:
    graph = _load(args.graph)
    partition = _parse_partition(graph, args.partition)
    displacer = PartitionDataDisplacer(graph, partition)
    if not displacer.displacements:
        print("No partition input needs displacement.")
        return
    for tensor_id, entry in sorted(displacer.displacements.items()):
        main_op = entry.main_op(graph)
        print(
            f"tensor {tensor_id} ({entry.boundary.data_type}) -> "
            f"{main_op.kind} op {main_op.id} port {entry.port}"
        )


def _displace(args: argparse.Namespace) -> None:
    graph = _load(args.graph)
    partition = _parse_partition(graph, args.partition)
    ctx = ExecutionContext(backend=args.backend, seed=args.seed)
    displacer = PartitionDataDisplacer(graph, partition, ctx)
    args.out_dir.mkdir(parents=True, exist_ok=True)
    failed: List[int] = []
    for lt in graph.input_tensors(partition):
        buffer = _ordinary_filling(lt, args.seed)
        result = displacer.displace(lt.id, buffer)
        if result.status is Status.FAIL:
            failed.append(lt.id)
            continue
        np.save(args.out_dir / f"{lt.id}.npy", buffer.data)
        print(f"tensor {lt.id}: {result.status.value}")
    if failed:
        raise SystemExit(f"Displacement failed for tensors {failed}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Partition data displacer utilities")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity")
    subparsers = parser.add_subparsers(dest="cmd")

    inspect_parser = subparsers.add_parser("inspect", help="Print the displacement table")
    inspect_parser.add_argument("graph", type=Path, help="Path to a serialized graph (.json)")
    inspect_parser.add_argument(
        "--partition",
        default=None,
        help="Comma separated op ids forming the partition (default: all ops)",
    )

    displace_parser = subparsers.add_parser(
        "displace", help="Fill and displace every partition input tensor"
    )
    displace_parser.add_argument("graph", type=Path, help="Path to a serialized graph (.json)")
    displace_parser.add_argument(
        "--partition",
        default=None,
        help="Comma separated op ids forming the partition (default: all ops)",
    )
    displace_parser.add_argument("--seed", type=int, default=0, help="Filling seed (default: 0)")
    displace_parser.add_argument(
        "--backend",
        default="numpy",
        choices=["numpy", "torch"],
        help="Reference execution backend (default: numpy)",
    )
    displace_parser.add_argument(
        "--out-dir",
        type=Path,
        required=True,
        help="Directory receiving one <tensor id>.npy per partition input",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    level = logging.WARNING - 10 * min(args.verbose, 2)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if args.cmd == "inspect":
        _inspect(args)
        return
    if args.cmd == "displace":
        _displace(args)
        return

    parser.print_help()


if __name__ == "__main__":  # pragma: no cover
    main(sys.argv[1:])
