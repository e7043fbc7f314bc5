import os

import numpy as np

from displacer import ExecutionContext, Memory, PartitionDataDisplacer, load_graph

os.chdir(os.path.dirname(os.path.abspath(__file__)))

graph = load_graph("graphs/int8_matmul_transpose.json")
partition = [op.id for op in graph.ops]
displacer = PartitionDataDisplacer(graph, partition, ExecutionContext(seed=0))

for tensor in graph.input_tensors(partition):
    buffer = Memory.for_tensor(tensor)
    result = displacer.displace(tensor.id, buffer)
    print(f"# tensor {tensor.id} ({tensor.data_type}): {result.status.value}")
    print(buffer.data)
