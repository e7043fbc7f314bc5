"""PyTorch kernels for the reference engine."""
