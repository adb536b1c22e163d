"""Trace context propagation across a chain of processes."""

__version__ = "0.1.0"
