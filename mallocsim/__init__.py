"""Simulated heap, implicit-free-list allocator, timing helpers and trace-driven evaluation driver."""

__version__ = "0.1.0"
__all__ = ["memlib", "mm", "clock", "ftimer", "fcyc", "trace", "driver"]