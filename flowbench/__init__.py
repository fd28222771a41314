"""flowbench: token-streaming core for rendering-performance benchmarks."""

__version__ = "0.1.0"
