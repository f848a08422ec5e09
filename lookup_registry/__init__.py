"""Runtime-defined lookup tables for per-project artifact datasets."""

__version__ = "1.0.0"
