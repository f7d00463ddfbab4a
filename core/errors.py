"""Errors raised by the evidence pipeline for caller-side programming mistakes."""

from __future__ import annotations


class ContractViolation(ValueError):
    """An operation was called with arguments outside its contract."""


class DimensionMismatch(ContractViolation):
    """Two embeddings of different dimensions were compared."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}"
        )
