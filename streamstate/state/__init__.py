"""Materialized key/value projections."""

from streamstate.state.repository import StateRepository

__all__ = ["StateRepository"]
