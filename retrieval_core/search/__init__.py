"""Candidate retrieval.

Primary components:
- ``hybrid``: concurrent lexical + relational search fused by z-score.
- ``vector``: tenant-scoped nearest-neighbour search.
- ``factory``: build both from ``SearchConfig``.
"""
