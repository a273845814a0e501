"""Vector store adapters.

Primary components:
- ``base``: abstract ``VectorStore`` interface and common exceptions.
- ``pgvector``: PostgreSQL/pgvector implementation of the interface.
- ``factory``: helpers to construct a store from typed config.
"""
