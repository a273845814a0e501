"""Tests for the retrieval core.

Backends, ONNX sessions and connection pools are replaced by small fakes,
so the suite needs no database, search cluster or model file.
"""
