"""Candidate reranking.

Primary components:
- ``engine``: ``RerankEngine`` with heuristic Stage 1 and Cross-Encoder Stage 2.
- ``ce_engine``: inert, ONNX and remote Cross-Encoder engines.
- ``tokenizer``: WordPiece and fallback pair tokenizers.
"""
