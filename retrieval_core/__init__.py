"""Two-stage retrieval-and-rerank core.

Subpackages:
- ``retrieval_core.common``: configuration, logging and metrics.
- ``retrieval_core.vector_store``: vector store abstraction and pgvector backend.
- ``retrieval_core.search``: hybrid lexical/relational search and vector search.
- ``retrieval_core.rerank``: heuristic and Cross-Encoder reranking.

Entry points:
- ``HybridSearcher.hybrid_search``
- ``VectorSearcher.search_vector``
- ``RerankEngine.rerank``
"""

__version__ = "0.1.0"
