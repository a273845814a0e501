"""Common utilities shared across components.

Includes:
- ``config``: pydantic-settings configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.

Import pattern:
- from retrieval_core.common.config import CeSettings
- from retrieval_core.common.logging import configure_logging
"""
