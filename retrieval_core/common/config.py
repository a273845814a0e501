"""Configuration management for the retrieval core.

This module centralizes environment-driven configuration for the search and
rerank components. It builds on ``pydantic_settings.BaseSettings`` so
configuration can be provided via environment variables, ``.env`` files, or
defaults. Field names double as environment variable names (matching is
case-insensitive), so ``ce_candidates`` is read from ``CE_CANDIDATES``.

Highlights
- Strongly-typed settings with sensible defaults
- One place to discover every environment variable the core reads
- Small component-specific subclasses to keep concerns clear

Usage
- Inject the appropriate config at your service entrypoint:
  ``settings = CeSettings()``
- Or select dynamically: ``config = get_config("search")``
"""

from typing import Any, List, Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class shared by all components.

    Notes
    - Add new shared settings here so component configs inherit them.
    - Prefer a typed field over reading ``os.environ`` directly.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    ml_log_level: str = Field(default="INFO")
    ml_log_format: str = Field(default="json")


class SearchConfig(BaseConfig):
    """Configuration for hybrid and vector search.

    Backends without a configured endpoint are skipped and reported in the
    result note instead of failing the request.
    """

    # Lexical engine
    ml_opensearch_hosts: Optional[str] = Field(default=None)
    ml_opensearch_index: str = Field(default="docs")
    ml_opensearch_username: Optional[str] = Field(default=None)
    ml_opensearch_password: Optional[str] = Field(default=None)
    ml_opensearch_verify_certs: bool = Field(default=False)

    # Relational ranking and pgvector
    ml_search_db_dsn: Optional[str] = Field(default=None)
    ml_search_pool_size: int = Field(default=10)
    ml_search_command_timeout: int = Field(default=60)
    ml_search_text_table: str = Field(default="docs")
    ml_search_text_config: str = Field(default="simple")
    ml_vector_table: str = Field(default="faq_embeddings")
    ml_vector_dimension: Optional[int] = Field(default=None)

    # Hybrid behaviour
    hybrid_timeout_ms: int = Field(default=600)
    hybrid_mock_on_failure: bool = Field(default=False)
    hybrid_probe_query: str = Field(default="返品 送料")
    hybrid_probe_hits_as_results: bool = Field(default=False)

    @property
    def opensearch_hosts(self) -> List[str]:
        """Comma separated ``ML_OPENSEARCH_HOSTS`` as a list."""
        if not self.ml_opensearch_hosts:
            return []
        return [host.strip() for host in self.ml_opensearch_hosts.split(",") if host.strip()]


# Numeric CE knobs and the smallest value each accepts.
_CE_NUMERIC_MINIMUMS = {
    "ce_candidates": 1,
    "ce_min_query_chars": 1,
    "ce_max_batch_size": 1,
    "ce_max_seq_len": 4,
    "ce_output_index": 0,
}


class CeSettings(BaseConfig):
    """Cross-Encoder engine configuration.

    Read once at process start. Fractional numbers are floored. Invalid
    numeric values (non-numeric or below their minimum) fall back to the
    default instead of failing start-up.
    """

    ce_engine: str = Field(default="inert")
    ce_candidates: int = Field(default=24)
    ce_min_query_chars: int = Field(default=8)
    ce_max_batch_size: int = Field(default=16)
    ce_model_path: Optional[str] = Field(default=None)
    ce_vocab_path: Optional[str] = Field(default=None)
    ce_max_seq_len: int = Field(default=256)
    ce_output_index: int = Field(default=0)

    # Tensor name overrides
    ce_input_ids_name: Optional[str] = Field(default=None)
    ce_attention_mask_name: Optional[str] = Field(default=None)
    ce_token_type_ids_name: Optional[str] = Field(default=None)
    ce_output_name: Optional[str] = Field(default=None)

    @field_validator(*_CE_NUMERIC_MINIMUMS, mode="before")
    @classmethod
    def _coerce_numeric(cls, value: Any, info: ValidationInfo) -> int:
        default = cls.model_fields[info.field_name].default
        try:
            # "3.7" -> 3
            number = int(float(str(value).strip()))
        except (TypeError, ValueError, OverflowError):
            return default
        if number < _CE_NUMERIC_MINIMUMS[info.field_name]:
            return default
        return number

    @field_validator(
        "ce_model_path",
        "ce_vocab_path",
        "ce_input_ids_name",
        "ce_attention_mask_name",
        "ce_token_type_ids_name",
        "ce_output_name",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def to_engine_config(self):
        """Freeze these settings into a ``CeEngineConfig``."""
        from ..rerank.ce_engine import CeEngineConfig, TensorNameOverrides

        return CeEngineConfig(
            candidate_window_size=self.ce_candidates,
            min_query_chars=self.ce_min_query_chars,
            max_batch_size=self.ce_max_batch_size,
            model_path=self.ce_model_path,
            vocab_path=self.ce_vocab_path,
            max_seq_len=self.ce_max_seq_len,
            output_logit_index=self.ce_output_index,
            tensor_name_overrides=TensorNameOverrides(
                input_ids=self.ce_input_ids_name,
                attention_mask=self.ce_attention_mask_name,
                token_type_ids=self.ce_token_type_ids_name,
                output=self.ce_output_name,
            ),
        )


def get_config(component: str) -> BaseConfig:
    """Get configuration for a specific component.

    Parameters
    - component: ``search`` or ``ce``; anything else yields ``BaseConfig``.
    """
    config_map = {
        "search": SearchConfig,
        "ce": CeSettings,
    }

    # Default to ``BaseConfig`` to avoid surprising crashes for unknown names.
    config_class = config_map.get(component, BaseConfig)
    return config_class()
