"""Pluggable Cross-Encoder scoring engines.

Three variants share the ``CeEngine`` interface and are selected once from
``CE_ENGINE``:

- ``InertCeEngine`` scores every pair 0 and keeps the pipeline functional
  without a model.
- ``OnnxCeEngine`` runs a Cross-Encoder through ONNX Runtime.
- ``RemoteCeEngine`` is a placeholder whose status always carries an error.

Lifecycle
- ``warmup()`` is idempotent and retryable after a failure.
- ``status()`` is read-only and never loads anything.
- ``score_batch()`` loads the model lazily if ``warmup()`` was never called.

The loaded ``InferenceSession`` is shared by every request without a lock;
ONNX Runtime supports concurrent ``run`` calls on one session. Inference is
pushed to a worker thread so the event loop keeps serving other requests.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import onnxruntime as ort
import structlog

from ..common.config import CeSettings
from ..common.metrics import MetricsCollector, get_metrics_collector
from .tokenizer import PairTokenizer, create_pair_tokenizer

logger = structlog.get_logger("rerank.ce_engine")

MODEL_NOT_CONFIGURED_MESSAGE = "CE_MODEL_PATH is not set"
REMOTE_NOT_IMPLEMENTED_MESSAGE = "remote CE engine is not implemented"
SCORING_CANCELLED_MESSAGE = "Cross-Encoder scoring aborted"


class CeEngineKind(str, Enum):
    """Cross-Encoder engine variants."""
    INERT = "inert"
    NEURAL = "neural"
    REMOTE = "remote"

    @classmethod
    def parse(cls, value: Optional[str]) -> "CeEngineKind":
        """Resolve a configured name; unknown names select the inert engine."""
        name = (value or "").strip().lower()
        name = _KIND_ALIASES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return cls.INERT


_KIND_ALIASES = {"dummy": "inert", "onnx": "neural"}


class CeEngineError(Exception):
    """Base exception for Cross-Encoder engines."""
    pass


class ModelNotConfiguredError(CeEngineError):
    """No model artifact path is configured."""
    pass


class ModelLoadError(CeEngineError):
    """The model artifact exists but could not be loaded."""
    pass


class InferenceError(CeEngineError):
    """A scoring call failed."""
    pass


class ScoringCancelledError(InferenceError):
    """The caller's cancellation signal was set during scoring."""

    def __init__(self, message: str = SCORING_CANCELLED_MESSAGE):
        super().__init__(message)


@dataclass(frozen=True)
class TensorNameOverrides:
    """Explicit model tensor names; ``None`` means resolve from the model."""

    input_ids: Optional[str] = None
    attention_mask: Optional[str] = None
    token_type_ids: Optional[str] = None
    output: Optional[str] = None


@dataclass(frozen=True)
class CeEngineConfig:
    """Cross-Encoder settings, fixed for the lifetime of an engine."""

    candidate_window_size: int = 24
    min_query_chars: int = 8
    max_batch_size: int = 16
    model_path: Optional[str] = None
    vocab_path: Optional[str] = None
    max_seq_len: int = 256
    output_logit_index: int = 0
    tensor_name_overrides: TensorNameOverrides = field(default_factory=TensorNameOverrides)


@dataclass
class CeEngineStatus:
    """Snapshot of an engine's lifecycle state."""

    engine_kind: CeEngineKind
    model_loaded: bool
    model_path: Optional[str]
    last_error: Optional[str]
    config: CeEngineConfig
    warmed_up: bool

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["engine_kind"] = self.engine_kind.value
        return data


# Role -> substrings tried in order against the model's declared names.
IO_ROLE_MATCHERS = {
    "input_ids": ("input_ids",),
    "attention_mask": ("attention_mask", "attention"),
    "token_type_ids": ("token_type_ids",),
    "output": ("logits",),
}


@dataclass(frozen=True)
class ResolvedIoNames:
    """Tensor names used to feed and read one loaded model."""

    input_ids: str
    attention_mask: str
    token_type_ids: Optional[str]
    output: str


def _match_role(names: Sequence[str], role: str) -> Optional[str]:
    for needle in IO_ROLE_MATCHERS[role]:
        for name in names:
            if needle in name.lower():
                return name
    return None


def resolve_io_names(
    input_names: Sequence[str],
    output_names: Sequence[str],
    overrides: TensorNameOverrides,
) -> ResolvedIoNames:
    """Match model tensor names to roles, honouring overrides first.

    ``token_type_ids`` stays ``None`` when the model does not declare it.
    """
    input_ids = (
        overrides.input_ids
        or _match_role(input_names, "input_ids")
        or (input_names[0] if input_names else "input_ids")
    )
    attention_mask = (
        overrides.attention_mask
        or _match_role(input_names, "attention_mask")
        or "attention_mask"
    )
    token_type_ids = overrides.token_type_ids or _match_role(input_names, "token_type_ids")
    output = (
        overrides.output
        or _match_role(output_names, "output")
        or (output_names[0] if output_names else "logits")
    )
    return ResolvedIoNames(
        input_ids=input_ids,
        attention_mask=attention_mask,
        token_type_ids=token_type_ids,
        output=output,
    )


def input_dtype_for(session: Any, input_name: str) -> type:
    """Integer width declared by the model for ``input_name``, int64 by default."""
    for node in session.get_inputs():
        if node.name == input_name:
            return np.int32 if "int32" in str(node.type) else np.int64
    return np.int64


def extract_scores(raw_output: Any, batch_size: int, output_index: int) -> List[float]:
    """Pull one relevance score per pair out of a model output.

    Outputs shaped ``[batch]`` or ``[batch, 1]`` are used directly; for wider
    outputs ``output_index`` (clamped) picks the relevance logit. Non-finite
    scores become 0.
    """
    array = np.asarray(raw_output, dtype=np.float64)
    if array.ndim <= 1 or array.shape[-1] == 1:
        values = array.reshape(-1)
    else:
        width = array.shape[-1]
        index = min(max(output_index, 0), width - 1)
        values = array.reshape(-1, width)[:, index]

    if values.shape[0] < batch_size:
        raise InferenceError(
            f"model returned {values.shape[0]} scores for {batch_size} pairs"
        )
    values = values[:batch_size]
    return [float(v) if np.isfinite(v) else 0.0 for v in values]


def _check_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ScoringCancelledError()


class CeEngine(ABC):
    """Interface every Cross-Encoder engine implements."""

    kind: CeEngineKind

    def __init__(self, config: CeEngineConfig):
        self.config = config
        self._warmed_up = False

    @abstractmethod
    async def warmup(self) -> CeEngineStatus:
        pass

    @abstractmethod
    def status(self) -> CeEngineStatus:
        pass

    @abstractmethod
    async def score_batch(
        self,
        query: str,
        documents: Sequence[str],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[float]:
        """Score each document against ``query``; output order matches input."""
        pass


class InertCeEngine(CeEngine):
    """Engine that never loads a model and scores everything 0."""

    kind = CeEngineKind.INERT

    async def warmup(self) -> CeEngineStatus:
        self._warmed_up = True
        return self.status()

    def status(self) -> CeEngineStatus:
        return CeEngineStatus(
            engine_kind=self.kind,
            model_loaded=False,
            model_path=None,
            last_error=None,
            config=self.config,
            warmed_up=self._warmed_up,
        )

    async def score_batch(self, query, documents, cancel_event=None) -> List[float]:
        return [0.0] * len(documents)


class RemoteCeEngine(InertCeEngine):
    """Placeholder for a network-backed engine; always reports an error."""

    kind = CeEngineKind.REMOTE

    def status(self) -> CeEngineStatus:
        status = super().status()
        status.last_error = REMOTE_NOT_IMPLEMENTED_MESSAGE
        return status


def create_onnx_session(model_path: str) -> ort.InferenceSession:
    """Open an ONNX model on the CPU execution provider."""
    options = ort.SessionOptions()
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    return ort.InferenceSession(
        model_path,
        sess_options=options,
        providers=["CPUExecutionProvider"],
    )


class OnnxCeEngine(CeEngine):
    """Cross-Encoder backed by an ONNX Runtime session."""

    kind = CeEngineKind.NEURAL

    def __init__(
        self,
        config: CeEngineConfig,
        session_factory: Optional[Callable[[str], Any]] = None,
        tokenizer: Optional[PairTokenizer] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """Create the engine without loading the model.

        Parameters
        - config: Frozen engine settings
        - session_factory: Opens a model path; defaults to ONNX Runtime
        - tokenizer: Pair tokenizer; defaults to one built from ``vocab_path``
        - metrics: Optional collector for inference timings
        """
        super().__init__(config)
        self._session_factory = session_factory or create_onnx_session
        self.tokenizer = tokenizer or create_pair_tokenizer(config.vocab_path)
        self.metrics = metrics

        self._session: Optional[Any] = None
        self._io_names: Optional[ResolvedIoNames] = None
        self._input_dtype: type = np.int64
        self._model_loaded = False
        self._last_error: Optional[str] = None
        self._load_lock: Optional[asyncio.Lock] = None
        self._load_lock_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def io_names(self) -> Optional[ResolvedIoNames]:
        return self._io_names

    @property
    def input_dtype(self) -> type:
        return self._input_dtype

    def _get_load_lock(self) -> asyncio.Lock:
        """Loading lock for the running loop; replaced when the loop changes."""
        loop = asyncio.get_running_loop()
        if self._load_lock is None or self._load_lock_loop is not loop:
            self._load_lock = asyncio.Lock()
            self._load_lock_loop = loop
        return self._load_lock

    def _is_healthy(self) -> bool:
        return self._session is not None and self._model_loaded and self._last_error is None

    async def warmup(self) -> CeEngineStatus:
        if self._is_healthy():
            self._warmed_up = True
            return self.status()

        async with self._get_load_lock():
            self._warmed_up = True
            if self._is_healthy():
                return self.status()

            if not self.config.model_path:
                self._mark_failed(MODEL_NOT_CONFIGURED_MESSAGE)
                return self.status()

            try:
                session = await asyncio.to_thread(self._session_factory, self.config.model_path)
                io_names = resolve_io_names(
                    [node.name for node in session.get_inputs()],
                    [node.name for node in session.get_outputs()],
                    self.config.tensor_name_overrides,
                )
                input_dtype = input_dtype_for(session, io_names.input_ids)
            except Exception as e:
                self._mark_failed(str(e) or type(e).__name__)
                return self.status()

            self._session = session
            self._io_names = io_names
            self._input_dtype = input_dtype
            self._model_loaded = True
            self._last_error = None

        logger.info(
            "Cross-Encoder model loaded",
            model_path=self.config.model_path,
            input_ids=io_names.input_ids,
            attention_mask=io_names.attention_mask,
            token_type_ids=io_names.token_type_ids,
            output=io_names.output,
            output_index=self.config.output_logit_index,
            input_dtype=np.dtype(input_dtype).name,
            tokenizer=self.tokenizer.name,
        )
        return self.status()

    def _mark_failed(self, message: str) -> None:
        self._session = None
        self._io_names = None
        self._model_loaded = False
        self._last_error = message
        logger.error(
            "Cross-Encoder model unavailable",
            model_path=self.config.model_path,
            error=message,
        )

    def status(self) -> CeEngineStatus:
        return CeEngineStatus(
            engine_kind=self.kind,
            model_loaded=self._is_healthy(),
            model_path=self.config.model_path,
            last_error=self._last_error,
            config=self.config,
            warmed_up=self._warmed_up,
        )

    async def _ensure_session(self) -> Any:
        if self._is_healthy():
            return self._session

        status = await self.warmup()
        if status.model_loaded:
            return self._session
        if not self.config.model_path:
            raise ModelNotConfiguredError(status.last_error)
        raise ModelLoadError(status.last_error)

    def _build_feeds(self, query: str, documents: Sequence[str]) -> Dict[str, np.ndarray]:
        seq_len = self.config.max_seq_len
        encoded = [self.tokenizer.encode_pair(query, doc, seq_len) for doc in documents]
        for pair in encoded:
            lengths = (len(pair.input_ids), len(pair.attention_mask), len(pair.token_type_ids))
            if lengths != (seq_len, seq_len, seq_len):
                raise InferenceError(f"tokenizer returned lengths {lengths}, expected {seq_len}")

        feeds = {
            self._io_names.input_ids: np.array(
                [pair.input_ids for pair in encoded], dtype=self._input_dtype
            ),
            self._io_names.attention_mask: np.array(
                [pair.attention_mask for pair in encoded], dtype=self._input_dtype
            ),
        }
        if self._io_names.token_type_ids:
            feeds[self._io_names.token_type_ids] = np.array(
                [pair.token_type_ids for pair in encoded], dtype=self._input_dtype
            )
        return feeds

    async def score_batch(
        self,
        query: str,
        documents: Sequence[str],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[float]:
        """Score documents in sub-batches of at most ``max_batch_size``.

        Raises ``ScoringCancelledError`` if ``cancel_event`` is set before
        starting, between sub-batches, or before an inference call.
        """
        if not documents:
            return []
        _check_cancelled(cancel_event)

        session = await self._ensure_session()
        batch_size = max(1, self.config.max_batch_size)
        scores: List[float] = []

        for start in range(0, len(documents), batch_size):
            _check_cancelled(cancel_event)
            batch = documents[start:start + batch_size]
            feeds = self._build_feeds(query, batch)

            _check_cancelled(cancel_event)
            started = time.perf_counter()
            try:
                outputs = await asyncio.to_thread(session.run, [self._io_names.output], feeds)
            except Exception as e:
                raise InferenceError(f"ONNX inference failed: {e}") from e

            if self.metrics is not None:
                self.metrics.record_ce_inference(len(batch), time.perf_counter() - started)
            scores.extend(extract_scores(outputs[0], len(batch), self.config.output_logit_index))

        return scores


def create_ce_engine(
    kind: CeEngineKind,
    config: CeEngineConfig,
    **kwargs: Any
) -> CeEngine:
    """Create an engine of ``kind``; kwargs go to the neural engine only."""
    if kind == CeEngineKind.NEURAL:
        return OnnxCeEngine(config, **kwargs)
    if kind == CeEngineKind.REMOTE:
        return RemoteCeEngine(config)
    return InertCeEngine(config)


# Process-wide engine built from settings on first access
_ce_engine: Optional[CeEngine] = None


def get_ce_engine(metrics: Optional[MetricsCollector] = None) -> CeEngine:
    """Get or create the process-wide engine.

    Settings are read once; changing them requires a restart or
    ``reset_ce_engine()`` in tests.
    """
    global _ce_engine
    if _ce_engine is None:
        settings = CeSettings()
        kind = CeEngineKind.parse(settings.ce_engine)
        logger.info(
            "Initializing Cross-Encoder engine",
            resolved_engine=kind.value,
            configured_engine=settings.ce_engine,
            model_path=settings.ce_model_path,
            vocab_path=settings.ce_vocab_path,
            max_seq_len=settings.ce_max_seq_len,
        )
        extra = {}
        if kind == CeEngineKind.NEURAL:
            extra["metrics"] = metrics or get_metrics_collector()
        _ce_engine = create_ce_engine(kind, settings.to_engine_config(), **extra)
    return _ce_engine


def reset_ce_engine() -> None:
    """Drop the process-wide engine. Test use only."""
    global _ce_engine
    _ce_engine = None
