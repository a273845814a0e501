"""Pair tokenizers for the Cross-Encoder.

``WordPieceTokenizer`` implements BERT-style greedy longest-match subword
segmentation over a one-token-per-line vocabulary. ``LengthFallbackTokenizer``
keeps tensors shape-correct when no vocabulary is available; its ids are the
character lengths of whitespace tokens, so its scores carry no meaning.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import structlog

logger = structlog.get_logger("rerank.tokenizer")

UNK_TOKEN = "[UNK]"
CLS_TOKEN = "[CLS]"
SEP_TOKEN = "[SEP]"
PAD_TOKEN = "[PAD]"
CONTINUATION_PREFIX = "##"
MAX_CHARS_PER_WORD = 100


@dataclass
class EncodedPair:
    """One (query, document) pair, each list exactly ``max_seq_len`` long."""

    input_ids: List[int]
    attention_mask: List[int]
    token_type_ids: List[int]


class PairTokenizer(ABC):
    """Encodes a (query, document) pair into fixed-length id arrays."""

    name: str

    @abstractmethod
    def encode_pair(self, query: str, document: str, max_seq_len: int) -> EncodedPair:
        pass


@dataclass
class Vocabulary:
    token_to_id: Dict[str, int]
    unk_id: int
    cls_id: int
    sep_id: int
    pad_id: int

    def __contains__(self, token: str) -> bool:
        return token in self.token_to_id


def load_vocab(path: str) -> Vocabulary:
    """Load a vocabulary file.

    Ids are positions among the non-empty lines. Special tokens missing from
    the file get the usual BERT ids.
    """
    resolved = Path(path)
    if not resolved.is_absolute():
        resolved = Path.cwd() / resolved

    content = resolved.read_text(encoding="utf-8").replace("\r\n", "\n")
    lines = [line for line in content.split("\n") if line]
    token_to_id: Dict[str, int] = {}
    for index, line in enumerate(lines):
        token = line.strip()
        if token:
            token_to_id[token] = index

    return Vocabulary(
        token_to_id=token_to_id,
        unk_id=token_to_id.get(UNK_TOKEN, 100),
        cls_id=token_to_id.get(CLS_TOKEN, 101),
        sep_id=token_to_id.get(SEP_TOKEN, 102),
        pad_id=token_to_id.get(PAD_TOKEN, 0),
    )


class WordPieceTokenizer(PairTokenizer):
    """Greedy longest-match WordPiece over a loaded vocabulary."""

    name = "wordpiece"

    def __init__(self, vocab: Vocabulary, max_chars_per_word: int = MAX_CHARS_PER_WORD):
        self.vocab = vocab
        self.max_chars_per_word = max_chars_per_word

    def tokenize(self, text: str) -> List[str]:
        """Lower-case, split on whitespace and segment each word."""
        tokens: List[str] = []
        for word in text.lower().split():
            tokens.extend(self._segment(word))
        return tokens

    def _segment(self, word: str) -> List[str]:
        if len(word) > self.max_chars_per_word:
            return [UNK_TOKEN]

        pieces: List[str] = []
        start = 0
        while start < len(word):
            end = len(word)
            piece = None
            while start < end:
                candidate = word[start:end]
                if start > 0:
                    candidate = CONTINUATION_PREFIX + candidate
                if candidate in self.vocab:
                    piece = candidate
                    break
                end -= 1
            if piece is None:
                return [UNK_TOKEN]
            pieces.append(piece)
            start = end
        return pieces

    def convert_tokens_to_ids(self, tokens: List[str]) -> List[int]:
        return [self.vocab.token_to_id.get(token, self.vocab.unk_id) for token in tokens]

    def encode_pair(self, query: str, document: str, max_seq_len: int) -> EncodedPair:
        """Build ``[CLS] query [SEP] document [SEP]``, padded to ``max_seq_len``.

        The document side is truncated first; the query is only cut by the
        final slice when it alone overflows the sequence.
        """
        query_tokens = self.tokenize(query)
        doc_tokens = self.tokenize(document)

        budget = max_seq_len - 3
        if len(query_tokens) + len(doc_tokens) > budget:
            doc_tokens = doc_tokens[:max(0, budget - len(query_tokens))]

        tokens = [CLS_TOKEN] + query_tokens + [SEP_TOKEN] + doc_tokens + [SEP_TOKEN]
        types = [0] * (len(query_tokens) + 2) + [1] * (len(doc_tokens) + 1)

        ids = self.convert_tokens_to_ids(tokens)[:max_seq_len]
        types = types[:max_seq_len]
        padding = max_seq_len - len(ids)

        return EncodedPair(
            input_ids=ids + [self.vocab.pad_id] * padding,
            attention_mask=[1] * len(ids) + [0] * padding,
            token_type_ids=types + [0] * padding,
        )


class LengthFallbackTokenizer(PairTokenizer):
    """Deterministic stand-in used when no vocabulary can be loaded."""

    name = "length_fallback"

    def encode_pair(self, query: str, document: str, max_seq_len: int) -> EncodedPair:
        tokens = f"{query} [SEP] {document}".split()
        ids = [len(token) for token in tokens[:max_seq_len]]
        padding = max_seq_len - len(ids)
        return EncodedPair(
            input_ids=ids + [0] * padding,
            attention_mask=[1] * len(ids) + [0] * padding,
            token_type_ids=[0] * max_seq_len,
        )


def create_pair_tokenizer(vocab_path: Optional[str]) -> PairTokenizer:
    """Create the WordPiece tokenizer, or the fallback when that is impossible."""
    if not vocab_path:
        logger.warning(
            "Cross-Encoder tokenizer degraded",
            reason="vocabulary path not configured",
            tokenizer=LengthFallbackTokenizer.name,
        )
        return LengthFallbackTokenizer()

    try:
        vocab = load_vocab(vocab_path)
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(
            "Cross-Encoder tokenizer degraded",
            reason="vocabulary failed to load",
            vocab_path=vocab_path,
            error=str(e),
            tokenizer=LengthFallbackTokenizer.name,
        )
        return LengthFallbackTokenizer()

    logger.info("Loaded WordPiece vocabulary", vocab_path=vocab_path, size=len(vocab.token_to_id))
    return WordPieceTokenizer(vocab)
