"""Split batches into chunks bounded by item count and estimated size."""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, List, Mapping, Sequence, TypeVar

from tinker_runtime.resilience.constants import DEFAULT_MAX_CHUNK_ITEMS, DEFAULT_MAX_CHUNK_SIZE

logger = logging.getLogger(__name__)

__all__ = ["Chunker", "estimate_number_count"]

T = TypeVar("T")


def _model_input_chunk_size(chunk: Any) -> int:
    if not isinstance(chunk, Mapping):
        length = getattr(chunk, "length", None)
        return int(length()) if callable(length) else 0

    chunk_type = chunk.get("type")
    if chunk_type == "image" and isinstance(chunk.get("data"), (str, bytes)):
        return len(chunk["data"])
    if chunk_type == "image_asset_pointer" and isinstance(chunk.get("location"), str):
        return len(chunk["location"].encode("utf-8"))
    tokens = chunk.get("tokens")
    if isinstance(tokens, list):
        return len(tokens)
    length = chunk.get("length")
    if isinstance(length, int):
        return length
    return 0


def estimate_number_count(datum: Any) -> int:
    """Rough count of numbers a datum puts on the wire.

    Sums model-input chunk sizes (token counts, image byte sizes) and the
    lengths of every loss-input tensor's ``data`` list. Unknown shapes count
    as zero.
    """
    if not isinstance(datum, Mapping):
        return 0

    total = 0
    model_input = datum.get("model_input")
    if isinstance(model_input, Mapping) and isinstance(model_input.get("chunks"), list):
        total += sum(_model_input_chunk_size(chunk) for chunk in model_input["chunks"])

    loss_inputs = datum.get("loss_fn_inputs")
    if isinstance(loss_inputs, Mapping):
        for tensor in loss_inputs.values():
            if isinstance(tensor, Mapping) and isinstance(tensor.get("data"), list):
                total += len(tensor["data"])
    return total


class Chunker(Generic[T]):
    """Greedy, order-preserving splitter.

    A new chunk starts when the current one already holds ``max_items`` or
    when adding the next item would push its size past ``max_size``. An item
    that alone exceeds ``max_size`` gets a chunk of its own.
    """

    def __init__(
        self,
        max_items: int = DEFAULT_MAX_CHUNK_ITEMS,
        max_size: int = DEFAULT_MAX_CHUNK_SIZE,
        size_fn: Callable[[T], int] = estimate_number_count,
    ) -> None:
        if max_items < 1:
            raise ValueError("max_items must be >= 1")
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_items = max_items
        self.max_size = max_size
        self.size_fn = size_fn

    def split(self, items: Sequence[T]) -> List[List[T]]:
        chunks: List[List[T]] = []
        current: List[T] = []
        current_size = 0

        for item in items:
            size = self.size_fn(item)
            if current and (len(current) >= self.max_items or current_size + size > self.max_size):
                chunks.append(current)
                current, current_size = [], 0
            if size > self.max_size:
                logger.warning(
                    "Item of estimated size %d exceeds chunk limit %d; sending it alone",
                    size,
                    self.max_size,
                )
            current.append(item)
            current_size += size

        if current:
            chunks.append(current)
        return chunks
