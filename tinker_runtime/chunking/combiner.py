"""Run a large batch as several chunked requests and merge the results.

Chunks are submitted one after another, in order, each with the next
sequence id; submission of chunk k+1 starts only after chunk k returned its
handle. Once every handle is known all chunks are polled concurrently. The
first poll failure fails the whole batch and abandons the other polls.

Example:
    async def submit(chunk, seq_id):
        return await executor.execute(
            "POST", "/api/v1/forward_backward",
            {"data": chunk, "seq_id": seq_id}, config, pool_type="training",
        )

    combiner = ChunkCombiner(FuturePoller(executor))
    combined = await combiner.submit_and_combine(data, submit, config)
    combined.metrics["loss:mean"]
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional

from tinker_runtime.chunking.chunker import Chunker
from tinker_runtime.chunking.reduction import ChunkResult, Reducer, reduce_metrics
from tinker_runtime.config import Config
from tinker_runtime.futures.poller import FuturePoller, QueueStateObserver, _cancel_all, _settle
from tinker_runtime.futures.types import FutureHandle

logger = logging.getLogger(__name__)

__all__ = ["ChunkCombiner", "CombinedOutput", "SubmitFn"]

SubmitFn = Callable[[List[Any], int], Awaitable[Any]]


@dataclass
class CombinedOutput:
    metrics: Dict[str, Any] = field(default_factory=dict)
    outputs: List[Any] = field(default_factory=list)
    chunk_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"metrics": self.metrics, "outputs": self.outputs, "chunk_count": self.chunk_count}


class ChunkCombiner:
    """Split, submit, poll and merge.

    Args:
        poller: Polls each chunk's handle
        chunker: Default splitter (128 items / 500k numbers per chunk)
        output_key: Result field holding per-item outputs
        metrics_key: Result field holding the chunk's metrics
        start_seq_id: First sequence id handed to ``submit_fn``
    """

    def __init__(
        self,
        poller: FuturePoller,
        chunker: Optional[Chunker] = None,
        *,
        output_key: str = "loss_fn_outputs",
        metrics_key: str = "metrics",
        start_seq_id: int = 0,
    ) -> None:
        self.poller = poller
        self.chunker = chunker or Chunker()
        self.output_key = output_key
        self.metrics_key = metrics_key
        self._seq_ids = itertools.count(start_seq_id)

    def _chunk_result(self, result: Any, chunk: List[Any]) -> ChunkResult:
        if not isinstance(result, Mapping):
            return ChunkResult(metrics={}, outputs=[result], count=len(chunk))
        outputs = result.get(self.output_key)
        return ChunkResult(
            metrics=dict(result.get(self.metrics_key) or {}),
            outputs=list(outputs) if isinstance(outputs, list) else [],
            count=len(chunk),
        )

    async def _submit_all(self, chunks: List[List[Any]], submit_fn: SubmitFn) -> List[FutureHandle]:
        handles: List[FutureHandle] = []
        for index, chunk in enumerate(chunks):
            seq_id = next(self._seq_ids)
            payload = await submit_fn(chunk, seq_id)
            handles.append(FutureHandle.from_payload(payload))
            logger.debug(
                "Submitted chunk %d/%d (%d items, seq_id=%d) as %s",
                index + 1,
                len(chunks),
                len(chunk),
                seq_id,
                handles[-1].request_id,
            )
        return handles

    async def _poll_all(
        self,
        handles: List[FutureHandle],
        config: Config,
        poll_timeout: Optional[float],
        observer: Optional[QueueStateObserver],
        metadata: Optional[Dict[str, Any]],
    ) -> List[Any]:
        tasks = [
            self.poller.poll(
                handle,
                config,
                timeout=poll_timeout,
                observer=observer,
                metadata={**(metadata or {}), "chunk_index": index},
            )
            for index, handle in enumerate(handles)
        ]
        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

        failed = [task for task in tasks if task in done and (task.cancelled() or task.exception())]
        if failed:
            await _cancel_all(pending)
            logger.warning(
                "Chunked request failed on chunk %d of %d; abandoning %d in-flight poll(s)",
                tasks.index(failed[0]) + 1,
                len(tasks),
                len(pending),
            )
            _settle(failed[0])
        return [task.result() for task in tasks]

    async def submit_and_combine(
        self,
        items: Iterable[Any],
        submit_fn: SubmitFn,
        config: Config,
        *,
        chunker: Optional[Chunker] = None,
        reduce_rules: Optional[Mapping[str, Reducer]] = None,
        poll_timeout: Optional[float] = None,
        observer: Optional[QueueStateObserver] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CombinedOutput:
        """Run ``items`` as chunked requests and merge them.

        Raises:
            ClassifiedError: The first submission or poll failure
        """
        items = list(items)
        if not items:
            return CombinedOutput()

        chunks = (chunker or self.chunker).split(items)
        handles = await self._submit_all(chunks, submit_fn)
        results = await self._poll_all(handles, config, poll_timeout, observer, metadata)

        chunk_results = [self._chunk_result(result, chunk) for result, chunk in zip(results, chunks)]
        outputs: List[Any] = []
        for chunk_result in chunk_results:
            outputs.extend(chunk_result.outputs)
        return CombinedOutput(
            metrics=reduce_metrics(chunk_results, reduce_rules),
            outputs=outputs,
            chunk_count=len(chunks),
        )
