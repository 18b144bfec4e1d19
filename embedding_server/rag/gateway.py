"""Embedding gateway contract used by the ingestion and RAG pipelines.

The pipelines only depend on ``EmbeddingGateway``; ``OllamaClient`` is the
production implementation and tests plug in fakes.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence
import structlog

logger = structlog.get_logger()


class EmbeddingGateway(ABC):
    """Embedding and generation backend."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Return the raw embedding vector for ``text``.

        Raises:
            UpstreamUnavailable: Backend unreachable or error status
            UpstreamTimeout: Backend too slow
            EmptyResult: Backend returned no vector
        """

    @abstractmethod
    async def generate(self, question: str, context: Optional[str] = None) -> str:
        """Answer ``question``, grounded on ``context`` when given.

        Raises:
            UpstreamUnavailable: Backend unreachable or error status
            UpstreamTimeout: Backend too slow
            EmptyResult: Backend returned no text
        """

    @abstractmethod
    async def is_available(self) -> bool:
        """Liveness probe. Never raises."""


async def embed_texts(
    gateway: EmbeddingGateway,
    texts: Sequence[str],
    concurrency: int = 1,
) -> List[List[float]]:
    """Embed an ordered list of texts, returning vectors in the same order.

    With ``concurrency`` of 1 the calls run one after another and the first
    failure stops the loop. With a higher value up to ``concurrency`` calls
    are in flight at once; the first failure cancels the rest.

    Args:
        gateway: Backend to call
        texts: Texts to embed, in order
        concurrency: Maximum number of calls in flight

    Returns:
        Raw vectors, one per text, in input order
    """
    if concurrency <= 1 or len(texts) <= 1:
        vectors = []
        for text in texts:
            vectors.append(await gateway.embed(text))
        return vectors

    semaphore = asyncio.Semaphore(concurrency)

    async def run(text: str) -> List[float]:
        async with semaphore:
            return await gateway.embed(text)

    tasks = [asyncio.ensure_future(run(text)) for text in texts]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.warning("parallel_embedding_aborted", task_count=len(tasks))
        raise
