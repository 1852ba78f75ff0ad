"""
Retrieval of passages from the reader's own documents.

`RetrievalService` defines the interface consumed by the retriever
node of the tutoring workflow:

```python
result = await service.search(
    "what is entropy?",
    user_id=user_id,
    filter=RetrievalFilter(article_ids=[article_id]),
    mode="fast",
    top_k=5,
)
for source in result.sources:
    print(source.title, source.similarity)
```

The base class validates the request, applies the redis cache, and
delegates the actual search to the backend methods `_search_chunks`
(nearest-neighbour search over document chunks, ordered by
decreasing similarity) and `_search_summaries` (one pseudo-source per
document of the filter, used to plan a course of study). Backends
raise; the base class wraps backend failures in `RetrievalError`.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ..ui.schemas import Source
from .redis_cache import RedisCache

RetrievalMode = Literal['fast', 'comprehensive']


class RetrievalError(Exception):
    """Invalid retrieval request or failure of the search backend."""


class RetrievalFilter(BaseModel):
    """Restriction of the search to some documents of the reader.
    Document ids take precedence over the collection."""

    article_ids: tuple[str, ...] = ()
    collection_id: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_empty(self) -> bool:
        return not self.article_ids and not self.collection_id


class RetrievalResult(BaseModel):
    """Sources ordered by decreasing similarity."""

    sources: list[Source] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


def is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return False
    return True


def sanitize_filter(
    article_ids: Iterable[str] | None = None,
    collection_id: str | None = None,
) -> RetrievalFilter:
    """Build a filter from untrusted ids. Ids that are not UUIDs are
    dropped, duplicates are removed keeping the first occurrence."""
    cleaned: list[str] = []
    for article_id in article_ids or []:
        if not isinstance(article_id, str):
            continue
        article_id = article_id.strip()
        if is_uuid(article_id) and article_id not in cleaned:
            cleaned.append(article_id)

    collection: str | None = None
    if isinstance(collection_id, str) and is_uuid(collection_id.strip()):
        collection = collection_id.strip()

    return RetrievalFilter(
        article_ids=tuple(cleaned), collection_id=collection
    )


CacheKey = tuple[str, str, tuple[str, ...], str | None, str, int]


class RetrievalService(ABC):
    """Search over the reader's document index."""

    def __init__(
        self,
        cache: RedisCache[RetrievalResult] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cache = cache
        self.logger = logger or logging.getLogger(__name__)

    async def search(
        self,
        query: str,
        user_id: str,
        filter: RetrievalFilter | None = None,
        mode: RetrievalMode = 'fast',
        top_k: int = 5,
    ) -> RetrievalResult:
        """Search the documents of user_id.

        Args:
            query: the retrieval query. An empty query gives an
                empty result
            user_id: the owner of the documents (a UUID)
            filter: optional restriction to some documents
            mode: 'comprehensive' with a non-empty filter returns the
                summaries of the filtered documents; otherwise the
                top_k most similar chunks are returned
            top_k: number of candidates requested

        Returns:
            a RetrievalResult

        Raises:
            RetrievalError: invalid user_id or backend failure
        """
        query = (query or "").strip()
        if not query:
            return RetrievalResult()

        if not is_uuid(user_id):
            raise RetrievalError(f"Invalid user id: '{user_id}'")

        flt: RetrievalFilter = filter or RetrievalFilter()
        flt = sanitize_filter(flt.article_ids, flt.collection_id)
        top_k = max(1, int(top_k))

        key: CacheKey = (
            query,
            user_id,
            flt.article_ids,
            flt.collection_id,
            mode,
            top_k,
        )
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                self.logger.debug(f"Retrieval cache hit for '{query}'")
                return cached

        try:
            if mode == 'comprehensive' and not flt.is_empty:
                result = await self._search_summaries(user_id, flt)
            else:
                result = await self._search_chunks(
                    query, user_id, flt, top_k
                )
        except RetrievalError:
            raise
        except Exception as e:
            raise RetrievalError(f"Search failed: {e}") from e

        if self.cache is not None:
            await self.cache.set(key, result)
        return result

    @abstractmethod
    async def _search_chunks(
        self,
        query: str,
        user_id: str,
        filter: RetrievalFilter,
        top_k: int,
    ) -> RetrievalResult: ...

    @abstractmethod
    async def _search_summaries(
        self, user_id: str, filter: RetrievalFilter
    ) -> RetrievalResult: ...
