"""
Qdrant implementation of the retrieval service.

The reader's documents are stored in two collections:

- the chunks collection holds the embedded passages. Each point
  carries in its payload the owner (`user_id`), the document
  (`article_id`), the optional collection of the document
  (`collection_id`), and the `title`, `content` and `domain` of the
  passage;
- the summaries collection holds one record per document, with the
  keys `user_id`, `article_id`, `collection_id`, `title`, `summary`
  and `domain`. Vectors are not needed in this collection, which is
  only scrolled by payload filter.

Every query is restricted to the points of the requesting user.
Similarity is the score of the collection's distance (cosine), clamped
into [0, 1].

The service may be created from the config settings:

```python
from reading_tutor.stores.vector_store_qdrant import (
    QdrantRetrievalService,
)

service = QdrantRetrievalService.from_config_settings()
result = await service.search("entropy", user_id=user_id)
```
"""

# pyright: reportUnknownMemberType=false

import logging
from typing import Any

from langchain_core.embeddings import Embeddings
from pydantic import TypeAdapter
from qdrant_client import AsyncQdrantClient, models

from ..config.appchat import ChatSettings
from ..config.config import (
    ConfigSettings,
    DatabaseSource,
    LocalStorage,
    RemoteSource,
)
from ..ui.schemas import Source
from .excerpts import extract_excerpt
from .redis_cache import RedisCache
from .retrieval import (
    RetrievalFilter,
    RetrievalResult,
    RetrievalService,
)

# payload keys
USER_ID_KEY = "user_id"
ARTICLE_ID_KEY = "article_id"
COLLECTION_ID_KEY = "collection_id"
TITLE_KEY = "title"
CONTENT_KEY = "content"
SUMMARY_KEY = "summary"
DOMAIN_KEY = "domain"

UNTITLED: str = "(untitled)"
NO_SUMMARY: str = "No summary available."

_SCROLL_PAGE: int = 100

default_logger = logging.getLogger(__name__)


def async_client_from_config(
    storage: DatabaseSource | None = None,
    logger: logging.Logger = default_logger,
) -> AsyncQdrantClient | None:
    """
    Create a qdrant client from the storage settings. Reads from
    config toml file settings if none given.

    Args:
        storage: the database source
        logger: a logger object

    Returns:
        an AsyncQdrantClient object, or None if the client could not
        be created
    """
    try:
        if storage is None:
            storage = ConfigSettings().storage
        client: AsyncQdrantClient
        match storage:
            case ':memory:':
                client = AsyncQdrantClient(':memory:')
            case LocalStorage(folder=folder):
                client = AsyncQdrantClient(path=folder)
            case RemoteSource(url=url, port=port):
                client = AsyncQdrantClient(url=str(url), port=port)
            case _:
                raise ValueError("Invalid database source")
    except Exception as e:
        logger.error(f"Could not initialize qdrant client:\n{e}")
        return None

    return client


def owner_filter(user_id: str, flt: RetrievalFilter) -> models.Filter:
    """Qdrant filter selecting the points of user_id, restricted to
    the documents or the collection of flt."""
    must: list[models.Condition] = [
        models.FieldCondition(
            key=USER_ID_KEY, match=models.MatchValue(value=user_id)
        )
    ]
    if flt.article_ids:
        must.append(
            models.FieldCondition(
                key=ARTICLE_ID_KEY,
                match=models.MatchAny(any=list(flt.article_ids)),
            )
        )
    elif flt.collection_id:
        must.append(
            models.FieldCondition(
                key=COLLECTION_ID_KEY,
                match=models.MatchValue(value=flt.collection_id),
            )
        )
    return models.Filter(must=must)


def _similarity(score: float | None) -> float:
    if score is None:
        return 0.0
    return min(max(float(score), 0.0), 1.0)


class QdrantRetrievalService(RetrievalService):
    """Retrieval service over a qdrant vector database."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        embeddings: Embeddings,
        *,
        chunks_collection: str = "chunks",
        summaries_collection: str = "documents",
        excerpt_length: int = 300,
        summary_excerpt_length: int = 200,
        cache: RedisCache[RetrievalResult] | None = None,
        embedding_cache: RedisCache[list[float]] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(cache=cache, logger=logger or default_logger)
        self.client = client
        self.embeddings = embeddings
        self.chunks_collection = chunks_collection
        self.summaries_collection = summaries_collection
        self.excerpt_length = excerpt_length
        self.summary_excerpt_length = summary_excerpt_length
        self.embedding_cache = embedding_cache

    @classmethod
    def from_config_settings(
        cls,
        settings: ConfigSettings | None = None,
        chat_settings: ChatSettings | None = None,
        embeddings: Embeddings | None = None,
        logger: logging.Logger = default_logger,
    ) -> 'QdrantRetrievalService':
        """Create the service from the config files.

        Raises:
            ValueError: if the database client cannot be created
        """
        from ..models import create_embeddings_from_settings

        if settings is None:
            settings = ConfigSettings()
        if chat_settings is None:
            chat_settings = ChatSettings()

        client = async_client_from_config(settings.storage, logger)
        if client is None:
            raise ValueError("Could not create database client.")

        cache = RedisCache.from_settings(
            settings.cache, "retrieval", TypeAdapter(RetrievalResult), logger
        )
        embedding_cache = RedisCache.from_settings(
            settings.cache, "embedding", TypeAdapter(list[float]), logger
        )

        return cls(
            client,
            embeddings
            or create_embeddings_from_settings(settings.embeddings),
            chunks_collection=settings.database.chunks_collection,
            summaries_collection=settings.database.summaries_collection,
            excerpt_length=chat_settings.excerpt_length,
            summary_excerpt_length=chat_settings.summary_excerpt_length,
            cache=cache,
            embedding_cache=embedding_cache,
            logger=logger,
        )

    async def embed_query(self, query: str) -> list[float]:
        if self.embedding_cache is not None:
            cached = await self.embedding_cache.get(query)
            if cached is not None:
                return cached
        vector: list[float] = await self.embeddings.aembed_query(query)
        if self.embedding_cache is not None:
            await self.embedding_cache.set(query, vector)
        return vector

    async def _search_chunks(
        self,
        query: str,
        user_id: str,
        filter: RetrievalFilter,
        top_k: int,
    ) -> RetrievalResult:
        vector = await self.embed_query(query)
        response = await self.client.query_points(
            collection_name=self.chunks_collection,
            query=vector,
            query_filter=owner_filter(user_id, filter),
            with_payload=True,
            limit=top_k,
        )

        sources: list[Source] = []
        for point in response.points:
            payload: dict[str, Any] = point.payload or {}
            sources.append(
                Source(
                    article_id=str(payload.get(ARTICLE_ID_KEY, "")),
                    title=payload.get(TITLE_KEY) or UNTITLED,
                    excerpt=extract_excerpt(
                        str(payload.get(CONTENT_KEY, "")),
                        query,
                        self.excerpt_length,
                    ),
                    similarity=_similarity(point.score),
                    domain=payload.get(DOMAIN_KEY),
                )
            )
        sources.sort(key=lambda s: s.similarity, reverse=True)
        return RetrievalResult(sources=sources)

    async def _search_summaries(
        self, user_id: str, filter: RetrievalFilter
    ) -> RetrievalResult:
        records: list[models.Record] = []
        offset: Any = None
        while True:
            batch, offset = await self.client.scroll(
                collection_name=self.summaries_collection,
                scroll_filter=owner_filter(user_id, filter),
                with_payload=True,
                with_vectors=False,
                limit=_SCROLL_PAGE,
                offset=offset,
            )
            records.extend(batch)
            if offset is None:
                break

        sources: list[Source] = []
        for record in records:
            payload: dict[str, Any] = record.payload or {}
            title: str = payload.get(TITLE_KEY) or UNTITLED
            summary: str | None = payload.get(SUMMARY_KEY)
            excerpt = (
                summary[: self.summary_excerpt_length] + "..."
                if summary
                else NO_SUMMARY
            )
            sources.append(
                Source(
                    article_id=str(payload.get(ARTICLE_ID_KEY, "")),
                    title=title,
                    excerpt=excerpt,
                    similarity=1.0,
                    domain=payload.get(DOMAIN_KEY),
                )
            )
        return RetrievalResult(sources=sources)
