"""Tests of the qdrant retrieval service, on an in-memory database"""

import unittest

from langgraph.runtime import Runtime
from pydantic import TypeAdapter
from qdrant_client import AsyncQdrantClient, models

from reading_tutor.stores.redis_cache import RedisCache
from reading_tutor.stores.retrieval import RetrievalFilter
from reading_tutor.stores.vector_store_qdrant import (
    NO_SUMMARY,
    UNTITLED,
    QdrantRetrievalService,
    async_client_from_config,
    owner_filter,
)
from reading_tutor.workflows.langchain.base import create_initial_state
from reading_tutor.workflows.langchain.nodes import (
    format_documents,
    retriever,
)
from reading_tutor.workflows.langchain.policy import RetrievalPolicy

from tests.test_mocks import (
    ARTICLE_ID,
    COLLECTION_ID,
    USER_ID,
    MockEmbeddings,
    MockRedis,
    make_context,
    random_id,
)

# pyright: basic

OTHER_USER: str = "9e8d7c6b-5a49-4382-a1b0-c9d8e7f6a5b4"
OTHER_ARTICLE: str = "b2c3d4e5-f6a7-4b8c-9d0e-1f2a3b4c5d6e"

CHUNKS = "chunks"
SUMMARIES = "documents"

embeddings = MockEmbeddings()


def _chunk(
    content: str,
    user_id: str = USER_ID,
    article_id: str = ARTICLE_ID,
    collection_id: str | None = None,
    title: str | None = "Thermodynamics",
) -> models.PointStruct:
    payload = {
        "user_id": user_id,
        "article_id": article_id,
        "content": content,
        "domain": "physics.example.org",
    }
    if title is not None:
        payload["title"] = title
    if collection_id is not None:
        payload["collection_id"] = collection_id
    return models.PointStruct(
        id=random_id(),
        vector=embeddings.embed_query(content),
        payload=payload,
    )


def _summary(
    title: str,
    summary: str | None,
    user_id: str = USER_ID,
    article_id: str = ARTICLE_ID,
) -> models.PointStruct:
    payload = {"user_id": user_id, "article_id": article_id, "title": title}
    if summary is not None:
        payload["summary"] = summary
    return models.PointStruct(
        id=random_id(), vector=[0.0, 0.0, 0.0, 1.0], payload=payload
    )


async def _populate(client: AsyncQdrantClient) -> None:
    for name in (CHUNKS, SUMMARIES):
        await client.create_collection(
            collection_name=name,
            vectors_config=models.VectorParams(
                size=4, distance=models.Distance.COSINE
            ),
        )
    await client.upsert(
        collection_name=CHUNKS,
        points=[
            _chunk("Entropy measures the disorder of a system."),
            _chunk("The river flows through the valley."),
            _chunk(
                "Entropy in information theory.",
                article_id=OTHER_ARTICLE,
                collection_id=COLLECTION_ID,
                title=None,
            ),
            _chunk("Entropy of somebody else.", user_id=OTHER_USER),
        ],
    )
    await client.upsert(
        collection_name=SUMMARIES,
        points=[
            _summary("Thermodynamics", "Heat, work and entropy. " * 20),
            _summary("Information", None, article_id=OTHER_ARTICLE),
            _summary("Private", "Not yours.", user_id=OTHER_USER),
        ],
    )


class TestOwnerFilter(unittest.TestCase):

    def test_user_only(self):
        flt = owner_filter(USER_ID, RetrievalFilter())
        self.assertEqual(len(flt.must), 1)  # type: ignore

    def test_articles_take_precedence(self):
        flt = owner_filter(
            USER_ID,
            RetrievalFilter(
                article_ids=(ARTICLE_ID,), collection_id=COLLECTION_ID
            ),
        )
        keys = [c.key for c in flt.must]  # type: ignore
        self.assertEqual(keys, ["user_id", "article_id"])

    def test_collection(self):
        flt = owner_filter(
            USER_ID, RetrievalFilter(collection_id=COLLECTION_ID)
        )
        keys = [c.key for c in flt.must]  # type: ignore
        self.assertEqual(keys, ["user_id", "collection_id"])


class TestClientFromConfig(unittest.IsolatedAsyncioTestCase):

    async def test_memory_client(self):
        client = async_client_from_config(":memory:")
        self.assertIsInstance(client, AsyncQdrantClient)
        assert client is not None
        await client.close()


class TestQdrantRetrieval(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.client = AsyncQdrantClient(":memory:")
        await _populate(self.client)
        self.service = QdrantRetrievalService(
            self.client,
            MockEmbeddings(),
            chunks_collection=CHUNKS,
            summaries_collection=SUMMARIES,
        )

    async def asyncTearDown(self):
        await self.client.close()

    async def test_chunks_ordered_by_similarity(self):
        result = await self.service.search("entropy", USER_ID, top_k=5)
        self.assertEqual(len(result.sources), 3)
        similarities = [s.similarity for s in result.sources]
        self.assertEqual(similarities, sorted(similarities, reverse=True))
        for source in result.sources:
            self.assertGreaterEqual(source.similarity, 0.0)
            self.assertLessEqual(source.similarity, 1.0)
        self.assertIn("Entropy", result.sources[0].excerpt)

    async def test_only_own_documents(self):
        result = await self.service.search("entropy", USER_ID, top_k=10)
        for source in result.sources:
            self.assertNotIn("somebody else", source.excerpt)

    async def test_article_filter(self):
        result = await self.service.search(
            "entropy",
            USER_ID,
            RetrievalFilter(article_ids=(OTHER_ARTICLE,)),
        )
        self.assertEqual(len(result.sources), 1)
        self.assertEqual(result.sources[0].article_id, OTHER_ARTICLE)
        self.assertEqual(result.sources[0].title, UNTITLED)

    async def test_collection_filter(self):
        result = await self.service.search(
            "entropy",
            USER_ID,
            RetrievalFilter(collection_id=COLLECTION_ID),
        )
        self.assertEqual(
            [s.article_id for s in result.sources], [OTHER_ARTICLE]
        )

    async def test_top_k(self):
        result = await self.service.search("entropy", USER_ID, top_k=1)
        self.assertEqual(len(result.sources), 1)

    async def test_summaries(self):
        result = await self.service.search(
            "plan",
            USER_ID,
            RetrievalFilter(article_ids=(ARTICLE_ID, OTHER_ARTICLE)),
            mode="comprehensive",
        )
        self.assertEqual(len(result.sources), 2)
        for source in result.sources:
            self.assertEqual(source.similarity, 1.0)
        by_title = {s.title: s for s in result.sources}
        self.assertTrue(by_title["Thermodynamics"].excerpt.endswith("..."))
        self.assertLessEqual(
            len(by_title["Thermodynamics"].excerpt), 200 + 3
        )
        self.assertEqual(by_title["Information"].excerpt, NO_SUMMARY)
        self.assertNotIn("Private", by_title)

    async def test_embedding_cache(self):
        client = MockRedis()
        service = QdrantRetrievalService(
            self.client,
            MockEmbeddings(),
            chunks_collection=CHUNKS,
            summaries_collection=SUMMARIES,
            embedding_cache=RedisCache(
                client,  # type: ignore
                "embedding",
                TypeAdapter(list[float]),
            ),
        )
        await service.search("entropy", USER_ID, top_k=1)
        await service.search("entropy", USER_ID, top_k=2)
        self.assertEqual(service.embeddings.call_count, 1)  # type: ignore
        self.assertEqual(len(client.data), 1)

    async def test_plan_documents_cite_sources(self):
        state = create_initial_state(
            "Plan my study", USER_ID, article_ids=[ARTICLE_ID, OTHER_ARTICLE]
        )
        state["retrieval_policy"] = RetrievalPolicy()
        state["next_step"] = "plan"
        update = await retriever(
            state, Runtime(context=make_context(retrieval=self.service))
        )
        documents: str = update["documents"]
        self.assertTrue(documents.startswith("【Source 1】Title:"))
        self.assertIn("【Source 2】Title:", documents)
        self.assertNotIn("【Article", documents)
        self.assertNotIn("Summary:", documents)
        self.assertEqual(documents, format_documents(update["sources"]))


if __name__ == "__main__":
    unittest.main()
