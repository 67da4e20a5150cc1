"""Tests for ChatPipeline — pre-stream stages and end-to-end scenarios."""

import json

import pytest

from living_library.archive.embeddings import EmbeddingError
from living_library.archive.retrieval import Retriever
from living_library.chat.context import KnowledgeDocument
from living_library.chat.pipeline import ChatPipeline
from living_library.chat.rewriter import QueryRewriter
from living_library.errors import BadRequest
from living_library.store.messages import ClientNotFound, ConversationNotFound, MessageStore

BEEGHEE_VECTOR = [1.0, 0.0, 0.0]
WHITEWATER_VECTOR = [0.0, 1.0, 0.0]


class Harness:
    """A pipeline over a temp database with recorded external calls."""

    def __init__(self, store: MessageStore, archive, fake_generation) -> None:
        self.log: list[str] = []
        self.store = store
        self.search_queries: list[str] = []
        self.rewrite_output = "Josh Galt whitewater riverboarding career"
        self.generation = fake_generation(["BEEGHEE is ", "a hive-fermented ", "superfood."], log=self.log)

        original_append = store.append_message

        async def _append(conversation_id, client_id, role, content):
            self.log.append(f"append:{role}")
            return await original_append(conversation_id, client_id, role, content)

        store.append_message = _append

        async def _embed(text: str) -> list[float]:
            self.log.append("embed")
            self.search_queries.append(text)
            return WHITEWATER_VECTOR if "whitewater" in text.lower() else BEEGHEE_VECTOR

        async def _complete(messages, **kwargs) -> str:
            self.log.append("rewrite")
            return self.rewrite_output

        self.embed = _embed
        self.pipeline = ChatPipeline(
            store=store,
            retriever=Retriever(archive, embed=self._call_embed),
            knowledge=KnowledgeDocument("# KNOWLEDGE"),
            rewriter=QueryRewriter(complete=_complete),
            open_stream=self.generation,
        )

    async def _call_embed(self, text: str) -> list[float]:
        return await self.embed(text)

    async def run(self, message, **kwargs) -> list[tuple[str, str]]:
        turn = await self.pipeline.prepare(message, **kwargs)
        orchestrator = await self.pipeline.start_stream(turn)
        try:
            return [(e.event, e.data) async for e in orchestrator.events()]
        finally:
            await orchestrator.aclose()


@pytest.fixture
async def client(store: MessageStore):
    return await store.create_client("josh-galt", "Josh Galt")


@pytest.fixture
async def harness(store, archive, add_passage, client, fake_generation) -> Harness:
    await add_passage(
        client_id=client.id,
        text="BEEGHEE is the world's first hive-fermented honeybee superfood.",
        embedding=BEEGHEE_VECTOR,
        title="What is BEEGHEE",
        url="https://beeghee.com",
        source_type="article",
        published_at="2024-06-01",
    )
    await add_passage(
        client_id=client.id,
        text="Beeghee bee bread is fermented inside the hive.",
        embedding=[0.9, 0.1, 0.0],
        title="Bee bread",
        source_type="article",
    )
    await add_passage(
        client_id=client.id,
        text="Josh directed the first two Riverboarding World Championships.",
        embedding=WHITEWATER_VECTOR,
        title="Whitewater career",
        source_type="podcast",
    )
    await add_passage(
        client_id=client.id,
        text="Point Positive: always look to where you want to go on the river.",
        embedding=[0.1, 0.9, 0.0],
        title="Point Positive",
        source_type="article",
    )
    return Harness(store, archive, fake_generation)


def _names(events) -> list[str]:
    return [name for name, _ in events]


def _sources_payload(events) -> dict:
    [data] = [data for name, data in events if name == "sources"]
    return json.loads(data)


# -- Scenario A: new conversation -------------------------------------------------


async def test_new_conversation_end_to_end(harness: Harness, store: MessageStore) -> None:
    events = await harness.run("What is BEEGHEE?")

    assert _names(events)[-2:] == ["sources", "done"]
    assert _names(events).count("sources") == 1
    payload = _sources_payload(events)
    assert any(s["type"] == "article" for s in payload["sources"])
    assert payload["sources"][0]["title"] == "What is BEEGHEE"

    conversation_id = payload["conversation_id"]
    history = await store.load_history(conversation_id)
    assert [(m.role, m.content) for m in history] == [
        ("user", "What is BEEGHEE?"),
        ("assistant", "BEEGHEE is a hive-fermented superfood."),
    ]


async def test_conversation_id_only_in_sources_event(harness: Harness) -> None:
    events = await harness.run("What is BEEGHEE?")
    conversation_id = _sources_payload(events)["conversation_id"]

    for name, data in events:
        if name != "sources":
            assert conversation_id not in data


async def test_user_message_persisted_before_model_calls(harness: Harness) -> None:
    await harness.run("What is BEEGHEE?")

    assert harness.log[0] == "append:user"
    assert harness.log.index("append:user") < harness.log.index("embed")
    assert harness.log.index("embed") < harness.log.index("generate")
    assert harness.log[-1] == "append:assistant"


async def test_reused_conversation_id_is_echoed(harness: Harness) -> None:
    first = await harness.run("What is BEEGHEE?")
    conversation_id = _sources_payload(first)["conversation_id"]

    second = await harness.run("Who makes it?", conversation_id=conversation_id)

    assert _sources_payload(second)["conversation_id"] == conversation_id


async def test_prior_turns_sent_to_generator(harness: Harness) -> None:
    first = await harness.run("What is BEEGHEE?")
    conversation_id = _sources_payload(first)["conversation_id"]

    await harness.run("Where is it produced?", conversation_id=conversation_id)

    request = harness.generation.requests[-1]
    assert request.system == "# KNOWLEDGE"
    assert [m["role"] for m in request.messages] == ["user", "assistant", "user"]
    assert request.messages[0]["content"] == "What is BEEGHEE?"
    assert request.messages[-1]["content"].startswith("Where is it produced?")


async def test_augmented_text_never_persisted(harness: Harness, store: MessageStore) -> None:
    events = await harness.run("What is BEEGHEE?")
    conversation_id = _sources_payload(events)["conversation_id"]

    request = harness.generation.requests[-1]
    assert "ADDITIONAL CONTEXT FROM CONTENT ARCHIVE" in request.messages[-1]["content"]
    history = await store.load_history(conversation_id)
    assert all("ADDITIONAL CONTEXT" not in m.content for m in history)


# -- Scenario B: follow-up rewrite ------------------------------------------------


async def test_follow_up_rewritten_for_search_only(harness: Harness, store, client) -> None:
    conversation = await store.resolve_or_create_conversation(None, client.id)
    for role, content in [
        ("user", "Tell me about Josh's whitewater career"),
        ("assistant", "He spent two decades riverboarding."),
        ("user", "Was he in any competitions?"),
    ]:
        await store.append_message(conversation.id, client.id, role, content)

    events = await harness.run("tell me more about that", conversation_id=conversation.id)

    assert "rewrite" in harness.log
    assert harness.search_queries == ["Josh Galt whitewater riverboarding career"]
    assert _sources_payload(events)["sources"][0]["title"] == "Whitewater career"

    history = await store.load_history(conversation.id)
    user_turns = [m.content for m in history if m.role == "user"]
    assert user_turns[-1] == "tell me more about that"
    assert harness.generation.requests[-1].messages[-1]["content"].startswith(
        "tell me more about that"
    )


async def test_non_follow_up_not_rewritten(harness: Harness) -> None:
    await harness.run("What is BEEGHEE?")

    assert "rewrite" not in harness.log
    assert harness.search_queries == ["What is BEEGHEE?"]


# -- Scenario C: embedding failure ------------------------------------------------


async def test_embedding_failure_raises_before_generation(harness: Harness) -> None:
    async def _fail(text: str) -> list[float]:
        raise EmbeddingError("Voyage API error 500: boom")

    harness.embed = _fail

    with pytest.raises(EmbeddingError):
        await harness.pipeline.prepare("What is BEEGHEE?")
    assert "generate" not in harness.log


# -- Validation / resolution ------------------------------------------------------


@pytest.mark.parametrize("message", [None, "", "   ", 42])
async def test_missing_message_rejected(harness: Harness, message) -> None:
    with pytest.raises(BadRequest):
        await harness.pipeline.prepare(message)
    assert harness.log == []


async def test_unknown_client_rejected(harness: Harness) -> None:
    with pytest.raises(ClientNotFound):
        await harness.pipeline.prepare("hello", client_slug="nobody")
    assert harness.log == []


async def test_foreign_conversation_rejected(harness: Harness, store) -> None:
    other = await store.create_client("jane", "Jane")
    foreign = await store.resolve_or_create_conversation(None, other.id)

    with pytest.raises(ConversationNotFound):
        await harness.pipeline.prepare("hello", conversation_id=foreign.id)
    assert harness.log == []


async def test_default_client_slug_used(harness: Harness, client) -> None:
    turn = await harness.pipeline.prepare("What is BEEGHEE?", client_slug=None)
    assert turn.client.id == client.id
    assert turn.conversation.is_new


async def test_client_persona_overrides_knowledge(harness: Harness, store) -> None:
    await store.create_client("jane", "Jane", persona_prompt="You guide Jane's work.")

    turn = await harness.pipeline.prepare("Hello there", client_slug="jane")

    assert turn.request.system == "You guide Jane's work."
    assert turn.retrieval.passages == []
