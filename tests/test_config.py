"""Tests for Settings configuration model."""

from pathlib import Path

from living_library.config import Settings


class TestDefaults:
    def test_default_chat_model(self):
        s = Settings()
        assert s.claude_model == "claude-sonnet-4-5-20250929"

    def test_default_database_path(self):
        s = Settings()
        assert s.database_path == Path("data/library.db")

    def test_default_client_slug(self):
        s = Settings()
        assert s.default_client_slug == "josh-galt"

    def test_retrieval_defaults(self):
        s = Settings()
        assert s.match_count == 5
        assert s.match_threshold == 0.3
        assert s.keyword_fallback_below == 2
        assert s.keyword_limit == 5

    def test_conversation_defaults(self):
        s = Settings()
        assert s.history_limit == 40
        assert s.followup_max_length == 120
        assert s.rewrite_history_turns == 6

    def test_api_key_disabled_by_default(self):
        s = Settings()
        assert s.api_key == ""

    def test_knowledge_document_path(self):
        s = Settings()
        assert s.knowledge_document_path == Path("config/KNOWLEDGE.md")


class TestGetRewriteModel:
    def test_falls_back_to_chat_model(self):
        s = Settings(claude_model="claude-main")
        assert s.get_rewrite_model() == "claude-main"

    def test_explicit_rewrite_model(self):
        s = Settings(claude_model="claude-main", rewrite_model="claude-small")
        assert s.get_rewrite_model() == "claude-small"

    def test_blank_rewrite_model_ignored(self):
        s = Settings(claude_model="claude-main", rewrite_model="   ")
        assert s.get_rewrite_model() == "claude-main"
