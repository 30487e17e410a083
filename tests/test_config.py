from __future__ import annotations

from ragchat.config import get_settings


def test_generation_and_chunking_defaults():
    settings = get_settings({})
    assert settings.chunk_size == 2000
    assert settings.chunk_overlap == 200
    assert settings.embedding_cache_size == 1000
    assert settings.default_temperature == 0.3
    assert settings.default_max_tokens == 4000
    assert settings.map_temperature == 0.1


def test_candidate_pool_widens_with_semantic_ranking():
    assert get_settings({"semantic_ranking": False}).retrieval_candidates == 5
    assert get_settings({"semantic_ranking": True}).retrieval_candidates == 50


def test_prompt_generation_falls_back_to_chat_deployment():
    settings = get_settings(
        {
            "azure_openai_endpoint": "https://example.openai.azure.com",
            "azure_openai_api_key": "key",
            "chat_deployment": "gpt-chat",
        }
    )
    assert settings.effective_prompt_gen_deployment == "gpt-chat"
    assert settings.effective_prompt_gen_endpoint == "https://example.openai.azure.com"
    assert settings.effective_prompt_gen_api_key == "key"


def test_allowed_extensions_accept_comma_separated_string():
    settings = get_settings({"allowed_extensions": ".pdf, .txt"})
    assert settings.allowed_extensions_tuple == (".pdf", ".txt")
