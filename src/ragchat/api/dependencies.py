"""Construction of the ragchat service graph from settings."""

from __future__ import annotations

from dataclasses import dataclass

import chromadb

from ragchat.config import Settings
from ragchat.embeddings import AzureOpenAIEmbeddingBackend, EmbeddingBackend, EmbeddingCache, EmbeddingConfig, HashEmbeddingBackend
from ragchat.ingestion import IngestionConfig, SourceIngestor
from ragchat.projects import ProjectStore
from ragchat.retrieval import RetrievalConfig, Retriever
from ragchat.search import ChromaSearchIndex, SearchIndex
from ragchat.services import (
    AzureOpenAIProvider,
    ChatService,
    IndexDocumentStore,
    LLMConfig,
    LLMProvider,
    MapReduceOrchestrator,
    PromptStructurer,
    ReducePromptGenerator,
    TemplateGenerator,
)


@dataclass(frozen=True)
class AppDependencies:
    index: SearchIndex
    cache: EmbeddingCache
    ingestor: SourceIngestor
    projects: ProjectStore
    chat_llm: LLMProvider
    prompt_llm: LLMProvider
    chat_service: ChatService
    orchestrator: MapReduceOrchestrator
    structurer: PromptStructurer


def build_embedding_backend(settings: Settings) -> EmbeddingBackend:
    config = EmbeddingConfig(
        dim=settings.embedding_dim,
        endpoint=settings.azure_openai_endpoint,
        api_key=settings.azure_openai_api_key,
        api_version=settings.azure_openai_api_version,
        deployment=settings.embedding_deployment,
    )
    if settings.use_model_embeddings:
        return AzureOpenAIEmbeddingBackend(config)
    return HashEmbeddingBackend(config)


def build_search_index(settings: Settings) -> ChromaSearchIndex:
    chroma_client = None
    if settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    return ChromaSearchIndex(
        settings.chroma_collection,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
        lexical_weight=settings.lexical_blend_weight,
    )


def build_dependencies(
    settings: Settings,
    *,
    index: SearchIndex | None = None,
    embedder: EmbeddingBackend | None = None,
    chat_llm: LLMProvider | None = None,
    prompt_llm: LLMProvider | None = None,
) -> AppDependencies:
    """Wire the service graph; any collaborator can be swapped for a fake."""

    index = index or build_search_index(settings)
    embedder = embedder or build_embedding_backend(settings)
    chat_llm = chat_llm or AzureOpenAIProvider(
        LLMConfig(
            endpoint=settings.azure_openai_endpoint,
            api_key=settings.azure_openai_api_key,
            api_version=settings.azure_openai_api_version,
            deployment=settings.chat_deployment,
        ),
    )
    prompt_llm = prompt_llm or AzureOpenAIProvider(
        LLMConfig(
            endpoint=settings.effective_prompt_gen_endpoint,
            api_key=settings.effective_prompt_gen_api_key,
            api_version=settings.azure_openai_api_version,
            deployment=settings.effective_prompt_gen_deployment,
        ),
        mode="prompt_generation",
    )

    cache = EmbeddingCache(embedder, capacity=settings.embedding_cache_size)
    ingestor = SourceIngestor(
        index,
        embedder,
        IngestionConfig(chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap),
    )
    projects = ProjectStore(
        settings.data_dir,
        default_temperature=settings.default_temperature,
        default_max_tokens=settings.default_max_tokens,
    )
    retriever = Retriever(
        index,
        cache,
        RetrievalConfig(top_k=settings.retrieval_top_k, candidates=settings.retrieval_candidates),
    )
    chat_service = ChatService(retriever, chat_llm, projects)
    orchestrator = MapReduceOrchestrator(
        IndexDocumentStore(index),
        chat_llm,
        TemplateGenerator(prompt_llm, temperature=settings.template_temperature, max_tokens=settings.template_max_tokens),
        ReducePromptGenerator(
            prompt_llm,
            temperature=settings.template_temperature,
            max_tokens=settings.reduce_template_max_tokens,
        ),
        map_temperature=settings.map_temperature,
        map_max_tokens=settings.map_max_tokens,
        temperature=settings.default_temperature,
        max_tokens=settings.default_max_tokens,
        summary_chars=settings.conversation_summary_chars,
    )
    structurer = PromptStructurer(
        prompt_llm,
        temperature=settings.structure_temperature,
        max_tokens=settings.structure_max_tokens,
    )
    return AppDependencies(
        index=index,
        cache=cache,
        ingestor=ingestor,
        projects=projects,
        chat_llm=chat_llm,
        prompt_llm=prompt_llm,
        chat_service=chat_service,
        orchestrator=orchestrator,
        structurer=structurer,
    )

