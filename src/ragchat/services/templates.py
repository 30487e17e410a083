"""LLM-authored prompt templates for deep analysis and prompt authoring."""

from __future__ import annotations

from dataclasses import dataclass

from ragchat.errors import TemplateGenerationError
from ragchat.metrics.observability import get_logger
from ragchat.services.llm import LLMProvider

MAP_PLACEHOLDER = "{text_content_of_single_document_will_be_injected_here}"

FIRST_QUERY_CONTEXT = "(This is the first query in the conversation.)"

MAP_META_PROMPT = """You are an expert AI specializing in crafting highly effective prompts for Large Language Models.
Your task is to generate a "Map Prompt" that another AI will use to analyze individual documents in detail.
The Map Prompt must guide the document-analyzing AI to extract information relevant to the following user query:
---
ORIGINAL USER QUERY: %%USER_QUERY%%
---
PRIOR CONVERSATION CONTEXT: %%PRIOR_CONTEXT%%
---

The Map Prompt you generate MUST instruct the document-analyzing AI to:
1. Focus solely on the content of the single document provided to it.
2. Extract only the information directly relevant to the ORIGINAL USER QUERY.
3. Preserve the original Source ID of every extracted piece of information. Document text segments are formatted as
   [Source ID: <ID_VALUE>, sourcefile: <FILENAME>] <TEXT_OF_CHUNK> and the analyzing AI must carry the <ID_VALUE> over.
4. Pair each extracted detail with its Source ID, e.g. "Extracted detail: <text> [Source ID: <ID_VALUE>]".
5. State clearly when the document contains nothing relevant to the query.
6. Use no external knowledge and make no assumptions beyond the document text.

The Map Prompt MUST contain the literal placeholder %%PLACEHOLDER%% exactly once, at the point where the
document text will be injected. Do not answer the user's query yourself; output only the Map Prompt.

Generated Map Prompt:
"""

REDUCE_META_PROMPT = """You are an expert AI specializing in crafting flexible, goal-oriented system prompts for Large Language Models.
Answer in the same language as the CURRENT USER QUERY.

Generate a "Reduce System Prompt". It will instruct a Reduce AI to synthesize information that a previous Map AI
extracted from several documents into a comprehensive answer to the CURRENT USER QUERY.

CURRENT USER QUERY: %%USER_QUERY%%
PRIOR CONVERSATION CONTEXT: %%PRIOR_CONTEXT%%
SUMMARY OF MAP OUTPUTS: %%MAP_SUMMARY%%

The Reduce System Prompt must instruct the Reduce AI to:
1. Understand the query in the light of the prior conversation.
2. Expect a consolidated block of per-document analyses, each demarcated and carrying [Source ID: ...] markers.
3. Synthesize rather than list: consolidate findings, identify patterns, compare and contrast where appropriate.
4. Answer the query directly and completely, performing creative or generative tasks when the query asks for them.
5. Ignore repetitive noise, boilerplate and analyses that report no relevant content or an error.
6. Use no information that is absent from the map outputs.
7. State clearly which aspects cannot be answered when the information is insufficient.
8. End with one or two follow-up questions that would refine the analysis.

The aggregated data is passed separately as the user message; do not add a placeholder for it.
Output only the Reduce System Prompt.

Generated Reduce System Prompt:
"""

STRUCTURE_META_PROMPT = """You are an Expert Prompt Engineer AI helping a user create an effective system prompt for a
retrieval augmented generation application. Transform the user's raw ideas into a well-structured system prompt.

The system prompt MUST enable the target model to:
1. Base its answers primarily on the retrieved context.
2. Cite sources with the format [Source ID: <id>, sourcefile: <filename>].
3. Follow the user's instructions for missing information. If none are given, insert an editable marker such as
   [Specify AI behavior for missing information].
4. Follow instructions literally and precisely.

Use these sections: ## Role, ## Primary Directive & Task, ## Context & Knowledge Base Interaction,
## User Input Interpretation, ## Output Requirements & Structure, ## Response if Unsure.
Output ONLY the structured system prompt, without any preface or commentary.

User's Raw Input:
---
%%USER_INPUT%%
---

Structured System Prompt:
"""

FALLBACK_REDUCE_PROMPT = """You are an expert analyst. You receive analyses extracted from several documents, each
introduced by its document name. Synthesize them into one comprehensive, well-structured answer to the user's query.
Consolidate findings, highlight patterns and differences, and ignore analyses that report no relevant content or an
error. Use only the information in the analyses. If they are insufficient, say what cannot be answered and why."""

CITATION_PRESERVATION_RULE = """MANDATORY CITATION RULE: The analyses contain citation markers of the form [Source ID: <id>].
Every statement in your answer that relies on an analysis must keep the original marker(s) exactly as written,
placed immediately after the statement. Never drop, merge, rewrite or invent Source IDs."""


@dataclass(frozen=True)
class MapPromptTemplate:
    """Per-document analysis prompt with a single text placeholder."""

    text: str

    def __post_init__(self) -> None:
        if MAP_PLACEHOLDER not in self.text:
            raise TemplateGenerationError(f"Map prompt is missing the required placeholder {MAP_PLACEHOLDER}")

    def render(self, document_text: str) -> str:
        return self.text.replace(MAP_PLACEHOLDER, document_text)


def _prior_context(conversation_summary: str) -> str:
    summary = conversation_summary.strip()
    return summary if summary else FIRST_QUERY_CONTEXT


class TemplateGenerator:
    """Asks the model to write the map-phase prompt for a query."""

    def __init__(self, llm: LLMProvider, *, temperature: float = 0.2, max_tokens: int = 1000) -> None:
        self._llm = llm
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._logger = get_logger("templates.map")

    async def generate(self, query: str, conversation_summary: str = "") -> MapPromptTemplate:
        meta_prompt = (
            MAP_META_PROMPT.replace("%%USER_QUERY%%", query)
            .replace("%%PRIOR_CONTEXT%%", _prior_context(conversation_summary))
            .replace("%%PLACEHOLDER%%", MAP_PLACEHOLDER)
        )
        try:
            text = await self._llm.complete(meta_prompt, temperature=self._temperature, max_tokens=self._max_tokens)
        except Exception as exc:
            self._logger.error("map_template.failed", error=str(exc))
            raise TemplateGenerationError(f"Failed to generate map prompt: {exc}") from exc
        text = (text or "").strip()
        if not text:
            raise TemplateGenerationError("The model returned an empty map prompt")
        template = MapPromptTemplate(text)
        self._logger.info("map_template.generated", length=len(text))
        return template


class ReducePromptGenerator:
    """Asks the model to write the synthesis system prompt, with a fixed fallback."""

    def __init__(self, llm: LLMProvider, *, temperature: float = 0.2, max_tokens: int = 4000) -> None:
        self._llm = llm
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._logger = get_logger("templates.reduce")

    async def generate(self, query: str, map_summary: str, conversation_summary: str = "") -> str:
        meta_prompt = (
            REDUCE_META_PROMPT.replace("%%USER_QUERY%%", query)
            .replace("%%PRIOR_CONTEXT%%", _prior_context(conversation_summary))
            .replace("%%MAP_SUMMARY%%", map_summary)
        )
        try:
            text = (await self._llm.complete(meta_prompt, temperature=self._temperature, max_tokens=self._max_tokens)).strip()
        except Exception as exc:
            self._logger.warning("reduce_template.fallback", error=str(exc))
            text = ""
        if not text:
            text = FALLBACK_REDUCE_PROMPT
        return f"{text}\n\n{CITATION_PRESERVATION_RULE}"


class PromptStructurer:
    """Turns a user's raw notes into a structured system prompt."""

    def __init__(self, llm: LLMProvider, *, temperature: float = 0.5, max_tokens: int = 1500) -> None:
        self._llm = llm
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def structure(self, raw_input: str) -> str:
        if not raw_input or not raw_input.strip():
            raise ValueError("Prompt content must not be empty")
        meta_prompt = STRUCTURE_META_PROMPT.replace("%%USER_INPUT%%", raw_input.strip())
        text = await self._llm.complete(meta_prompt, temperature=self._temperature, max_tokens=self._max_tokens)
        text = (text or "").strip()
        if not text:
            raise TemplateGenerationError("The model returned an empty system prompt")
        return text
