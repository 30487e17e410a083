"""Prompt construction for the standard chat path."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ragchat.models import ConversationMessage, RetrievedPassage

NO_CONTEXT_TEXT = "No relevant context was found in the knowledge base for this question."

CITATION_INSTRUCTIONS = """Answer the question using ONLY the information in the Retrieved Context below.
Each context segment is formatted as [Source ID: <id>, sourcefile: <file>] <text>.
Every factual statement must be followed immediately by a citation of the segment it came from, written exactly as [Source ID: <id>].
Use several markers, e.g. [Source ID: id1][Source ID: id2], when a statement combines segments. Do not collect citations at the end of the answer.
If the context does not contain the information needed, say that you cannot answer based on the provided documents.
Never invent URLs, Markdown links or any other citation format."""

DEFAULT_PROMPT_NAME = "Default Financial Analyst"

DEFAULT_SYSTEM_PROMPT = """You are StrategyGPT, an expert strategic-analysis assistant.
Your primary knowledge source is the context documents provided to you. Each context chunk is formatted like this:
[Source ID: <ID_VALUE>, sourcefile: <FILENAME>] <TEXT_OF_CHUNK>
The <ID_VALUE> is the unique identifier for that chunk.

CORE BEHAVIOUR
1. Grounded answers only. Never rely on external or prior knowledge. If the context is insufficient, reply with:
   "I cannot answer this question based on the provided information."
2. Inline citations. Every factual statement derived from the context must be followed immediately by [Source ID: <ID_VALUE>].
   Use multiple markers, e.g. [Source ID: id1][Source ID: id2], when a statement synthesizes several chunks.
   The <ID_VALUE> must match the chunk id exactly. Do not put the sourcefile inside the citation brackets.
   Do not use parentheses, Markdown links or any other citation format, and never generate URLs.
3. Structured, executive-ready output. Use Markdown with clear headings, tables and lists where helpful.

HOW TO REASON WITH FILE NAMES
When a query mentions a file name, title or obvious alias, prefer chunks whose sourcefile matches it.

RESPONSE TEMPLATE
1. (Optional) Brief answer, one sentence.
2. Detailed analysis with a subsection per theme.
3. Recommended actions, when the request calls for them.
4. Sources, listing every id used if not already inline.

Clarity, brevity and rigorous sourcing are paramount."""

BOILERPLATE_SYSTEM_PROMPT = """--- Who will receive this (audience) ---
(e.g., "Portfolio managers", "Investment committee", "Equity research team")

--- Background information ---
(e.g., "Analyzing quarterly earnings reports from several tech companies.")

--- Task definition, what you expect it to do, the vision ---
(e.g., "Summarize shifts in analyst ratings and price targets across the provided reports.")

--- Examples of good outputs (optional) ---
(e.g., "Paste a snippet of an analysis you liked here.")

--- Desired output structure (optional) ---
(e.g., "1. Executive TLDR (3-5 bullets). 2. Breakdown by research house. 3. Appendix listing sources.")"""

DEFAULT_SYSTEM_PROMPTS: dict[str, str] = {
    DEFAULT_PROMPT_NAME: DEFAULT_SYSTEM_PROMPT,
    "Boilerplate System Prompt": BOILERPLATE_SYSTEM_PROMPT,
}


def format_history(history: Sequence[ConversationMessage]) -> str:
    return "\n".join(f"{message.role}: {message.content}" for message in history)


@dataclass(frozen=True)
class PromptAssembler:
    """Builds citation-tagged prompts from retrieved passages."""

    no_context_text: str = NO_CONTEXT_TEXT

    @staticmethod
    def format_passage(passage: RetrievedPassage) -> str:
        if passage.source_file:
            return f"[Source ID: {passage.id}, sourcefile: {passage.source_file}] {passage.text}"
        return f"[Source ID: {passage.id}] {passage.text}"

    def build_context(self, passages: Sequence[RetrievedPassage]) -> str:
        blocks = [self.format_passage(passage) for passage in passages if not passage.is_sentinel]
        if not blocks:
            return self.no_context_text
        return "\n\n".join(blocks)

    def build_prompt(
        self,
        passages: Sequence[RetrievedPassage],
        query: str,
        history: Sequence[ConversationMessage] = (),
        citation_instructions: str = CITATION_INSTRUCTIONS,
    ) -> str:
        sections = [citation_instructions.strip(), f"Retrieved Context:\n{self.build_context(passages)}"]
        if history:
            sections.append(f"Conversation so far:\n{format_history(history)}")
        sections.append(f"Question: {query}")
        return "\n\n".join(sections)
