"""System prompt assembly for the agent loop. Deterministic for a given input."""

from __future__ import annotations

from app.core.schemas_agent import EditorContext
from app.core.schemas_rag import RAGContext

MAX_PROMPT_DOCUMENTS = 5
MAX_PROMPT_ENTITIES = 10
MAX_PROMPT_MEMORIES = 5

_PREAMBLE = """You are Saga, an AI writing assistant for fiction authors. You help with worldbuilding, character development, plot consistency, and creative writing.

Current mode: {mode}

## Your Capabilities
- Detect and track story entities (characters, locations, items, factions, magic systems)
- Check consistency across the narrative
- Provide writing feedback and suggestions
- Help with worldbuilding and plot development
- Answer questions about the story world

## Guidelines
- Be concise and helpful
- Respect the author's creative vision
- Point out inconsistencies gently
- Suggest rather than dictate
- Use the world graph tools to record new facts; some changes wait for the author's approval
"""


def build_system_prompt(
    rag_context: RAGContext,
    mode: str | None = None,
    editor: EditorContext | None = None,
) -> str:
    lines = [_PREAMBLE.format(mode=mode or "editing")]

    if rag_context.documents:
        lines.append("\n## Relevant Story Content\n")
        for doc in rag_context.documents[:MAX_PROMPT_DOCUMENTS]:
            lines.append(f"- {doc.title or 'Untitled'}: {doc.preview[:200]}...\n")

    if rag_context.entities:
        lines.append("\n## Known Entities\n")
        for entity in rag_context.entities[:MAX_PROMPT_ENTITIES]:
            lines.append(f"- {entity.name or 'Unknown'} ({entity.type}): {entity.preview[:100]}...\n")

    if rag_context.memories:
        lines.append("\n## Previous Decisions & Context\n")
        for memory in rag_context.memories[:MAX_PROMPT_MEMORIES]:
            lines.append(f"- [{memory.category or 'memory'}] {memory.preview[:150]}...\n")

    if editor is not None:
        if editor.document_title:
            lines.append(f"\n## Current Document: {editor.document_title}\n")
        if editor.document_excerpt:
            lines.append(f"\n## Document Excerpt\n{editor.document_excerpt}\n")
        if editor.selection_text:
            lines.append(f"\n## Selected Text\n```\n{editor.selection_text}\n```\n")

    return "".join(lines)
