"""
Knowledge search tool. Looks up procedures, eligibility and document
requirements in the local knowledge base.
"""

from pydantic import BaseModel, Field

from ..core.errors import AdapterError
from ..services import knowledge
from .registry import ToolResult, tool

MAX_SNIPPET_CHARS = 800


class SearchKnowledgeInput(BaseModel):
    query: str = Field(
        min_length=2,
        description="2-6 key terms, e.g. 'PAN card eligibility documents'. Not the full question.",
    )
    limit: int = Field(default=4, ge=1, le=10)


@tool(
    name="search_knowledge",
    description=(
        "Search the knowledge base of government-form guidance: eligibility, required documents, "
        "fees, processing times and procedures. Use for factual questions about a form or process. "
        "Returns matching passages with their source file, or 'No matching passages found'."
    ),
    input_model=SearchKnowledgeInput,
)
async def search_knowledge(args: SearchKnowledgeInput, **kwargs) -> ToolResult:
    try:
        results = await knowledge.search(args.query, limit=args.limit)
    except AdapterError as e:
        return ToolResult(content=f"Error: knowledge search is unavailable right now ({e.capability}).")

    if not results:
        return ToolResult(content="No matching passages found.")

    passages = [
        f"[{i}] ({r['source']}) {r['content'][:MAX_SNIPPET_CHARS]}"
        for i, r in enumerate(results, 1)
    ]
    return ToolResult(content="\n\n".join(passages))
