"""Tool dispatch: routes a tool name to its server-side handler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Dict

from app.chains.graph_tools.executor import GraphMutationExecutor
from app.chains.graph_tools.normalize import is_graph_tool
from app.core.logging import get_logger
from app.core.retrieval import RetrievalFusionEngine
from app.core.schemas_tools import MutationActor
from app.db.graph_store import GraphStore

logger = get_logger(__name__)


@dataclass
class ToolExecutionContext:
    """Everything a tool handler may touch for one project and actor."""

    project_id: str
    actor: MutationActor
    store: GraphStore
    engine: RetrievalFusionEngine
    executor: GraphMutationExecutor


# Lazy-import handler map, populated on first call
_HANDLER_MAP: Dict[str, Callable[..., Coroutine[Any, Any, Dict[str, Any]]]] | None = None


def _build_handler_map() -> Dict[str, Callable[..., Coroutine[Any, Any, Dict[str, Any]]]]:
    from .tools_search import _get_entity, _read_document, _search_context

    return {
        "search_context": _search_context,
        "read_document": _read_document,
        "get_entity": _get_entity,
    }


def has_server_handler(tool_name: str) -> bool:
    global _HANDLER_MAP
    if _HANDLER_MAP is None:
        _HANDLER_MAP = _build_handler_map()
    return is_graph_tool(tool_name) or tool_name in _HANDLER_MAP


async def execute_tool(
    ctx: ToolExecutionContext,
    tool_name: str,
    tool_input: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Execute a tool and return its JSON-ready result.

    Unexpected errors are logged and returned as {"error": ...} so the model
    can see them instead of the turn failing.
    """
    global _HANDLER_MAP
    if _HANDLER_MAP is None:
        _HANDLER_MAP = _build_handler_map()

    try:
        logger.info(f"Executing tool {tool_name} for project {ctx.project_id}")

        if is_graph_tool(tool_name):
            result = await ctx.executor.execute(ctx.project_id, tool_name, tool_input, ctx.actor)
            return result.to_tool_result()

        handler = _HANDLER_MAP.get(tool_name)
        if handler is None:
            return {"error": f"Unknown tool: {tool_name}"}

        return await handler(ctx, tool_input)

    except Exception as e:
        logger.error(f"Error executing tool {tool_name}: {e}", exc_info=True)
        return {"success": False, "error": str(e)}
