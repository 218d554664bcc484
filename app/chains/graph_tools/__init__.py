"""World-graph and retrieval tools for the writing agent: package barrel exports."""

from .definitions import get_tool_definitions
from .dispatcher import ToolExecutionContext, execute_tool, has_server_handler
from .executor import GraphMutationExecutor
from .normalize import GRAPH_TOOL_NAMES, is_graph_tool, normalize_graph_tool_call
from .preview import build_approval_preview

__all__ = [
    "get_tool_definitions",
    "execute_tool",
    "has_server_handler",
    "ToolExecutionContext",
    "GraphMutationExecutor",
    "GRAPH_TOOL_NAMES",
    "is_graph_tool",
    "normalize_graph_tool_call",
    "build_approval_preview",
]
