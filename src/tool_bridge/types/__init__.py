from .tool import Instruction, ToolCallRequest, ToolSpec
from .result import ToolResult
from .connection import ConnectionState

__all__ = [
    "Instruction",
    "ToolCallRequest",
    "ToolSpec",
    "ToolResult",
    "ConnectionState",
]
