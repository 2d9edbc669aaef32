"""
Tool Bridge - route tool directives found in LLM output to JSON-RPC tool backends.
"""

import logging

from .bridge import ToolBridge
from .config import BackendConfig, BridgeSettings, TransportKind, backends_from_env, load_backends
from .dispatcher import DispatchOutcome, Dispatcher
from .errors import (
    ConnectTimeout,
    InvalidInstruction,
    MaxAttemptsExceeded,
    PeerClosed,
    RequestTimeout,
    RpcError,
    SpawnError,
    ToolBridgeError,
    UnknownBackend,
    UnknownTool,
)
from .extractor import clean_response_text, extract_instruction
from .prompts import build_tool_prompt
from .registry import ToolRegistry
from .response import ChatResponse
from .supervisor import ConnectionSupervisor
from .types import ConnectionState, Instruction, ToolCallRequest, ToolResult, ToolSpec

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ToolBridge",
    "BackendConfig",
    "BridgeSettings",
    "TransportKind",
    "backends_from_env",
    "load_backends",
    "Dispatcher",
    "DispatchOutcome",
    "ConnectionSupervisor",
    "ToolRegistry",
    "ChatResponse",
    "ConnectionState",
    "Instruction",
    "ToolCallRequest",
    "ToolResult",
    "ToolSpec",
    "extract_instruction",
    "clean_response_text",
    "build_tool_prompt",
    "ToolBridgeError",
    "SpawnError",
    "ConnectTimeout",
    "RequestTimeout",
    "PeerClosed",
    "RpcError",
    "InvalidInstruction",
    "UnknownBackend",
    "UnknownTool",
    "MaxAttemptsExceeded",
]
