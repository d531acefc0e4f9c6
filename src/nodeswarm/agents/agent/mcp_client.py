"""MCP (Model Context Protocol) tool executor.

Exposes the tools of one or more MCP servers through the ``ToolExecutor``
contract. Tool schemas are fetched on first use through ``list_tools``.

Example MCP servers:
    - filesystem: File operations
    - github: GitHub API
    - postgres: Database queries
"""

import asyncio
import json
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from loguru import logger
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client

from ..errors import ToolExecutionError
from .base import ToolExecutor


@dataclass
class MCPServerConfig:
    """Configuration for an MCP server launched over stdio."""
    command: str
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None


def _render_result(result: Any) -> str:
    """Flatten an MCP ``CallToolResult`` into text."""
    if not getattr(result, "content", None):
        return str(result)
    parts = []
    for item in result.content:
        if hasattr(item, "text"):
            parts.append(item.text)
        elif hasattr(item, "data"):
            parts.append(json.dumps(item.data))
        else:
            parts.append(str(item))
    return "\n".join(parts)


class MCPToolExecutor(ToolExecutor):
    """``ToolExecutor`` over one or more ``mcp.ClientSession``s.

    Tools are addressed as ``<server>_<tool>``; a session registered with
    ``prefix=False`` exposes its tools under their bare names.
    """

    def __init__(self):
        self.sessions: Dict[str, ClientSession] = {}
        self._prefixed: Dict[str, bool] = {}
        self._tools: Optional[Dict[str, Dict[str, Any]]] = None
        self._lock = asyncio.Lock()
        self._exit_stack = AsyncExitStack()

    def add_session(self, server_name: str, session: ClientSession, prefix: bool = True) -> "MCPToolExecutor":
        """Register an already-initialized session."""
        self.sessions[server_name] = session
        self._prefixed[server_name] = prefix
        self._tools = None
        return self

    async def connect_server(self, server_name: str, config: MCPServerConfig) -> None:
        """Launch an MCP server over stdio and register its session.

        Example:
            config = MCPServerConfig(
                command="npx",
                args=["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]
            )
            await executor.connect_server("filesystem", config)
        """
        logger.info(f"[MCP] Connecting to server '{server_name}'...")
        params = StdioServerParameters(
            command=config.command,
            args=config.args,
            env=config.env or None,
            cwd=config.cwd
        )
        read, write = await self._exit_stack.enter_async_context(stdio_client(params))
        session = await self._exit_stack.enter_async_context(ClientSession(read, write))
        await session.initialize()
        self.add_session(server_name, session)
        logger.info(f"[MCP] Connected to '{server_name}'")

    async def disconnect_all(self) -> None:
        """Close every server launched through ``connect_server``."""
        logger.info(f"[MCP] Disconnecting {len(self.sessions)} server(s)")
        await self._exit_stack.aclose()
        self._exit_stack = AsyncExitStack()
        self.sessions.clear()
        self._prefixed.clear()
        self._tools = None

    async def _catalog(self) -> Dict[str, Dict[str, Any]]:
        if self._tools is not None:
            return self._tools
        async with self._lock:
            if self._tools is None:
                tools: Dict[str, Dict[str, Any]] = {}
                for server_name, session in self.sessions.items():
                    listed = await session.list_tools()
                    for tool in listed.tools:
                        name = f"{server_name}_{tool.name}" if self._prefixed[server_name] else tool.name
                        tools[name] = {
                            "server": server_name,
                            "remote_name": tool.name,
                            "description": tool.description or f"MCP tool: {tool.name}",
                            "input_schema": getattr(tool, "inputSchema", None) or {"type": "object", "properties": {}}
                        }
                    logger.debug(f"[MCP] '{server_name}' lists {len(listed.tools)} tool(s)")
                self._tools = tools
        return self._tools

    async def tool_info(self, name: str) -> Optional[Dict[str, Any]]:
        entry = (await self._catalog()).get(name)
        if entry is None:
            return None
        return {"description": entry["description"], "input_schema": entry["input_schema"]}

    async def execute(self, tool_name: str, args: Dict[str, Any]) -> str:
        entry = (await self._catalog()).get(tool_name)
        if entry is None:
            raise ToolExecutionError(tool_name, "unknown MCP tool")

        session = self.sessions[entry["server"]]
        logger.info(f"[MCP] Calling '{entry['remote_name']}' on '{entry['server']}' with args: {args}")
        try:
            result = await session.call_tool(name=entry["remote_name"], arguments=args)
        except Exception as e:
            raise ToolExecutionError(tool_name, str(e)) from e

        output = _render_result(result)
        if getattr(result, "isError", False):
            raise ToolExecutionError(tool_name, output)
        logger.debug(f"[MCP] Tool '{tool_name}' result preview: {output[:200]}")
        return output
