"""In-process tool executor."""

from typing import Any, Dict, List, Optional
from loguru import logger

from ..errors import ToolExecutionError
from .base import ToolExecutor
from .tool_base import BaseTool


class LocalToolExecutor(ToolExecutor):
    """Runs ``BaseTool`` instances registered in this process."""

    def __init__(self, tools: Optional[List[BaseTool]] = None):
        self.tool_map: Dict[str, BaseTool] = {}
        for tool in tools or []:
            self.add(tool)

    def add(self, tool: BaseTool) -> "LocalToolExecutor":
        if tool.name in self.tool_map:
            raise ValueError(f"Tool '{tool.name}' already registered")
        self.tool_map[tool.name] = tool
        return self

    @property
    def names(self) -> List[str]:
        return list(self.tool_map)

    async def execute(self, tool_name: str, args: Dict[str, Any]) -> str:
        tool = self.tool_map.get(tool_name)
        if tool is None:
            raise ToolExecutionError(tool_name, "unknown tool")
        logger.debug(f"[TOOLS] Executing '{tool_name}' with args: {args}")
        return await tool.arun(args)

    async def tool_info(self, name: str) -> Optional[Dict[str, Any]]:
        tool = self.tool_map.get(name)
        if tool is None:
            return None
        definition = tool.definition()
        return {"description": definition["description"], "input_schema": definition["input_schema"]}
