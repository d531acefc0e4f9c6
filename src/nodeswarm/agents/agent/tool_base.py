"""Tool base classes and lazily-described remote tools."""

import asyncio
import inspect
from typing import Optional, Type, Dict, Any, Callable, List
from abc import ABC, abstractmethod
from pydantic import BaseModel, ValidationError, create_model
from loguru import logger

from ..errors import ToolExecutionError
from .base import ToolExecutor

EMPTY_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}


class BaseTool(ABC):
    """Base class for local tools.

    Arguments are validated against ``args_schema`` (a pydantic model)
    before ``_arun`` is called.
    """

    name: str
    description: str
    args_schema: Optional[Type[BaseModel]] = None

    def __init__(self):
        """Initialize the tool."""
        if not hasattr(self, 'name'):
            self.name = self.__class__.__name__.lower().replace('tool', '')
        if not hasattr(self, 'description'):
            self.description = self.__class__.__doc__ or "No description available"

    @abstractmethod
    async def _arun(self, **kwargs) -> Any:
        """Execute the tool's action."""
        raise NotImplementedError("Tool must implement _arun method")

    @property
    def input_schema(self) -> Dict[str, Any]:
        if self.args_schema is None:
            return dict(EMPTY_SCHEMA)
        return self.args_schema.model_json_schema()

    def definition(self) -> Dict[str, Any]:
        """Schema handed to the LLM."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema
        }

    async def arun(self, tool_input: Dict[str, Any]) -> str:
        """Validate arguments and run the tool.

        Args:
            tool_input: Dictionary of arguments for the tool

        Returns:
            Result of the tool execution as a string

        Raises:
            ToolExecutionError: If validation or execution fails
        """
        if self.args_schema:
            try:
                tool_input = self.args_schema(**tool_input).model_dump()
            except ValidationError as e:
                raise ToolExecutionError(self.name, f"invalid arguments: {e}") from e

        try:
            result = await self._arun(**tool_input)
        except ToolExecutionError:
            raise
        except Exception as e:
            raise ToolExecutionError(self.name, str(e)) from e
        return result if isinstance(result, str) else str(result)


class StructuredTool(BaseTool):
    """A tool created from a sync or async function."""

    def __init__(
        self,
        name: str,
        description: str,
        func: Callable,
        args_schema: Optional[Type[BaseModel]] = None
    ):
        self.name = name
        self.description = description
        self.func = func
        self.args_schema = args_schema or _schema_from_signature(name, func)

    @classmethod
    def from_function(
        cls,
        func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
        args_schema: Optional[Type[BaseModel]] = None
    ) -> 'StructuredTool':
        tool_name = name or func.__name__
        tool_description = description or inspect.getdoc(func) or f"Tool {tool_name}"
        return cls(
            name=tool_name,
            description=tool_description,
            func=func,
            args_schema=args_schema
        )

    async def _arun(self, **kwargs) -> Any:
        if inspect.iscoroutinefunction(self.func):
            return await self.func(**kwargs)
        return self.func(**kwargs)


def _schema_from_signature(name: str, func: Callable) -> Type[BaseModel]:
    fields: Dict[str, Any] = {}
    for param in inspect.signature(func).parameters.values():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = param.annotation if param.annotation is not inspect.Parameter.empty else Any
        default = param.default if param.default is not inspect.Parameter.empty else ...
        fields[param.name] = (annotation, default)
    model_name = "".join(part.capitalize() for part in name.split("_")) + "Input"
    return create_model(model_name, **fields)


def tool(
    name: Optional[str] = None,
    description: Optional[str] = None,
    args_schema: Optional[Type[BaseModel]] = None
):
    """Decorator to create a tool from a function.

    Usage:
        @tool(name="read_file")
        async def read_file(file_path: str) -> str:
            ...
    """
    def decorator(func: Callable) -> StructuredTool:
        return StructuredTool.from_function(func, name=name, description=description, args_schema=args_schema)
    return decorator


class ToolStub:
    """Tool whose description and schema are fetched on first use.

    Concurrent first access triggers exactly one ``tool_info`` call: the
    fetch runs under a lock and the loaded flag is re-checked after the
    lock is acquired.
    """

    def __init__(
        self,
        executor: ToolExecutor,
        name: str,
        description: Optional[str] = None,
        schema: Optional[Dict[str, Any]] = None
    ):
        self.executor = executor
        self.name = name
        self._description = description
        self._input_schema = schema
        self._loaded = schema is not None
        self._lock = asyncio.Lock()
        self.found = True

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def ensure_loaded(self) -> None:
        if self._loaded:
            return

        async with self._lock:
            if self._loaded:
                return

            info = await self.executor.tool_info(self.name)
            if info:
                self._description = info.get("description") or self._description
                self._input_schema = info.get("input_schema")
            else:
                self.found = False
                logger.warning(f"[TOOLS] Tool '{self.name}' not found during schema fetch")
            self._loaded = True

    async def definition(self) -> Dict[str, Any]:
        await self.ensure_loaded()
        return {
            "name": self.name,
            "description": self._description or f"Tool: {self.name}",
            "input_schema": self._input_schema or dict(EMPTY_SCHEMA)
        }

    async def arun(self, tool_input: Dict[str, Any]) -> str:
        # The executor validates arguments; the schema is not needed to call.
        return await self.executor.execute(self.name, tool_input)


class ToolCatalog:
    """Shared cache of ``ToolStub``s keyed by tool name."""

    def __init__(self, executor: Optional[ToolExecutor] = None):
        self.executor = executor
        self._stubs: Dict[str, ToolStub] = {}

    def stub(self, name: str) -> ToolStub:
        if self.executor is None:
            raise ToolExecutionError(name, "no tool executor configured")
        existing = self._stubs.get(name)
        if existing is None:
            existing = ToolStub(self.executor, name)
            self._stubs[name] = existing
        return existing

    async def definitions(self, names: List[str]) -> List[Dict[str, Any]]:
        """Schemas for the named tools, skipping ones the executor lacks."""
        definitions = []
        for name in names:
            stub = self.stub(name)
            definition = await stub.definition()
            if stub.found:
                definitions.append(definition)
        return definitions
