from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from microagent.core.errors import ToolParameterError


class DataType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


class ToolCategory(str, Enum):
    DATABASE = "database"
    API = "api"
    FILE_SYSTEM = "file_system"
    NOTIFICATION = "notification"
    CALCULATION = "calculation"
    MCP_SERVER = "mcp_server"
    CUSTOM = "custom"


_PYTHON_TYPES: dict[DataType, tuple[type, ...]] = {
    DataType.STRING: (str,),
    DataType.INTEGER: (int,),
    DataType.FLOAT: (int, float),
    DataType.BOOLEAN: (bool,),
    DataType.OBJECT: (dict,),
    DataType.ARRAY: (list, tuple),
}


def _matches(data_type: DataType, value: Any) -> bool:
    if isinstance(value, bool) and data_type is not DataType.BOOLEAN:
        return False
    return isinstance(value, _PYTHON_TYPES[data_type])


class ParameterDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: DataType = DataType.STRING
    required: bool = False
    description: str = ""
    default: Any = None


class OutputSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: DataType = DataType.STRING
    description: str = ""
    format: str | None = None


class ToolSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    parameters: list[ParameterDefinition] = Field(default_factory=list)
    output: OutputSchema = Field(default_factory=OutputSchema)

    def bind(self, parameters: dict[str, Any]) -> dict[str, Any]:
        """Checks declared parameters and fills defaults; undeclared ones pass through."""
        bound = dict(parameters)
        problems: list[str] = []
        for definition in self.parameters:
            value = bound.get(definition.name)
            if value is None:
                if definition.default is not None:
                    bound[definition.name] = definition.default
                elif definition.required:
                    problems.append(f"missing required parameter '{definition.name}'")
                continue
            if not _matches(definition.type, value):
                problems.append(
                    f"parameter '{definition.name}' must be {definition.type.value}, got {type(value).__name__}"
                )
        if problems:
            raise ToolParameterError("; ".join(problems), stage="execution")
        return bound


class ToolMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str = "1.0"
    category: ToolCategory = ToolCategory.CUSTOM
