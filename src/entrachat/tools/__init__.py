"""
Tool schemas for entrachat.

The remote MCP server only tells us each tool's name and description, so the JSON Schema the
chat completion API needs for function calling comes from a static table kept here.  Tools the
table does not know about are still offered to the model, with an empty (unconstrained) schema.
"""

from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    NamedTuple,
    TypedDict,
)

from entrachat.core.schema import ToolDescriptor


class ParameterInfo(TypedDict):
    """
    JSON Schema fragment for a single tool parameter.
    """

    type: str
    description: str


class ParameterSchema(TypedDict):
    """
    Object schema for a tool's arguments.
    """

    type: str
    properties: Dict[str, ParameterInfo]
    required: List[str]


class RequiredArgument(NamedTuple):
    name: str
    description: str


SUGGEST_QUERIES_TOOL = "microsoft_graph_suggest_queries"
GRAPH_GET_TOOL = "microsoft_graph_get"
LIST_PROPERTIES_TOOL = "microsoft_graph_list_properties"

TOOL_PARAMETERS: Mapping[str, RequiredArgument] = {
    SUGGEST_QUERIES_TOOL: RequiredArgument(
        "intentDescription", "The intent description or query to search for"
    ),
    GRAPH_GET_TOOL: RequiredArgument(
        "relativeUrl", "The relative URL for the Microsoft Graph API call"
    ),
    LIST_PROPERTIES_TOOL: RequiredArgument(
        "entityName", "The entity name to list properties for"
    ),
}
"""Known remote tools and the single string argument each one requires."""

DEFAULT_DESCRIPTION = "No description available"


def build_parameter_schema(tool_name: str) -> ParameterSchema:
    """
    Return the argument schema for *tool_name*.

    Known tools get exactly one required string property; anything else gets an empty object
    schema so it stays callable.  A new dict is built on every call.
    """
    schema: ParameterSchema = {"type": "object", "properties": {}, "required": []}
    argument = TOOL_PARAMETERS.get(tool_name)
    if argument is not None:
        schema["properties"][argument.name] = {
            "type": "string",
            "description": argument.description,
        }
        schema["required"].append(argument.name)
    return schema


def describe_tool(name: str, description: str | None = None) -> ToolDescriptor:
    """Build the descriptor for a remote tool discovered at session start."""
    return ToolDescriptor(
        name=name,
        description=description or DEFAULT_DESCRIPTION,
        parameters=dict(build_parameter_schema(name)),
    )


def to_openai_tool(descriptor: ToolDescriptor) -> Dict[str, Any]:
    """Render *descriptor* as a chat-completions function tool."""
    return {
        "type": "function",
        "function": {
            "name": descriptor.name,
            "description": descriptor.description,
            "parameters": descriptor.parameters,
        },
    }


def get_tool_schemas(descriptors: Iterable[ToolDescriptor]) -> List[Dict[str, Any]]:
    """Function-tool definitions for every discovered tool."""
    return [to_openai_tool(descriptor) for descriptor in descriptors]
