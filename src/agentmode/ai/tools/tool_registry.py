"""Tool registry and the function-calling schemas exposed to the model.

Schemas are declared once here and rendered to the OpenAI function-calling
format (``{"type": "function", "function": {...}}``) by
:meth:`ToolRegistry.to_openai_tools`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from ...editor.line_edits import EDIT_KINDS

LOGGER = logging.getLogger(__name__)


def _object_schema(members: Sequence["ParameterSchema"]) -> dict[str, Any]:
    schema: dict[str, Any] = {
        "type": "object",
        "properties": {member.name: member.to_json_schema() for member in members},
        "additionalProperties": False,
    }
    required = [member.name for member in members if member.required]
    if required:
        schema["required"] = required
    return schema


# -----------------------------------------------------------------------------
# Schema types
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ParameterSchema:
    """One JSON Schema property of a tool's arguments.

    ``properties`` describes the members of an ``object`` parameter and
    ``items`` the element schema of an ``array`` parameter.
    """

    name: str
    type: str
    description: str
    required: bool = False
    default: Any = None
    enum: Sequence[Any] | None = None
    minimum: int | float | None = None
    properties: Sequence["ParameterSchema"] | None = None
    items: "ParameterSchema" | None = None

    def to_json_schema(self) -> dict[str, Any]:
        schema = _object_schema(self.properties) if self.properties else {"type": self.type}
        schema["description"] = self.description
        optional = {"default": self.default, "minimum": self.minimum}
        schema.update({key: value for key, value in optional.items() if value is not None})
        if self.enum:
            schema["enum"] = list(self.enum)
        if self.items is not None:
            schema["items"] = self.items.to_json_schema()
        return schema


@dataclass(slots=True)
class ToolSchema:
    """Name, description and arguments of one tool.

    ``writes_document`` marks tools whose effect on the vault is gated by a
    user confirmation and refused in ask mode.
    """

    name: str
    description: str
    parameters: Sequence[ParameterSchema] = field(default_factory=list)
    writes_document: bool = False

    def to_json_schema(self) -> dict[str, Any]:
        return _object_schema(self.parameters)

    def to_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.to_json_schema(),
            },
        }


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


class ToolRegistry:
    """Tools by name, in registration order, each individually switchable.

    A disabled tool is neither offered to the model nor resolvable by
    :meth:`get_tool`, so the dispatcher treats it as unknown.
    """

    def __init__(self) -> None:
        self._entries: dict[str, tuple[Any, ToolSchema]] = {}
        self._disabled: set[str] = set()

    def register(self, tool: Any, *, schema: ToolSchema, enabled: bool = True) -> None:
        """Register ``tool`` under ``schema.name``, replacing any previous entry."""
        self._entries[schema.name] = (tool, schema)
        self.set_enabled(schema.name, enabled)
        LOGGER.debug("Registered tool %s (writes=%s)", schema.name, schema.writes_document)

    def unregister(self, name: str) -> bool:
        self._disabled.discard(name)
        return self._entries.pop(name, None) is not None

    def get_tool(self, name: str) -> Any | None:
        return self._entries[name][0] if self.has_tool(name) else None

    def get_schema(self, name: str) -> ToolSchema | None:
        entry = self._entries.get(name)
        return entry[1] if entry else None

    def has_tool(self, name: str) -> bool:
        return name in self._entries and name not in self._disabled

    def list_tools(self, *, enabled_only: bool = True) -> list[str]:
        return [name for name in self._entries if not enabled_only or name not in self._disabled]

    def set_enabled(self, name: str, enabled: bool) -> bool:
        if name not in self._entries:
            return False
        if enabled:
            self._disabled.discard(name)
        else:
            self._disabled.add(name)
        return True

    def to_openai_tools(self, *, enabled_only: bool = True) -> list[dict[str, Any]]:
        return [self._entries[name][1].to_openai_tool() for name in self.list_tools(enabled_only=enabled_only)]


# -----------------------------------------------------------------------------
# Schema definitions
# -----------------------------------------------------------------------------


EXPLANATION_PARAM = ParameterSchema(
    name="explanation",
    type="string",
    description="One sentence explaining why this tool is being used and how it contributes to the goal.",
    required=True,
)

FILE_PATH_PARAM = ParameterSchema(
    name="file_path",
    type="string",
    description="Vault-relative path of the note, including the .md extension (e.g. 'Projects/plan.md').",
    required=True,
)

VAULT_SEARCH_SCHEMA = ToolSchema(
    name="vault_search",
    description=(
        "Semantic search over the notes in the vault. Returns the five most relevant "
        "notes with their paths, similarity scores and a content preview."
    ),
    parameters=[
        ParameterSchema(
            name="query",
            type="string",
            description="What to search for, phrased as a natural-language query.",
            required=True,
        ),
        EXPLANATION_PARAM,
        ParameterSchema(
            name="target_subpaths",
            type="array",
            description="Optional folder prefixes to restrict the search to.",
            items=ParameterSchema(name="subpath", type="string", description="Folder prefix."),
        ),
    ],
)

READ_FILE_SCHEMA = ToolSchema(
    name="read_file",
    description=(
        "Read a note from the vault. Returns the whole note, or the inclusive 1-indexed "
        "line range [start_line, end_line] with line numbers. Read a note before editing it."
    ),
    parameters=[
        FILE_PATH_PARAM,
        ParameterSchema(
            name="start_line",
            type="integer",
            description="First line to read (1-indexed, inclusive).",
            minimum=1,
        ),
        ParameterSchema(
            name="end_line",
            type="integer",
            description="Last line to read (1-indexed, inclusive).",
            minimum=1,
        ),
        ParameterSchema(
            name="read_entire_note",
            type="boolean",
            description="Read the whole note, ignoring start_line/end_line.",
            default=False,
        ),
        EXPLANATION_PARAM,
    ],
)

EDIT_OPERATION_PARAM = ParameterSchema(
    name="edit",
    type="object",
    description="A single line-based edit.",
    properties=[
        ParameterSchema(
            name="operation",
            type="string",
            description=(
                "'insert' adds content after start_line, 'delete' removes lines "
                "start_line..end_line, 'replace' swaps lines start_line..end_line for content."
            ),
            required=True,
            enum=list(EDIT_KINDS),
        ),
        ParameterSchema(
            name="start_line",
            type="integer",
            description="1-indexed line the edit starts at (for insert: the line to insert after).",
            required=True,
            minimum=1,
        ),
        ParameterSchema(
            name="end_line",
            type="integer",
            description="Inclusive last line for delete/replace.",
            minimum=1,
        ),
        ParameterSchema(
            name="content",
            type="string",
            description="New text for insert/replace. May span several lines.",
        ),
        ParameterSchema(
            name="description",
            type="string",
            description="Short human-readable summary of this edit.",
            required=True,
        ),
    ],
)

EDIT_FILE_SCHEMA = ToolSchema(
    name="edit_file",
    description=(
        "Propose line-based edits to an existing note. Edits must not overlap and use the "
        "line numbers of the note as it is now. The user reviews a diff and accepts or "
        "rejects the change before anything is written."
    ),
    parameters=[
        FILE_PATH_PARAM,
        ParameterSchema(
            name="instructions",
            type="string",
            description="Summary of the overall change, shown to the user.",
            required=True,
        ),
        ParameterSchema(
            name="edits",
            type="array",
            description="The edits to apply, all against the current line numbering.",
            required=True,
            items=EDIT_OPERATION_PARAM,
        ),
        EXPLANATION_PARAM,
    ],
    writes_document=True,
)

CREATE_FILE_SCHEMA = ToolSchema(
    name="create_file",
    description=(
        "Create a new note. Fails if a note already exists at the path. Missing folders are "
        "created. The user must confirm before the note is written."
    ),
    parameters=[
        FILE_PATH_PARAM,
        ParameterSchema(
            name="content",
            type="string",
            description="Full markdown content of the new note.",
            required=True,
        ),
        EXPLANATION_PARAM,
    ],
    writes_document=True,
)

LIST_VAULT_SCHEMA = ToolSchema(
    name="list_vault",
    description=(
        "List the folders and notes directly inside a vault folder. Use '' or '/' for the "
        "vault root. At most 20 entries are returned."
    ),
    parameters=[
        ParameterSchema(
            name="vault_path",
            type="string",
            description="Vault-relative folder path; '' , '.' or '/' for the root.",
            required=True,
        ),
        EXPLANATION_PARAM,
    ],
)

DEFAULT_TOOL_SCHEMAS: tuple[ToolSchema, ...] = (
    VAULT_SEARCH_SCHEMA,
    READ_FILE_SCHEMA,
    EDIT_FILE_SCHEMA,
    CREATE_FILE_SCHEMA,
    LIST_VAULT_SCHEMA,
)


__all__ = [
    "ParameterSchema",
    "ToolSchema",
    "ToolRegistry",
    "VAULT_SEARCH_SCHEMA",
    "READ_FILE_SCHEMA",
    "EDIT_FILE_SCHEMA",
    "CREATE_FILE_SCHEMA",
    "LIST_VAULT_SCHEMA",
    "DEFAULT_TOOL_SCHEMAS",
]
