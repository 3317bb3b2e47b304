"""Voice Tools - Function definitions exposed to the realtime voice endpoint.

The voice model asks the session to do work by calling one of five tools.
Three of them (investigate, plan, execute) start a coding-agent task with
a bounded turn budget; get_status and cancel are answered locally.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from voicedev.config.constants import LIMITS
from voicedev.exceptions import ToolArgumentError, UnknownToolError


class ToolName(str, Enum):
    """Tool names understood by the orchestrator."""

    INVESTIGATE = "investigate"
    PLAN = "plan"
    EXECUTE = "execute"
    GET_STATUS = "get_status"
    CANCEL = "cancel"


# Tools that start an agent task
AGENT_TOOLS = frozenset({ToolName.INVESTIGATE, ToolName.PLAN, ToolName.EXECUTE})

REQUIRED_FIELDS: dict[ToolName, tuple[str, ...]] = {
    ToolName.INVESTIGATE: ("query",),
    ToolName.PLAN: ("feature",),
    ToolName.EXECUTE: ("task",),
    ToolName.GET_STATUS: (),
    ToolName.CANCEL: (),
}


def _string_param(description: str) -> dict[str, str]:
    return {"type": "string", "description": description}


VOICE_TOOLS: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": ToolName.INVESTIGATE.value,
        "description": (
            "Explore the codebase to understand how something works or answer a "
            "question about the code. Use this before planning or executing changes."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": _string_param("What to investigate or find out about the codebase"),
                "scope": _string_param("Optional: specific files or directories to focus on"),
            },
            "required": ["query"],
        },
    },
    {
        "type": "function",
        "name": ToolName.PLAN.value,
        "description": (
            "Create a detailed implementation plan for a feature or change. "
            "Returns a structured plan with tasks."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "feature": _string_param("Description of the feature or change to plan"),
                "constraints": _string_param("Optional: any constraints or requirements"),
            },
            "required": ["feature"],
        },
    },
    {
        "type": "function",
        "name": ToolName.EXECUTE.value,
        "description": "Implement changes to the codebase. Use after investigating and/or planning.",
        "parameters": {
            "type": "object",
            "properties": {
                "task": _string_param("What to implement or change"),
                "approach": _string_param("Optional: specific approach or plan to follow"),
            },
            "required": ["task"],
        },
    },
    {
        "type": "function",
        "name": ToolName.GET_STATUS.value,
        "description": "Get the current status of Claude Code - what it is doing right now.",
        "parameters": {"type": "object", "properties": {}, "required": []},
    },
    {
        "type": "function",
        "name": ToolName.CANCEL.value,
        "description": "Cancel the current Claude Code operation.",
        "parameters": {
            "type": "object",
            "properties": {
                "reason": _string_param("Optional: reason for cancellation"),
            },
            "required": [],
        },
    },
]


@dataclass(frozen=True)
class AgentTask:
    """Prompt and turn budget for one agent-backed tool call."""

    tool: ToolName
    prompt: str
    max_turns: int


def resolve_tool(name: str) -> ToolName:
    """Map a tool name from the wire to ToolName.

    Raises:
        UnknownToolError: If the name is not one of the five tools
    """
    try:
        return ToolName(name)
    except ValueError:
        raise UnknownToolError(name) from None


def parse_tool_args(name: ToolName, args_json: str | None) -> dict[str, Any]:
    """Parse and check tool-call arguments.

    An empty or missing argument string is treated as an empty object.

    Raises:
        ToolArgumentError: Malformed JSON, a non-object, or a missing
            required field
    """
    if args_json is None or not args_json.strip():
        args: Any = {}
    else:
        try:
            args = json.loads(args_json)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(name.value, f"invalid JSON ({e.msg})", args_json) from e

    if not isinstance(args, dict):
        raise ToolArgumentError(name.value, "arguments must be a JSON object", args_json)

    for field_name in REQUIRED_FIELDS[name]:
        value = args.get(field_name)
        if not isinstance(value, str) or not value.strip():
            raise ToolArgumentError(
                name.value, f"missing required field '{field_name}'", args_json
            )

    return args


def build_task(name: ToolName, args: dict[str, Any]) -> AgentTask:
    """Compose the agent prompt and turn budget for an agent-backed tool.

    Raises:
        ValueError: If name is not an agent-backed tool
    """
    if name is ToolName.INVESTIGATE:
        prompt = f"Investigate: {args['query']}"
        if args.get("scope"):
            prompt += f"\nFocus on: {args['scope']}"
        return AgentTask(name, prompt, LIMITS.INVESTIGATE_MAX_TURNS)

    if name is ToolName.PLAN:
        prompt = f"Create a detailed implementation plan for: {args['feature']}"
        if args.get("constraints"):
            prompt += f"\nConstraints: {args['constraints']}"
        return AgentTask(name, prompt, LIMITS.PLAN_MAX_TURNS)

    if name is ToolName.EXECUTE:
        prompt = args["task"]
        if args.get("approach"):
            prompt += f"\n\nApproach: {args['approach']}"
        return AgentTask(name, prompt, LIMITS.EXECUTE_MAX_TURNS)

    raise ValueError(f"{name.value} does not run an agent task")
