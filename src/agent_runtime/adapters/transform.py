"""Cross-provider message transformation utilities."""
from __future__ import annotations

import hashlib
import json
from collections import defaultdict, deque
from typing import Any

from partial_json_parser import loads as partial_loads

from agent_runtime.logging import get_logger
from agent_runtime.types import Content, FunctionDeclaration, GenerationConfig, to_contents

logger = get_logger("adapters.transform")


def normalize_tool_call_id(original_id: str, max_length: int = 64) -> str:
    """Normalize a tool call ID to fit within provider limits.

    OpenAI generates long IDs (450+ chars); Anthropic requires max 64 chars.
    Uses SHA-256 hash prefix if ID exceeds max_length.
    """
    if len(original_id) <= max_length:
        return original_id
    hash_prefix = hashlib.sha256(original_id.encode()).hexdigest()[: max_length - 4]
    return f"tc_{hash_prefix}"


def parse_tool_arguments(raw: str | None) -> dict[str, Any]:
    """
    Decode tool-call arguments sent as a JSON string.

    Streams can end mid-object (for instance when the model hits its
    token limit), so truncated JSON is completed with partial_json_parser.
    Anything that still does not decode to an object becomes ``{}``.
    """
    if raw is None or not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        try:
            value = partial_loads(raw)
        except Exception as e:
            logger.warning("Dropping undecodable tool arguments %r: %s", raw[:200], e)
            return {}
    if not isinstance(value, dict):
        logger.warning("Tool arguments are not a JSON object: %r", raw[:200])
        return {}
    return value


class _CallIds:
    """Pairs function calls with their responses when the history carries no ids.

    Calls without an id get a synthetic one; a response without an id takes
    the oldest unanswered id issued for the same function name.
    """

    def __init__(self) -> None:
        self._pending: dict[str, deque[str]] = defaultdict(deque)
        self._counter = 0

    def for_call(self, name: str, call_id: str | None) -> str:
        self._counter += 1
        resolved = normalize_tool_call_id(call_id or f"call_{self._counter}_{name}")
        self._pending[name].append(resolved)
        return resolved

    def for_response(self, name: str, call_id: str | None) -> str:
        if call_id:
            resolved = normalize_tool_call_id(call_id)
            try:
                self._pending[name].remove(resolved)
            except ValueError:
                pass
            return resolved
        if self._pending[name]:
            return self._pending[name].popleft()
        self._counter += 1
        return f"call_{self._counter}_{name}"


def system_text(config: GenerationConfig) -> str | None:
    """Flatten the system instruction to plain text."""
    if config.system_instruction is None:
        return None
    parts = to_contents(config.system_instruction)[0].parts
    text = "\n".join(p.text for p in parts if p.text)
    return text or None


def _response_text(response: dict[str, Any]) -> str:
    if set(response) == {"output"} and isinstance(response["output"], str):
        return response["output"]
    return json.dumps(response)


# ---------------------------------------------------------------------------
# OpenAI chat completions
# ---------------------------------------------------------------------------


def to_openai_messages(
    contents: list[Content], config: GenerationConfig | None = None
) -> list[dict[str, Any]]:
    """Convert neutral contents to OpenAI chat messages.

    Function responses become ``tool`` messages; assistant tool calls
    that never received a response get a synthetic empty result so the
    API accepts the history.
    """
    messages: list[dict[str, Any]] = []
    system = system_text(config) if config else None
    if system:
        messages.append({"role": "system", "content": system})

    ids = _CallIds()
    answered: set[str] = set()
    for content in contents:
        texts = [p.text for p in content.parts if p.text and not p.thought]
        if content.role == "model":
            message: dict[str, Any] = {"role": "assistant", "content": "".join(texts) or None}
            calls = [
                {
                    "id": ids.for_call(p.function_call.name, p.function_call.id),
                    "type": "function",
                    "function": {
                        "name": p.function_call.name,
                        "arguments": json.dumps(p.function_call.args),
                    },
                }
                for p in content.parts
                if p.function_call
            ]
            if calls:
                message["tool_calls"] = calls
            if message["content"] is None and not calls:
                continue
            messages.append(message)
            continue

        for part in content.parts:
            if part.function_response:
                fr = part.function_response
                call_id = ids.for_response(fr.name, fr.id)
                answered.add(call_id)
                messages.append({
                    "role": "tool",
                    "tool_call_id": call_id,
                    "content": _response_text(fr.response),
                })
        if texts:
            messages.append({"role": "user", "content": "\n".join(texts)})

    final: list[dict[str, Any]] = []
    for msg in messages:
        final.append(msg)
        for tc in msg.get("tool_calls", []):
            if tc["id"] not in answered:
                final.append({"role": "tool", "tool_call_id": tc["id"], "content": ""})
    return final


def to_openai_tools(tools: list[FunctionDeclaration]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters or {"type": "object", "properties": {}},
            },
        }
        for t in tools
    ]


def to_openai_tool_choice(config: GenerationConfig) -> Any:
    if config.allowed_function_names and len(config.allowed_function_names) == 1:
        return {"type": "function", "function": {"name": config.allowed_function_names[0]}}
    if config.tool_choice is None:
        return None
    return {"any": "required"}.get(config.tool_choice, config.tool_choice)


# ---------------------------------------------------------------------------
# Anthropic messages
# ---------------------------------------------------------------------------


def to_anthropic_messages(contents: list[Content]) -> list[dict[str, Any]]:
    """Convert neutral contents to Anthropic messages (system handled separately).

    Consecutive contents with the same role are merged, since the API
    requires strictly alternating turns.
    """
    messages: list[dict[str, Any]] = []
    ids = _CallIds()
    for content in contents:
        role = "assistant" if content.role == "model" else "user"
        blocks: list[dict[str, Any]] = []
        for part in content.parts:
            if part.function_response:
                fr = part.function_response
                blocks.append({
                    "type": "tool_result",
                    "tool_use_id": ids.for_response(fr.name, fr.id),
                    "content": _response_text(fr.response),
                    "is_error": "error" in fr.response,
                })
        for part in content.parts:
            if part.text and not part.thought:
                blocks.append({"type": "text", "text": part.text})
            elif part.function_call:
                fc = part.function_call
                blocks.append({
                    "type": "tool_use",
                    "id": ids.for_call(fc.name, fc.id),
                    "name": fc.name,
                    "input": fc.args,
                })
        if not blocks:
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": role, "content": blocks})
    return messages


def to_anthropic_tools(tools: list[FunctionDeclaration]) -> list[dict[str, Any]]:
    return [
        {
            "name": t.name,
            "description": t.description,
            "input_schema": t.parameters or {"type": "object", "properties": {}},
        }
        for t in tools
    ]


def to_anthropic_tool_choice(config: GenerationConfig) -> dict[str, Any] | None:
    if config.allowed_function_names and len(config.allowed_function_names) == 1:
        return {"type": "tool", "name": config.allowed_function_names[0]}
    if config.tool_choice is None:
        return None
    return {"type": {"required": "any"}.get(config.tool_choice, config.tool_choice)}
