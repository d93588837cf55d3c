"""Map neutral requests onto the Gemini-family JSON wire format."""

from __future__ import annotations

from typing import Any

from agent_runtime.types import (
    CountTokensRequest,
    GenerateContentRequest,
    GenerationConfig,
    to_contents,
)


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def to_generation_config(config: GenerationConfig) -> dict[str, Any]:
    return _drop_none({
        "temperature": config.temperature,
        "topP": config.top_p,
        "topK": config.top_k,
        "candidateCount": config.candidate_count,
        "maxOutputTokens": config.max_output_tokens,
        "stopSequences": config.stop_sequences,
    })


def to_tool_config(config: GenerationConfig) -> dict[str, Any] | None:
    if config.tool_choice is None and not config.allowed_function_names:
        return None
    mode = {"auto": "AUTO", "any": "ANY", "none": "NONE", "required": "ANY"}.get(
        (config.tool_choice or "auto").lower(), "AUTO"
    )
    calling: dict[str, Any] = {"mode": mode}
    if config.allowed_function_names:
        calling["allowedFunctionNames"] = list(config.allowed_function_names)
    return {"functionCallingConfig": calling}


def to_vertex_request(request: GenerateContentRequest) -> dict[str, Any]:
    """Build the ``generateContent`` body (without the model name)."""
    config = request.config
    body: dict[str, Any] = {
        "contents": [c.to_dict() for c in request.contents],
        "generationConfig": to_generation_config(config),
    }
    if config.system_instruction is not None:
        # System instructions carry no role on the wire
        parts = to_contents(config.system_instruction)[0].parts
        body["systemInstruction"] = {"parts": [p.to_dict() for p in parts]}
    if config.tools:
        body["tools"] = [{"functionDeclarations": [t.to_dict() for t in config.tools]}]
    tool_config = to_tool_config(config)
    if tool_config:
        body["toolConfig"] = tool_config
    return body


def to_code_assist_request(
    request: GenerateContentRequest, project: str | None
) -> dict[str, Any]:
    """Wrap a request in the Code Assist ``{model, project, request}`` envelope."""
    return _drop_none({
        "model": request.model,
        "project": project,
        "request": to_vertex_request(request),
    })


def to_code_assist_count_request(request: CountTokensRequest) -> dict[str, Any]:
    return {
        "request": {
            "model": f"models/{request.model}",
            "contents": [c.to_dict() for c in request.contents],
        }
    }
