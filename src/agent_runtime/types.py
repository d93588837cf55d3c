"""
Provider-neutral content model.

Every content generator consumes and produces these types. The shape
follows the Gemini ``generateContent`` wire format (role-tagged contents
made of parts); :meth:`to_dict`/:meth:`from_dict` map to and from that
camelCase JSON so the Gemini-family backends can send it directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass
class FunctionCall:
    """A model-issued request to invoke a named tool."""

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "args": self.args}
        if self.id:
            data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FunctionCall:
        return cls(name=data.get("name", ""), args=dict(data.get("args") or {}), id=data.get("id"))


@dataclass
class FunctionResponse:
    """The result (or error) returned to the model for a prior call."""

    name: str
    response: dict[str, Any]
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "response": self.response}
        if self.id:
            data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FunctionResponse:
        return cls(name=data.get("name", ""), response=dict(data.get("response") or {}), id=data.get("id"))


@dataclass
class Part:
    """One piece of a content message. Exactly one field is normally set."""

    text: str | None = None
    function_call: FunctionCall | None = None
    function_response: FunctionResponse | None = None
    thought: bool = False

    @classmethod
    def from_text(cls, text: str) -> Part:
        return cls(text=text)

    @classmethod
    def from_function_response(
        cls, name: str, response: dict[str, Any], id: str | None = None
    ) -> Part:
        return cls(function_response=FunctionResponse(name=name, response=response, id=id))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.text is not None:
            data["text"] = self.text
        if self.function_call is not None:
            data["functionCall"] = self.function_call.to_dict()
        if self.function_response is not None:
            data["functionResponse"] = self.function_response.to_dict()
        if self.thought:
            data["thought"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Part:
        fc = data.get("functionCall")
        fr = data.get("functionResponse")
        return cls(
            text=data.get("text"),
            function_call=FunctionCall.from_dict(fc) if fc else None,
            function_response=FunctionResponse.from_dict(fr) if fr else None,
            thought=bool(data.get("thought", False)),
        )


@dataclass
class Content:
    """A role-tagged message: ``user`` or ``model``."""

    role: str
    parts: list[Part] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "parts": [p.to_dict() for p in self.parts]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Content:
        return cls(
            role=data.get("role", "model"),
            parts=[Part.from_dict(p) for p in data.get("parts", [])],
        )


PartLike = Union[str, Part]
ContentLike = Union[str, Part, Content, list]


def to_parts(value: PartLike | list[PartLike]) -> list[Part]:
    """Normalize a string, part, or list of either into a list of parts."""
    if isinstance(value, list):
        return [p if isinstance(p, Part) else Part(text=p) for p in value]
    if isinstance(value, Part):
        return [value]
    return [Part(text=value)]


def to_contents(value: ContentLike) -> list[Content]:
    """
    Normalize request contents.

    A list of :class:`Content` is returned as-is; anything else (string,
    part, or list of strings/parts) becomes a single user message.
    """
    if isinstance(value, Content):
        return [value]
    if isinstance(value, list) and value and all(isinstance(c, Content) for c in value):
        return list(value)
    return [Content(role="user", parts=to_parts(value))]


@dataclass
class FunctionDeclaration:
    """Schema projection of a tool, as sent to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "description": self.description}
        if self.parameters is not None:
            data["parameters"] = self.parameters
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FunctionDeclaration:
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            parameters=data.get("parameters"),
        )


@dataclass
class GenerationConfig:
    """Sampling parameters, tool declarations and tool-choice for one request."""

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    candidate_count: int | None = None
    max_output_tokens: int | None = None
    stop_sequences: list[str] | None = None
    system_instruction: ContentLike | None = None
    tools: list[FunctionDeclaration] = field(default_factory=list)
    tool_choice: str | None = None  # "auto", "any", "none"
    allowed_function_names: list[str] | None = None


@dataclass
class GenerateContentRequest:
    model: str
    contents: list[Content]
    config: GenerationConfig = field(default_factory=GenerationConfig)


@dataclass
class UsageMetadata:
    prompt_token_count: int = 0
    candidates_token_count: int = 0
    total_token_count: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageMetadata:
        return cls(
            prompt_token_count=data.get("promptTokenCount", 0),
            candidates_token_count=data.get("candidatesTokenCount", 0),
            total_token_count=data.get("totalTokenCount", 0),
        )


@dataclass
class Candidate:
    content: Content
    finish_reason: str | None = None
    index: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Candidate:
        return cls(
            content=Content.from_dict(data.get("content") or {"role": "model"}),
            finish_reason=data.get("finishReason"),
            index=data.get("index", 0),
        )


@dataclass
class GenerateContentResponse:
    """A full response or one streamed chunk of it."""

    candidates: list[Candidate] = field(default_factory=list)
    usage_metadata: UsageMetadata | None = None

    @property
    def text(self) -> str:
        """Concatenated non-thought text of the first candidate."""
        if not self.candidates:
            return ""
        return "".join(
            p.text for p in self.candidates[0].content.parts if p.text and not p.thought
        )

    @property
    def function_calls(self) -> list[FunctionCall]:
        """Function calls of the first candidate, in appearance order."""
        if not self.candidates:
            return []
        return [p.function_call for p in self.candidates[0].content.parts if p.function_call]

    @classmethod
    def from_parts(
        cls,
        parts: list[Part],
        finish_reason: str | None = None,
        usage: UsageMetadata | None = None,
    ) -> GenerateContentResponse:
        return cls(
            candidates=[Candidate(content=Content(role="model", parts=parts), finish_reason=finish_reason)],
            usage_metadata=usage,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GenerateContentResponse:
        usage = data.get("usageMetadata")
        return cls(
            candidates=[Candidate.from_dict(c) for c in data.get("candidates", [])],
            usage_metadata=UsageMetadata.from_dict(usage) if usage else None,
        )


@dataclass
class CountTokensRequest:
    model: str
    contents: list[Content]


@dataclass
class CountTokensResponse:
    total_tokens: int


@dataclass
class EmbedContentRequest:
    model: str
    contents: list[Content]


@dataclass
class EmbedContentResponse:
    embeddings: list[list[float]] = field(default_factory=list)
