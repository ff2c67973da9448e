"""Model identifiers and capability descriptors.

A ``ModelId`` is parsed once from whatever the user or server handed us,
and capabilities are looked up by its canonical name in an immutable
table. Lookups never fall back to prefix or substring matching: a model
that is not in the table resolves to ``UnknownCapabilities``.
"""

import re
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

LOCAL_PREFIX = "local:"
DEFAULT_TAG = "latest"

_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._\-]*$")
_TAG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._\-]*$")


class ModelId(BaseModel):
    """Canonical model identifier.

    ``hf.co/Org/Qwen3:8B`` and ``qwen3:8b`` both canonicalize to name
    ``qwen3`` with tag ``8b``; ``local:gemma3`` is an on-device model.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    tag: str = DEFAULT_TAG
    is_local: bool = False

    @classmethod
    def parse(cls, raw: str) -> "ModelId":
        """Parse and validate a raw model identifier.

        Raises:
            ValueError: If the identifier is empty or malformed
        """
        value = raw.strip().lower()
        if not value:
            raise ValueError("Model identifier cannot be empty")

        is_local = value.startswith(LOCAL_PREFIX)
        if is_local:
            value = value[len(LOCAL_PREFIX) :]

        # Strip registry host and namespace
        value = value.rsplit("/", 1)[-1]

        name, _, tag = value.partition(":")
        tag = tag or DEFAULT_TAG

        if not _NAME_PATTERN.match(name):
            raise ValueError(f"Invalid model name: {raw!r}")
        if not _TAG_PATTERN.match(tag):
            raise ValueError(f"Invalid model tag: {raw!r}")

        return cls(name=name, tag=tag, is_local=is_local)

    def __str__(self) -> str:
        prefix = LOCAL_PREFIX if self.is_local else ""
        return f"{prefix}{self.name}:{self.tag}"


class KnownCapabilities(BaseModel):
    """Capabilities of a model listed in the registry."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["known"] = "known"
    supports_tools: bool = False
    supports_vision: bool = False
    supports_thinking: bool = False
    context_length: int = 4096
    description: str = ""


class UnknownCapabilities(BaseModel):
    """Capabilities of a model the registry has never heard of."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unknown"] = "unknown"
    supports_tools: Literal[False] = False
    supports_vision: Literal[False] = False
    supports_thinking: Literal[False] = False
    context_length: int = 4096
    description: str = "Unknown model - capabilities not verified"


ModelCapabilities = Annotated[KnownCapabilities | UnknownCapabilities, Field(discriminator="kind")]


class CapabilityRegistry:
    """Immutable lookup table from canonical model name to capabilities."""

    def __init__(self, entries: Mapping[str, KnownCapabilities]):
        for name in entries:
            if not _NAME_PATTERN.match(name):
                raise ValueError(f"Registry key is not a canonical model name: {name!r}")
        self._entries: Mapping[str, KnownCapabilities] = MappingProxyType(dict(entries))

    def resolve(self, model_id: ModelId) -> KnownCapabilities | UnknownCapabilities:
        """Resolve capabilities for a parsed model id."""
        return self._entries.get(model_id.name) or UnknownCapabilities()

    def resolve_raw(self, raw: str) -> KnownCapabilities | UnknownCapabilities:
        """Parse ``raw`` and resolve it; malformed ids resolve to unknown."""
        try:
            return self.resolve(ModelId.parse(raw))
        except ValueError:
            return UnknownCapabilities()

    def names(self) -> list[str]:
        """All known canonical model names, sorted."""
        return sorted(self._entries)

    def names_with(self, *, tools: bool | None = None, vision: bool | None = None) -> list[str]:
        """Known model names filtered by capability."""
        return [
            name
            for name in self.names()
            if (tools is None or self._entries[name].supports_tools == tools)
            and (vision is None or self._entries[name].supports_vision == vision)
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _caps(
    tools: bool, vision: bool, context: int, description: str, thinking: bool = False
) -> KnownCapabilities:
    return KnownCapabilities(
        supports_tools=tools,
        supports_vision=vision,
        supports_thinking=thinking,
        context_length=context,
        description=description,
    )


_KNOWN_MODELS: dict[str, KnownCapabilities] = {
    "llama3.3": _caps(True, False, 131072, "Meta Llama 3.3 - Best open source model for reasoning and coding"),
    "llama3.2": _caps(True, True, 131072, "Meta Llama 3.2 - Multimodal with vision support"),
    "llama3.1": _caps(True, False, 131072, "Meta Llama 3.1 - Strong general purpose model"),
    "llama3": _caps(False, False, 8192, "Meta Llama 3 - General purpose model"),
    "llama2": _caps(False, False, 4096, "Meta Llama 2 - Previous generation"),
    "qwen3": _caps(True, False, 131072, "Alibaba Qwen 3 - Excellent reasoning and multilingual", thinking=True),
    "qwen2.5": _caps(True, False, 131072, "Alibaba Qwen 2.5 - Strong coding and math"),
    "qwen2.5-coder": _caps(True, False, 131072, "Qwen 2.5 Coder - Specialized for code generation"),
    "qwq": _caps(True, False, 131072, "Qwen QwQ - Specialized for reasoning tasks", thinking=True),
    "mistral": _caps(True, False, 32768, "Mistral 7B - Efficient and capable base model"),
    "mistral-nemo": _caps(True, False, 131072, "Mistral Nemo - 12B with extended context"),
    "mistral-small": _caps(True, False, 32768, "Mistral Small - Cost-effective for simple tasks"),
    "mixtral": _caps(True, False, 32768, "Mixtral MoE - Mixture of experts architecture"),
    "deepseek-r1": _caps(True, False, 131072, "DeepSeek R1 - Advanced reasoning model", thinking=True),
    "deepseek-coder-v2": _caps(True, False, 131072, "DeepSeek Coder V2 - Enhanced code model"),
    "gemma3": _caps(True, True, 131072, "Google Gemma 3 - Multimodal with vision"),
    "gemma2": _caps(True, False, 8192, "Google Gemma 2 - Efficient small model"),
    "phi4": _caps(True, False, 16384, "Microsoft Phi-4 - Small but powerful"),
    "phi3.5": _caps(True, False, 131072, "Microsoft Phi-3.5 - Extended context"),
    "llava": _caps(False, True, 4096, "LLaVA - Visual language model"),
    "llava-llama3": _caps(False, True, 8192, "LLaVA Llama 3 - Vision + Llama 3"),
    "moondream": _caps(False, True, 8192, "Moondream - Tiny vision model for edge devices"),
    "command-r": _caps(True, False, 131072, "Cohere Command R - Retrieval augmented generation"),
    "granite3": _caps(True, False, 131072, "IBM Granite 3 - Enterprise tasks"),
    "smollm2": _caps(False, False, 8192, "SmolLM 2 - Ultra efficient"),
    "gpt-oss": _caps(True, False, 131072, "GPT-OSS - Open-weight models with function calling", thinking=True),
}


def default_capability_registry(extra: Iterable[tuple[str, KnownCapabilities]] = ()) -> CapabilityRegistry:
    """Build the registry of known Ollama model capabilities."""
    return CapabilityRegistry({**_KNOWN_MODELS, **dict(extra)})
