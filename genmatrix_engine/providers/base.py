"""Provider base classes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol


class EmptyResponseError(RuntimeError):
    """Provider answered without a usable payload."""


@dataclass(frozen=True)
class DescriptorRequest:
    style: str
    energy: str
    physical: str
    model: str | None = None


@dataclass(frozen=True)
class ImageRequest:
    prompt: str
    model: str | None = None
    mime_type: str = "image/png"


@dataclass
class GeneratedArtifact:
    uri: str
    mime_type: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


class DescriptorProvider(Protocol):
    name: str

    def describe(self, request: DescriptorRequest) -> str:
        ...


class ImageProvider(Protocol):
    name: str

    def generate(self, request: ImageRequest) -> GeneratedArtifact:
        ...


class GridProvider(DescriptorProvider, ImageProvider, Protocol):
    ...


class ProviderRegistry:
    def __init__(self, providers: Iterable[GridProvider]) -> None:
        self._providers = {provider.name: provider for provider in providers}

    def get(self, name: str) -> GridProvider | None:
        return self._providers.get(name)

    def require(self, name: str) -> GridProvider:
        provider = self.get(name)
        if provider is None:
            available = ", ".join(self.list()) or "none"
            raise ValueError(f"Unknown provider {name!r} (available: {available}).")
        return provider

    def list(self) -> list[str]:
        return sorted(self._providers.keys())
