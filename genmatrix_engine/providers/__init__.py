"""Provider registry."""

from __future__ import annotations

import os

from ..utils import gemini_api_key
from .base import ProviderRegistry
from .dryrun import DryRunProvider
from .gemini import GeminiProvider


def default_registry() -> ProviderRegistry:
    return ProviderRegistry(
        [
            DryRunProvider(),
            GeminiProvider(),
        ]
    )


def default_provider_name() -> str:
    configured = str(os.getenv("GENMATRIX_PROVIDER") or "").strip().lower()
    if configured:
        return configured
    return "gemini" if gemini_api_key() else "dryrun"
