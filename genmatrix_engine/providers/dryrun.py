"""Dry-run provider (offline)."""

from __future__ import annotations

import hashlib
import textwrap
import time
from io import BytesIO

from PIL import Image, ImageDraw, ImageFont

from ..utils import encode_data_uri
from .base import DescriptorRequest, GeneratedArtifact, ImageRequest

DRYRUN_IMAGE_SIZE = (256, 384)


class DryRunProvider:
    name = "dryrun"

    def __init__(self, size: tuple[int, int] = DRYRUN_IMAGE_SIZE) -> None:
        self.size = size
        self._font = None

    def describe(self, request: DescriptorRequest) -> str:
        style = _headline(request.style)
        energy = _headline(request.energy)
        physical = _headline(request.physical)
        return f"A dry-run figure drawn as {style.lower()}, {energy.lower()}, with {physical.lower()}."

    def generate(self, request: ImageRequest) -> GeneratedArtifact:
        start = time.monotonic()
        image = Image.new("RGB", self.size, _color_from_prompt(request.prompt))
        draw = ImageDraw.Draw(image)
        font = self._font or ImageFont.load_default()
        text = "dryrun\n" + "\n".join(textwrap.wrap(request.prompt[:160], width=32)[:6])
        draw.text((12, 12), text, fill=(255, 255, 255), font=font)
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        return GeneratedArtifact(
            uri=encode_data_uri(buffer.getvalue(), "image/png"),
            mime_type="image/png",
            metadata={"dryrun": True, "elapsed": time.monotonic() - start},
        )


def _headline(level_text: str) -> str:
    return str(level_text or "").split(",", 1)[0].strip() or "unspecified"


def _color_from_prompt(prompt: str) -> tuple[int, int, int]:
    digest = hashlib.sha256(prompt.encode("utf-8")).digest()
    return digest[0], digest[1], digest[2]
