"""Local deterministic executor for development runs and tests."""

from __future__ import annotations

import hashlib
import re

from build_broker.execution.base import Deliverable
from build_broker.orchestrator.models import BuildJobSpec

DEFAULT_BASE_URL = "https://builds.local"


class EchoBuildExecutor:
    """Returns a stable delivery URL derived from the build spec."""

    def __init__(self, *, base_url: str = DEFAULT_BASE_URL) -> None:
        self.base_url = base_url.rstrip("/")

    async def execute(self, spec: BuildJobSpec) -> Deliverable:
        digest = hashlib.sha256(f"{spec.build_id}:{spec.title}".encode()).hexdigest()[:12]
        return Deliverable(url=f"{self.base_url}/{_slug(spec.title)}-{digest}/")


def _slug(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug[:40] or "build"
