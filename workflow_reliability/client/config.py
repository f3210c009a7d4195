"""Configuration for the workflow engine HTTP client."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Settings:
    """Immutable settings loaded from environment variables."""

    api_key: str = field(repr=False)
    api_endpoint: str = "http://localhost:5678"
    timeout: int = 30

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            api_key=os.getenv("N8N_API_KEY", ""),
            api_endpoint=os.getenv("N8N_API_URL", "http://localhost:5678").rstrip("/"),
            timeout=int(os.getenv("N8N_TIMEOUT", "30")),
        )

    @property
    def base_url(self) -> str:
        return f"{self.api_endpoint}/api/v1"

    @property
    def headers(self) -> dict[str, str]:
        h: dict[str, str] = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            h["X-N8N-API-KEY"] = self.api_key
        return h
