"""
User settings: the completion API key and the webhook URL.

The API key comes from config.yaml / the environment (OPENAI_API_KEY).
The webhook URL is a user preference: a value saved into runtime_config.yaml
wins over the one in config.yaml.
"""

from __future__ import annotations

from dataclasses import dataclass

from aidedecamp.config import get_config, get_runtime_config, update_runtime_config

MISSING_API_KEY = "Please enter your OpenAI API key in settings."
MISSING_WEBHOOK_URL = "Please enter your webhook URL in settings."
INVALID_SETTINGS = "Both the OpenAI key and webhook URL must be filled in."


@dataclass
class Settings:
    openai_key: str = ""
    webhook_url: str = ""

    @classmethod
    def load(cls) -> Settings:
        cfg = get_config()
        runtime = get_runtime_config()
        key = cfg.get("openai", {}).get("api_key", "") or ""
        url = runtime.get("webhook_url") or cfg.get("webhook", {}).get("url", "") or ""
        return cls(openai_key=key.strip(), webhook_url=url.strip())

    def save(self) -> bool:
        """Persist the webhook URL preference. The key stays in the environment."""
        return update_runtime_config("webhook_url", self.webhook_url.strip())

    def is_valid(self) -> bool:
        return bool(self.openai_key.strip()) and bool(self.webhook_url.strip())

    def missing_message(self) -> str | None:
        """First user-facing alert for a missing setting, or None when complete."""
        if not self.openai_key.strip():
            return MISSING_API_KEY
        if not self.webhook_url.strip():
            return MISSING_WEBHOOK_URL
        return None

    @property
    def masked_key(self) -> str:
        if len(self.openai_key) <= 8:
            return "*" * len(self.openai_key)
        return f"{self.openai_key[:3]}...{self.openai_key[-4:]}"
