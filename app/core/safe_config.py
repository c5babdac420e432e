from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from app.core.rules import is_http_url

SENSITIVE_KEY_PATTERN = re.compile(r"(api[_-]?key|token|password|secret|webhook)", re.IGNORECASE)


class InvalidAssetLinkError(ValueError):
    def __init__(self, link: str) -> None:
        super().__init__(f"Invalid asset link: {link}")
        self.link = link


@dataclass(frozen=True)
class SanitizedConfig:
    value: dict[str, Any]
    stripped_keys: list[str]

    @property
    def warning(self) -> str | None:
        if not self.stripped_keys:
            return None
        return f"Sensitive keys removed from config_json: {', '.join(self.stripped_keys)}."


def _strip_node(node: Any, stripped: list[str]) -> Any:
    if isinstance(node, dict):
        cleaned: dict[str, Any] = {}
        for key, value in node.items():
            if SENSITIVE_KEY_PATTERN.search(str(key)):
                if key not in stripped:
                    stripped.append(key)
                continue
            cleaned[key] = _strip_node(value, stripped)
        return cleaned
    if isinstance(node, list):
        return [_strip_node(item, stripped) for item in node]
    return node


def sanitize_config(config: dict[str, Any]) -> SanitizedConfig:
    """Recursively drops keys that look like credentials; stripped names are reported once each."""
    stripped: list[str] = []
    value = _strip_node(config, stripped)
    return SanitizedConfig(value=value, stripped_keys=stripped)


def parse_asset_links(value: object) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    links = [item.strip() for item in value if isinstance(item, str) and item.strip()]
    for link in links:
        if not is_http_url(link):
            raise InvalidAssetLinkError(link)
    return links
