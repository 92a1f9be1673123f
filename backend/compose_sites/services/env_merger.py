from __future__ import annotations

import re
from dataclasses import dataclass, field


LINE_SPLIT = re.compile(r"\r?\n")


@dataclass
class EnvDocument:
    """KEY=VALUE pairs in the order their keys were first seen."""

    values: dict[str, str] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)

    def set(self, key: str, value: str) -> None:
        if key not in self.values:
            self.order.append(key)
        self.values[key] = value

    def render(self) -> str:
        return "".join(f"{key}={self.values[key]}\n" for key in self.order)


def parse_env(content: str | None) -> EnvDocument:
    """Parse .env text.

    Blank lines, comments and lines without "=" are skipped. Only the first
    "=" separates key from value, so values may contain more of them.
    """
    document = EnvDocument()
    for raw_line in LINE_SPLIT.split(content or ""):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        document.set(key, value)
    return document


def merge_env_contents(existing: str | None, incoming: str | None) -> str:
    """Merge incoming overrides into existing .env text.

    Incoming values win. Keys already present keep their position, new keys
    are appended in the order they appear in the incoming text.
    """
    if not incoming:
        return existing or ""

    merged = parse_env(existing)
    for key, value in parse_env(incoming).values.items():
        merged.set(key, value)

    return merged.render()
