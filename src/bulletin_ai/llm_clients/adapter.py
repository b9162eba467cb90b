"""Functional helper for call sites that only need the generated text."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from bulletin_ai.llm_clients.client import BulletinAI
from bulletin_ai.llm_clients.providers import CallOptions


_client: Optional[BulletinAI] = None


def _get_client(config_path: Optional[str | Path] = None) -> BulletinAI:
    global _client
    if config_path is not None:
        return BulletinAI(config_path=config_path)
    if _client is None:
        _client = BulletinAI()
    return _client


async def generate_comment(
    prompt: str,
    *,
    model: Optional[str] = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    config_path: Optional[str | Path] = None,
) -> str:
    client = _get_client(config_path)
    result = await client.generate(
        prompt,
        model=model,
        options=CallOptions(temperature=temperature, max_tokens=max_tokens),
    )
    return result.text


__all__ = ["generate_comment", "_get_client"]
