"""Session token and cost accounting."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from bulletin_ai.llm_clients.config import ModelPrice
from bulletin_ai.utils.real_time_logger import get_logger

LOGGER = get_logger()


@dataclass
class CallRecord:
    timestamp: float
    provider: str
    model: str
    in_tokens: int
    out_tokens: int


@dataclass
class TokenStats:
    calls: List[CallRecord] = field(default_factory=list)
    by_model: Dict[str, Dict[str, int]] = field(default_factory=dict)


class TokenTracker:
    """Simple in-memory accounting for per-model token usage."""

    def __init__(self, pricing: Optional[Mapping[str, ModelPrice]] = None) -> None:
        self._stats = TokenStats()
        self._pricing = dict(pricing or {})
        self._cost = 0.0

    def record(self, provider: str, model: str, input_tokens: int, output_tokens: int) -> None:
        call = CallRecord(time.time(), provider, model, input_tokens, output_tokens)
        self._stats.calls.append(call)
        model_stats = self._stats.by_model.setdefault(model, {"input": 0, "output": 0, "calls": 0})
        model_stats["input"] += input_tokens
        model_stats["output"] += output_tokens
        model_stats["calls"] += 1

        price = self._pricing.get(f"{provider}:{model}") or self._pricing.get(model)
        if price is not None:
            self._cost += input_tokens / 1e6 * price.input + output_tokens / 1e6 * price.output
        LOGGER.debug(
            "[tokens] %s:%s | in=%s out=%s totals in=%s out=%s",
            provider,
            model,
            input_tokens,
            output_tokens,
            model_stats["input"],
            model_stats["output"],
        )

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        return {model: stats.copy() for model, stats in self._stats.by_model.items()}

    @property
    def session_tokens(self) -> int:
        return sum(call.in_tokens + call.out_tokens for call in self._stats.calls)

    def session_cost(self) -> float:
        return self._cost


__all__ = ["TokenTracker", "CallRecord"]
