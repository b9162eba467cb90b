import asyncio
from typing import Dict, List, Optional, Sequence, Union

import pytest

from bulletin_ai.llm_clients.providers.base import CallOptions, ProviderResponse
from bulletin_ai.llm_clients.rate_governor import RateGovernor


class FakeClock:
    """Monotonic clock in seconds; ``sleep`` records the request and optionally advances time."""

    def __init__(self, start: float = 100.0, advance_on_sleep: bool = True) -> None:
        self.now = start
        self.advance_on_sleep = advance_on_sleep
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.advance_on_sleep:
            self.now += seconds
        await asyncio.sleep(0)


async def hang(_seconds: float) -> None:
    await asyncio.Event().wait()


Outcome = Union[str, Exception]


class ScriptedProvider:
    """Provider call capability that replays scripted outcomes per ModelId."""

    def __init__(
        self,
        script: Optional[Dict[str, Sequence[Outcome]]] = None,
        models: Optional[Dict[str, Union[List[str], Exception, None]]] = None,
    ) -> None:
        self.script = {model_id: list(outcomes) for model_id, outcomes in (script or {}).items()}
        self.models = dict(models or {})
        self.calls: List[str] = []
        self.list_calls: List[str] = []

    async def call(self, model_id: str, prompt: str, options: Optional[CallOptions] = None) -> ProviderResponse:
        self.calls.append(model_id)
        outcomes = self.script.get(model_id) or ["ok"]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return ProviderResponse(text=outcome, input_tokens=3, output_tokens=5)

    async def list_models(self, provider: str) -> Optional[List[str]]:
        self.list_calls.append(provider)
        models = self.models.get(provider)
        if isinstance(models, Exception):
            raise models
        return models


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def governor(clock):
    return RateGovernor(lambda model_id: 1000, clock=clock, sleep=clock.sleep)
