"""Token usage values and accumulation across model calls."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True)
class TokenUsage:
    """Token counts for one or more model calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }
        if self.cost_usd is not None:
            data["cost_usd"] = self.cost_usd
        return data

    @classmethod
    def from_api(cls, raw: dict[str, Any] | None) -> TokenUsage | None:
        """Map an OpenAI-style usage block (snake_case counts) to TokenUsage.

        Cost may be reported as ``cost``, ``costUsd`` or ``cost_usd``;
        non-numeric or non-finite values are dropped.
        """
        if not raw:
            return None
        cost = None
        for key in ("cost", "costUsd", "cost_usd"):
            if raw.get(key) is not None:
                try:
                    cost = float(raw[key])
                except (TypeError, ValueError):
                    cost = None
                break
        if cost is not None and not math.isfinite(cost):
            cost = None
        prompt = int(raw.get("prompt_tokens") or 0)
        completion = int(raw.get("completion_tokens") or 0)
        total = int(raw.get("total_tokens") or prompt + completion)
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=total,
            cost_usd=cost,
        )


def accumulate_usage(total: TokenUsage | None, delta: TokenUsage | None) -> TokenUsage | None:
    """Add *delta* to *total*.

    Cost is summed only when at least one side reports it; a total that
    never saw a cost keeps ``cost_usd=None``.
    """
    if delta is None:
        return total
    if total is None:
        return replace(delta)

    cost = None
    if total.cost_usd is not None or delta.cost_usd is not None:
        cost = (total.cost_usd or 0.0) + (delta.cost_usd or 0.0)

    return TokenUsage(
        prompt_tokens=total.prompt_tokens + delta.prompt_tokens,
        completion_tokens=total.completion_tokens + delta.completion_tokens,
        total_tokens=total.total_tokens + delta.total_tokens,
        cost_usd=cost,
    )


class UsageLedger:
    """Running usage total across orchestrated calls.

    Registered as the orchestrator's usage callback so dashboards can read
    spend independently of any single call's result.
    """

    def __init__(self) -> None:
        self._total: TokenUsage | None = None
        self._calls = 0

    def record(self, usage: TokenUsage) -> None:
        self._total = accumulate_usage(self._total, usage)
        self._calls += 1

    __call__ = record

    @property
    def calls(self) -> int:
        return self._calls

    @property
    def total(self) -> TokenUsage | None:
        return self._total

    def snapshot(self) -> dict[str, Any]:
        data: dict[str, Any] = {"calls": self._calls}
        data.update((self._total or TokenUsage()).to_dict())
        return data
