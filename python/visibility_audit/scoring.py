from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Sequence

from .models import MODULES, CheckResult, CheckStatus, Level

MODULE_WEIGHTS: Mapping[str, int] = MappingProxyType(
    {
        "crawl": 20,
        "performance": 15,
        "onpage": 15,
        "entity": 20,
        "ai_readiness": 20,
        "offsite": 10,
    }
)

IMPACT_WEIGHTS: Mapping[Level, int] = MappingProxyType({Level.HIGH: 3, Level.MEDIUM: 2, Level.LOW: 1})
EFFORT_WEIGHTS: Mapping[Level, int] = MappingProxyType({Level.LOW: 3, Level.MEDIUM: 2, Level.HIGH: 1})

TOP_FIX_LIMIT = 7


@dataclass(frozen=True)
class Scorecard:
    overall_score: float
    module_scores: Dict[str, float]
    top_fixes: List[CheckResult]


def module_scores(checks: Sequence[CheckResult]) -> Dict[str, float]:
    """チェックが 1 件以上あるモジュールだけを返す。"""
    grouped: Dict[str, List[int]] = {}
    for check in checks:
        grouped.setdefault(check.module, []).append(check.score)
    ordered = [module for module in MODULES if module in grouped] + sorted(set(grouped) - set(MODULES))
    return {module: round(sum(grouped[module]) / len(grouped[module]), 1) for module in ordered}


def overall_score(scores: Mapping[str, float], weights: Mapping[str, int] = MODULE_WEIGHTS) -> float:
    # スコアのあるモジュールの重みだけで正規化する
    total_weight = 0
    weighted = 0.0
    for module, weight in weights.items():
        if module in scores:
            weighted += scores[module] * weight
            total_weight += weight
    if total_weight == 0:
        return 0.0
    return round(weighted / total_weight, 1)


def priority(check: CheckResult) -> int:
    return IMPACT_WEIGHTS.get(check.impact, 1) * EFFORT_WEIGHTS.get(check.effort, 1)


def top_fixes(checks: Sequence[CheckResult], limit: int = TOP_FIX_LIMIT) -> List[CheckResult]:
    """影響が大きく手間の少ないものから順に返す。同点はカタログ順（安定ソート）。"""
    candidates = [check for check in checks if check.status != CheckStatus.PASS and check.fix]
    return sorted(candidates, key=priority, reverse=True)[:limit]


class Scorer:
    def __init__(self, weights: Mapping[str, int] = MODULE_WEIGHTS, *, limit: int = TOP_FIX_LIMIT) -> None:
        self.weights = weights
        self.limit = limit

    def score(self, checks: Sequence[CheckResult]) -> Scorecard:
        present = module_scores(checks)
        full = {module: present.get(module, 0.0) for module in MODULES}
        return Scorecard(
            overall_score=overall_score(present, self.weights),
            module_scores=full,
            top_fixes=top_fixes(checks, self.limit),
        )
