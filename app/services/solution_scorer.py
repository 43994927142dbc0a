"""
Solution Scorer — multi-criteria ranking of IMPROVE-phase candidates.

Two named strategies:
    linear    impact × 2 − effort − risk − cost   (canonical; range −30..20)
    weighted  0.4 × impact + 0.2 × (10 − effort) + 0.2 × (10 − risk)
              + 0.2 × (10 − cost), normalised to 0..1

Ranking never changes a solution's status; approval stays with the caller.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

SCORE_MIN = 0
SCORE_MAX = 10

WEIGHTS = {"impact": 0.4, "effort": 0.2, "risk": 0.2, "cost": 0.2}


@dataclass(frozen=True)
class ScoringStrategy:
    name: str
    description: str
    score: Callable[[Mapping], float]


def _scores(solution: Mapping) -> tuple[float, float, float, float]:
    return (
        float(solution.get("impact_score") or 0),
        float(solution.get("effort_score") or 0),
        float(solution.get("risk_score") or 0),
        float(solution.get("cost_score") or 0),
    )


def linear_total_score(solution: Mapping) -> float:
    """impact × 2 − effort − risk − cost"""
    impact, effort, risk, cost = _scores(solution)
    return impact * 2 - effort - risk - cost


def weighted_total_score(solution: Mapping) -> float:
    impact, effort, risk, cost = _scores(solution)
    score = (
        WEIGHTS["impact"] * impact / SCORE_MAX
        + WEIGHTS["effort"] * (1 - effort / SCORE_MAX)
        + WEIGHTS["risk"] * (1 - risk / SCORE_MAX)
        + WEIGHTS["cost"] * (1 - cost / SCORE_MAX)
    )
    return round(score, 4)


LINEAR = ScoringStrategy(
    name="linear",
    description="impact × 2 − effort − risk − cost",
    score=linear_total_score,
)

WEIGHTED = ScoringStrategy(
    name="weighted",
    description="0.4·impact + 0.2·(10−effort) + 0.2·(10−risk) + 0.2·(10−cost), scaled to 0..1",
    score=weighted_total_score,
)

SCORING_STRATEGIES = {s.name: s for s in (LINEAR, WEIGHTED)}


def get_scoring_strategy(name: str = "linear") -> ScoringStrategy:
    try:
        return SCORING_STRATEGIES[name]
    except KeyError:
        raise ValueError(
            f"Unknown solution scoring {name!r}; expected one of {sorted(SCORING_STRATEGIES)}"
        ) from None


def rank_solutions(
    solutions: Iterable[Mapping],
    strategy: ScoringStrategy = LINEAR,
) -> dict:
    """Sort candidates by score, highest first, and surface the top pick.

    Returns:
        {"strategy", "formula", "ranking": [...], "recommended": dict | None}
    """
    scored = [
        {**solution, "score": strategy.score(solution)}
        for solution in solutions
    ]
    # sorted() is stable: ties keep submission order
    ranking = sorted(scored, key=lambda s: s["score"], reverse=True)
    for position, solution in enumerate(ranking, start=1):
        solution["rank"] = position

    return {
        "strategy": strategy.name,
        "formula": strategy.description,
        "ranking": ranking,
        "recommended": ranking[0] if ranking else None,
    }
