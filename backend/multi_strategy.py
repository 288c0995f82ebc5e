"""
RothPilot - Multi-Strategy Orchestrator
=======================================
Runs the baseline and every strategy variant over identical inputs so their
results can be compared side by side.

A variant that fails is reported in `failures` and left out of the result;
it never stops the baseline or its siblings.
"""

import logging
from typing import Dict, List, Optional, Sequence

from analysis import analyze_break_even
from exceptions import ProjectionError
from models import (
    ClientProfile,
    MultiStrategyResult,
    SimulationResult,
    StrategyComparison,
    StrategyFailure,
    StrategyPolicy,
)
from projection_engine import run_simulation
from strategies import BASELINE_NAME, STRATEGY_RISK_ORDER, baseline_policy, preset_policies

logger = logging.getLogger(__name__)


class MultiStrategyRunner:
    """
    Baseline plus N named strategies for one client and one horizon.
    """

    def __init__(self, profile: ClientProfile, start_year: int, end_year: Optional[int] = None):
        self.profile = profile
        self.start_year = start_year
        self.end_year = end_year if end_year is not None else profile.projection_end_year

    def run_all(self, strategies: Optional[Sequence[StrategyPolicy]] = None) -> MultiStrategyResult:
        """
        Baseline errors propagate (nothing can be compared without it);
        strategy errors are isolated per variant.
        """
        policies = list(strategies) if strategies is not None else preset_policies(self.profile)
        baseline = run_simulation(self.profile, baseline_policy(self.profile), self.start_year, self.end_year)

        results: Dict[str, SimulationResult] = {}
        failures: List[StrategyFailure] = []

        for policy in policies:
            if policy.name in results or policy.name == BASELINE_NAME:
                failures.append(StrategyFailure(
                    strategy_name=policy.name,
                    cause="StrategyConfigurationError",
                    message=f"Duplicate strategy name: {policy.name}",
                ))
                continue
            try:
                results[policy.name] = run_simulation(self.profile, policy, self.start_year, self.end_year)
            except ProjectionError as e:
                logger.warning("Strategy %s failed: %s", policy.name, e.code)
                failures.append(StrategyFailure(
                    strategy_name=policy.name,
                    cause=e.code,
                    message=e.message,
                ))

        comparisons = [self.compare(baseline, result) for result in results.values()]

        return MultiStrategyResult(
            start_year=self.start_year,
            end_year=self.end_year,
            baseline=baseline,
            strategies=results,
            comparisons=comparisons,
            failures=failures,
            best_strategy=select_best_strategy(comparisons),
        )

    @staticmethod
    def compare(baseline: SimulationResult, strategy: SimulationResult) -> StrategyComparison:
        break_even = analyze_break_even(baseline, strategy)
        return StrategyComparison(
            strategy_name=strategy.strategy_name,
            ending_wealth=strategy.summary.ending_net_worth,
            lifetime_tax_savings=break_even.total_tax_savings,
            break_even_year=break_even.break_even_year,
            break_even_age=break_even.break_even_age,
            total_irmaa=strategy.summary.total_irmaa,
            heir_benefit=baseline.summary.heir_tax - strategy.summary.heir_tax,
            total_conversions=strategy.summary.total_conversions,
        )


def _risk_rank(name: str) -> int:
    if name in STRATEGY_RISK_ORDER:
        return STRATEGY_RISK_ORDER.index(name)
    return len(STRATEGY_RISK_ORDER)


def select_best_strategy(comparisons: List[StrategyComparison]) -> Optional[str]:
    """Highest ending wealth; ties go to lower IRMAA, then lower risk."""
    if not comparisons:
        return None
    best = min(
        comparisons,
        key=lambda c: (-c.ending_wealth, c.total_irmaa, _risk_rank(c.strategy_name), c.strategy_name),
    )
    return best.strategy_name


def run_all(
    profile: ClientProfile,
    start_year: int,
    end_year: Optional[int] = None,
    strategies: Optional[Sequence[StrategyPolicy]] = None,
) -> MultiStrategyResult:
    return MultiStrategyRunner(profile, start_year, end_year).run_all(strategies)
