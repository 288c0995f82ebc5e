"""
RothPilot - Derived Analyses
============================
Break-even, sensitivity and widow-penalty analyses built on the projection
engine. Each is a pure function of (profile, horizon) and re-runs whatever
simulations it needs; nothing here is persisted.
"""

import logging
from typing import List, Optional

from exceptions import IneligibleAnalysis, MismatchedHorizon
from models import (
    BreakEvenAnalysis,
    ClientProfile,
    CrossoverPoint,
    SensitivityOutcome,
    SensitivityResult,
    SensitivityScenario,
    SimulationResult,
    StrategyPolicy,
    WidowAnalysisResult,
    WidowTaxImpact,
)
from projection_engine import run_simulation
from strategies import baseline_policy, policy_from_profile
from tax_constants import FilingStatus, apply_basis_points

logger = logging.getLogger(__name__)


# =============================================================================
# BREAK-EVEN
# =============================================================================

def analyze_break_even(baseline: SimulationResult, strategy: SimulationResult) -> BreakEvenAnalysis:
    """
    Find when the strategy's net worth overtakes the baseline for good.

    The break-even year is the first year from which the strategy stays at or
    above the baseline through the end of the horizon. A crossing that later
    reverts is reported in `crossovers` and as the simple break-even, but is
    not a break-even.

    Raises:
        MismatchedHorizon: the two results do not cover the same years.
    """
    baseline_years = [y.year for y in baseline.years]
    strategy_years = [y.year for y in strategy.years]
    if baseline_years != strategy_years:
        raise MismatchedHorizon(
            "Baseline and strategy cover different years",
            {
                "baseline": [baseline.start_year, baseline.end_year],
                "strategy": [strategy.start_year, strategy.end_year],
            },
        )

    differences = [s.net_worth - b.net_worth for b, s in zip(baseline.years, strategy.years)]

    crossovers: List[CrossoverPoint] = []
    for index in range(1, len(differences)):
        ahead = differences[index] >= 0
        if ahead != (differences[index - 1] >= 0):
            row = strategy.years[index]
            crossovers.append(CrossoverPoint(
                year=row.year,
                age=row.age,
                strategy_ahead=ahead,
                net_worth_difference=differences[index],
            ))

    # Walk back from the end while the strategy stays ahead
    sustained_index: Optional[int] = None
    for index in range(len(differences) - 1, -1, -1):
        if differences[index] < 0:
            break
        sustained_index = index

    simple_index = next((i for i, diff in enumerate(differences) if diff >= 0), None)

    tax_savings = baseline.summary.total_taxes - strategy.summary.total_taxes

    if sustained_index is None:
        return BreakEvenAnalysis(
            status="no_break_even",
            simple_break_even_year=strategy.years[simple_index].year if simple_index is not None else None,
            simple_break_even_age=strategy.years[simple_index].age if simple_index is not None else None,
            crossovers=crossovers,
            final_net_worth_difference=differences[-1],
            total_tax_savings=tax_savings,
        )

    return BreakEvenAnalysis(
        status="break_even",
        break_even_year=strategy.years[sustained_index].year,
        break_even_age=strategy.years[sustained_index].age,
        simple_break_even_year=strategy.years[simple_index].year,
        simple_break_even_age=strategy.years[simple_index].age,
        crossovers=crossovers,
        final_net_worth_difference=differences[-1],
        total_tax_savings=tax_savings,
    )


# =============================================================================
# SENSITIVITY
# =============================================================================

BASE_CASE = "Base Case"

SENSITIVITY_SCENARIOS: List[SensitivityScenario] = [
    SensitivityScenario(name=BASE_CASE),
    SensitivityScenario(name="Low Growth", growth_adjustment_bps=-200),
    SensitivityScenario(name="High Growth", growth_adjustment_bps=200),
    SensitivityScenario(name="Higher Taxes", tax_multiplier_bps=12000),
    SensitivityScenario(name="Lower Taxes", tax_multiplier_bps=8000),
    # Explicit combinations; every other scenario moves one assumption
    SensitivityScenario(name="Pessimistic", growth_adjustment_bps=-200, tax_multiplier_bps=12000),
    SensitivityScenario(name="Optimistic", growth_adjustment_bps=200, tax_multiplier_bps=8000),
]


def _perturb(profile: ClientProfile, scenario: SensitivityScenario) -> ClientProfile:
    return profile.model_copy(update={
        "growth_rate_bps": profile.growth_rate_bps + scenario.growth_adjustment_bps,
        "tax_multiplier_bps": apply_basis_points(profile.tax_multiplier_bps, scenario.tax_multiplier_bps),
    })


def _run_scenario(
    profile: ClientProfile,
    scenario: SensitivityScenario,
    start_year: int,
    end_year: int,
    policy: Optional[StrategyPolicy],
) -> SensitivityOutcome:
    perturbed = _perturb(profile, scenario)
    baseline = run_simulation(perturbed, baseline_policy(perturbed), start_year, end_year)
    strategy = run_simulation(perturbed, policy or policy_from_profile(perturbed), start_year, end_year)
    break_even = analyze_break_even(baseline, strategy)

    return SensitivityOutcome(
        scenario=scenario,
        growth_rate_bps=perturbed.growth_rate_bps,
        tax_multiplier_bps=perturbed.tax_multiplier_bps,
        tax_savings=break_even.total_tax_savings,
        ending_wealth=strategy.summary.ending_net_worth,
        baseline_ending_wealth=baseline.summary.ending_net_worth,
        break_even_age=break_even.break_even_age,
    )


def run_sensitivity_analysis(
    profile: ClientProfile,
    start_year: int,
    end_year: Optional[int] = None,
    policy: Optional[StrategyPolicy] = None,
    scenarios: Optional[List[SensitivityScenario]] = None,
) -> SensitivityResult:
    """
    Re-run baseline and primary strategy under each perturbation.

    Scenarios are independent re-runs; deltas are measured against the
    Base Case, which is always evaluated.
    """
    end_year = end_year if end_year is not None else profile.projection_end_year
    scenarios = scenarios or SENSITIVITY_SCENARIOS
    if not any(s.name == BASE_CASE for s in scenarios):
        scenarios = [SensitivityScenario(name=BASE_CASE)] + list(scenarios)

    outcomes = [_run_scenario(profile, s, start_year, end_year, policy) for s in scenarios]
    base = next(o for o in outcomes if o.scenario.name == BASE_CASE)

    outcomes = [
        outcome.model_copy(update={
            "tax_savings_delta": outcome.tax_savings - base.tax_savings,
            "ending_wealth_delta": outcome.ending_wealth - base.ending_wealth,
            "break_even_age_delta": (
                outcome.break_even_age - base.break_even_age
                if outcome.break_even_age is not None and base.break_even_age is not None
                else None
            ),
        })
        for outcome in outcomes
    ]
    base = next(o for o in outcomes if o.scenario.name == BASE_CASE)

    break_evens = [o.break_even_age for o in outcomes if o.break_even_age is not None]
    wealth = [o.ending_wealth for o in outcomes]

    return SensitivityResult(
        base_case=base,
        outcomes=outcomes,
        break_even_range=(min(break_evens), max(break_evens)) if break_evens else (None, None),
        wealth_range=(min(wealth), max(wealth)),
    )


# =============================================================================
# WIDOW PENALTY
# =============================================================================

# Simplified actuarial table: (age below, expected total age)
LIFE_EXPECTANCY_TABLE = [
    (50, 85),
    (55, 85),
    (60, 86),
    (65, 86),
    (70, 87),
    (75, 88),
    (80, 89),
    (85, 91),
    (90, 94),
]

# Average bracket jump (percentage points) that justifies pre-paying tax
WIDOW_BRACKET_JUMP_THRESHOLD = 5


def estimate_life_expectancy(current_age: int) -> int:
    """Expected age at death for someone currently `current_age`."""
    for below, expected in LIFE_EXPECTANCY_TABLE:
        if current_age < below:
            return expected
    return current_age + 5


def analyze_widow_penalty(
    profile: ClientProfile,
    start_year: int,
    end_year: Optional[int] = None,
    policy: Optional[StrategyPolicy] = None,
) -> WidowAnalysisResult:
    """
    Compare the married projection with one where the spouse dies and the
    survivor files single from the following year.

    Raises:
        IneligibleAnalysis: not a joint filer, or the death falls outside the horizon.
    """
    if profile.filing_status != FilingStatus.MARRIED_FILING_JOINTLY:
        raise IneligibleAnalysis(
            "Widow analysis only applies to married filing jointly",
            {"filing_status": profile.filing_status.value},
        )

    end_year = end_year if end_year is not None else profile.projection_end_year
    spouse_start_age = profile.spouse_age_in(start_year)
    death_age = profile.spouse_death_age or estimate_life_expectancy(spouse_start_age)
    death_year = profile.spouse_birth_year + death_age
    first_single_year = death_year + 1

    if death_year < start_year or first_single_year > end_year:
        raise IneligibleAnalysis(
            "Spouse's death year falls outside the projection horizon",
            {"death_year": death_year, "start_year": start_year, "end_year": end_year},
        )

    policy = policy or policy_from_profile(profile)
    married = run_simulation(profile, policy, start_year, end_year)
    widowed = run_simulation(profile, policy, start_year, end_year, widowed_from_year=first_single_year)

    impacts = []
    for married_year, single_year in zip(married.years, widowed.years):
        if single_year.year < first_single_year:
            continue
        impacts.append(WidowTaxImpact(
            year=single_year.year,
            survivor_age=single_year.age,
            married_tax=married_year.total_tax,
            single_tax=single_year.total_tax,
            married_marginal_rate=married_year.marginal_rate,
            single_marginal_rate=single_year.marginal_rate,
            tax_increase=single_year.total_tax - married_year.total_tax,
            bracket_jump=single_year.marginal_rate - married_year.marginal_rate,
        ))

    total_additional = sum(i.tax_increase for i in impacts)
    # Hundredths of a percentage point so the average stays an integer
    average_jump_bps = sum(i.bracket_jump for i in impacts) * 100 // len(impacts)

    recommended = 0
    if average_jump_bps > WIDOW_BRACKET_JUMP_THRESHOLD * 100:
        recommended = max(0, total_additional // len(impacts))

    logger.debug("Widow analysis: death %s, %s single years", death_year, len(impacts))

    return WidowAnalysisResult(
        death_year=death_year,
        spouse_death_age=death_age,
        first_single_year=first_single_year,
        years=impacts,
        total_additional_tax=total_additional,
        average_bracket_jump_bps=average_jump_bps,
        recommended_conversion_increase=recommended,
    )
