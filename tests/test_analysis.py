"""
RothPilot - Analysis Tests
==========================
Break-even, sensitivity and widow-penalty analyses.
"""

import pytest
from datetime import date

import os
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from tax_constants import FilingStatus
from models import (
    ClientProfile,
    ConstraintType,
    ConversionType,
    SimulationResult,
    StrategyPolicy,
    YearlyResult,
)
from exceptions import IneligibleAnalysis, MismatchedHorizon
from projection_engine import summarize
from analysis import (
    SENSITIVITY_SCENARIOS,
    analyze_break_even,
    analyze_widow_penalty,
    estimate_life_expectancy,
    run_sensitivity_analysis,
)


def make_result(name, net_worths, start_year=2030, start_age=65):
    """Synthetic result whose whole net worth sits in the taxable account."""
    years = [
        YearlyResult(
            year=start_year + i,
            age=start_age + i,
            filing_status=FilingStatus.SINGLE,
            traditional_balance=0,
            other_retirement_balance=0,
            roth_balance=0,
            taxable_balance=worth,
        )
        for i, worth in enumerate(net_worths)
    ]
    return SimulationResult(
        strategy_name=name,
        policy=StrategyPolicy(name=name),
        start_year=start_year,
        end_year=start_year + len(net_worths) - 1,
        years=years,
        summary=summarize(years, 0),
    )


# =============================================================================
# BREAK-EVEN TESTS
# =============================================================================

class TestBreakEven:
    """Sustained crossover detection."""

    @pytest.fixture
    def baseline(self):
        return make_result("baseline", [100, 100, 100, 100, 100])

    def test_sustained_crossover_after_reversal(self, baseline):
        """An early crossing that reverts is not the break-even."""
        strategy = make_result("moderate", [90, 110, 95, 120, 130])
        result = analyze_break_even(baseline, strategy)

        assert result.status == "break_even"
        assert result.has_break_even
        assert result.break_even_year == 2033
        assert result.break_even_age == 68
        assert result.simple_break_even_year == 2031
        assert [c.year for c in result.crossovers] == [2031, 2032, 2033]
        assert [c.strategy_ahead for c in result.crossovers] == [True, False, True]
        assert result.final_net_worth_difference == 30

    def test_never_overtakes(self, baseline):
        strategy = make_result("moderate", [90, 95, 99, 98, 97])
        result = analyze_break_even(baseline, strategy)

        assert result.status == "no_break_even"
        assert not result.has_break_even
        assert result.break_even_year is None
        assert result.break_even_age is None
        assert result.simple_break_even_year is None
        assert result.crossovers == []

    def test_lead_lost_in_final_year(self, baseline):
        strategy = make_result("moderate", [90, 110, 120, 130, 99])
        result = analyze_break_even(baseline, strategy)

        assert result.status == "no_break_even"
        assert result.break_even_year is None
        assert result.simple_break_even_year == 2031

    def test_equal_counts_as_break_even(self, baseline):
        result = analyze_break_even(baseline, make_result("same", [100] * 5))
        assert result.status == "break_even"
        assert result.break_even_year == 2030

    def test_mismatched_years(self, baseline):
        shifted = make_result("moderate", [100] * 5, start_year=2031)
        with pytest.raises(MismatchedHorizon) as exc:
            analyze_break_even(baseline, shifted)
        assert exc.value.code == "MismatchedHorizon"

    def test_mismatched_length(self, baseline):
        with pytest.raises(MismatchedHorizon):
            analyze_break_even(baseline, make_result("short", [100] * 4))


# =============================================================================
# SENSITIVITY TESTS
# =============================================================================

class TestSensitivity:
    """Perturbed re-runs of baseline and primary strategy."""

    @pytest.fixture
    def profile(self):
        return ClientProfile(
            date_of_birth=date(1962, 4, 1),
            state="NC",
            traditional_ira=150000000,
            taxable_accounts=20000000,
            growth_rate_bps=600,
        )

    def test_all_scenarios_reported(self, profile):
        result = run_sensitivity_analysis(profile, 2026, 2046)
        names = [o.scenario.name for o in result.outcomes]
        assert names == [s.name for s in SENSITIVITY_SCENARIOS]
        assert result.base_case.scenario.name == "Base Case"
        assert result.base_case.tax_savings_delta == 0
        assert result.base_case.ending_wealth_delta == 0

    def test_perturbations_relative_to_profile(self, profile):
        result = run_sensitivity_analysis(profile, 2026, 2046)
        by_name = {o.scenario.name: o for o in result.outcomes}

        assert by_name["Low Growth"].growth_rate_bps == 400
        assert by_name["High Growth"].growth_rate_bps == 800
        assert by_name["Higher Taxes"].tax_multiplier_bps == 12000
        assert by_name["Lower Taxes"].tax_multiplier_bps == 8000
        assert by_name["Pessimistic"].growth_rate_bps == 400
        assert by_name["Pessimistic"].tax_multiplier_bps == 12000
        assert by_name["High Growth"].ending_wealth > by_name["Low Growth"].ending_wealth

    def test_ranges(self, profile):
        result = run_sensitivity_analysis(profile, 2026, 2046)
        low, high = result.wealth_range
        assert low <= result.base_case.ending_wealth <= high
        for outcome in result.outcomes:
            assert outcome.ending_wealth_delta == outcome.ending_wealth - result.base_case.ending_wealth

    def test_does_not_modify_profile(self, profile):
        run_sensitivity_analysis(profile, 2026, 2036)
        assert profile.growth_rate_bps == 600
        assert profile.tax_multiplier_bps == 10000


# =============================================================================
# WIDOW PENALTY TESTS
# =============================================================================

class TestWidowPenalty:
    """Married versus surviving-spouse projections."""

    @pytest.fixture
    def couple(self):
        return ClientProfile(
            date_of_birth=date(1958, 2, 1),
            spouse_date_of_birth=date(1956, 8, 1),
            filing_status=FilingStatus.MARRIED_FILING_JOINTLY,
            state="TX",
            traditional_ira=200000000,
            social_security_benefit=3000000,
            spouse_social_security_benefit=2000000,
            conversion_type=ConversionType.NO_CONVERSION,
            constraint_type=ConstraintType.NONE,
            spouse_death_age=80,
        )

    def test_single_filer_is_ineligible(self):
        profile = ClientProfile(date_of_birth=date(1958, 2, 1), state="TX")
        with pytest.raises(IneligibleAnalysis) as exc:
            analyze_widow_penalty(profile, 2026, 2045)
        assert exc.value.code == "IneligibleAnalysis"

    def test_head_of_household_is_ineligible(self):
        profile = ClientProfile(
            date_of_birth=date(1958, 2, 1), state="TX",
            filing_status=FilingStatus.HEAD_OF_HOUSEHOLD,
        )
        with pytest.raises(IneligibleAnalysis):
            analyze_widow_penalty(profile, 2026, 2045)

    def test_bracket_compression(self, couple):
        result = analyze_widow_penalty(couple, 2026, 2045)

        assert result.death_year == 2036
        assert result.first_single_year == 2037
        assert [y.year for y in result.years] == list(range(2037, 2046))
        assert result.total_additional_tax == sum(y.tax_increase for y in result.years)
        assert result.total_additional_tax > 0
        for year in result.years:
            assert year.tax_increase == year.single_tax - year.married_tax
            assert year.bracket_jump == year.single_marginal_rate - year.married_marginal_rate

    def test_estimated_death_age(self, couple):
        estimated = couple.model_copy(update={"spouse_death_age": None})
        result = analyze_widow_penalty(estimated, 2026, 2045)
        # Spouse is 70 in 2026
        assert result.spouse_death_age == 88
        assert result.death_year == 2044

    def test_death_outside_horizon(self, couple):
        late = couple.model_copy(update={"spouse_death_age": 99})
        with pytest.raises(IneligibleAnalysis):
            analyze_widow_penalty(late, 2026, 2045)

    def test_life_expectancy_table(self):
        assert estimate_life_expectancy(45) == 85
        assert estimate_life_expectancy(70) == 88
        assert estimate_life_expectancy(92) == 97
