"""
RothPilot - Projection Engine
=============================
Year-by-year account and tax projection for one strategy.

This module performs all projection math with the hardcoded tables in
tax_constants. It never reads the clock, touches storage or uses randomness:
the same profile, policy and horizon always give bit-identical results.

The run is an explicit fold: an immutable YearState goes in, the next
YearState and that year's YearlyResult come out.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from exceptions import InvalidHorizon
from models import (
    ClientProfile,
    ConstraintType,
    ConversionType,
    RmdTreatment,
    SimulationResult,
    SimulationSummary,
    StrategyPolicy,
    WithdrawalType,
    YearlyResult,
)
from strategies import (
    conversion_allowed,
    conversion_ceiling,
    pays_tax_from_conversion,
    planned_conversion,
    validate_policy,
)
from tax_constants import (
    ACA_MEDICARE_AGE,
    IRMAA_LOOKBACK_YEARS,
    IRMAA_START_AGE,
    FilingStatus,
    aca_subsidy_cutoff,
    apply_basis_points,
    calculate_federal_tax,
    get_marginal_rate,
    inflate_amount,
    irmaa_annual_surcharge,
    net_investment_income_tax,
    required_minimum_distribution,
    rmd_start_age,
    standard_deduction,
    state_income_tax,
    taxable_social_security,
)

logger = logging.getLogger(__name__)

MAX_HORIZON_YEARS = 120


# =============================================================================
# STATE
# =============================================================================

@dataclass(frozen=True)
class YearState:
    """Balances at the start of `year`. Owned by a single run."""
    year: int
    traditional: int
    other_retirement: int
    roth: int
    taxable: int
    cumulative_taxes: int = 0
    cumulative_conversions: int = 0
    magi_history: Tuple[int, ...] = ()
    fully_converted: bool = False

    @classmethod
    def from_profile(cls, profile: ClientProfile, start_year: int) -> "YearState":
        return cls(
            year=start_year,
            traditional=profile.traditional_ira,
            other_retirement=profile.other_retirement,
            roth=profile.roth_ira,
            taxable=profile.taxable_accounts,
        )


@dataclass(frozen=True)
class TaxBreakdown:
    taxable_social_security: int
    magi: int
    standard_deduction: int
    taxable_income: int
    federal_tax: int
    state_tax: int
    niit_tax: int
    irmaa_surcharge: int
    marginal_rate: int

    @property
    def total_tax(self) -> int:
        return self.federal_tax + self.state_tax + self.niit_tax + self.irmaa_surcharge


# =============================================================================
# ANNUAL TAX CALCULATION
# =============================================================================

class AnnualTaxCalculator:
    """
    Federal, state, NIIT and Medicare IRMAA cost for one projected year.

    Growth of the taxable account stands in for net investment income.
    """

    def __init__(self, profile: ClientProfile):
        self.profile = profile

    def calculate(
        self,
        year: int,
        filing_status: FilingStatus,
        age: int,
        spouse_age: Optional[int],
        ordinary_income: int,
        social_security: int,
        lookback_magi: Optional[int] = None,
        investment_income: int = 0,
    ) -> TaxBreakdown:
        taxable_ss = taxable_social_security(social_security, ordinary_income, filing_status)
        magi = ordinary_income + taxable_ss

        deduction = standard_deduction(filing_status, age, spouse_age, year)
        taxable_income = max(0, magi - deduction)

        federal_tax = apply_basis_points(
            calculate_federal_tax(taxable_income, filing_status, year),
            self.profile.tax_multiplier_bps,
        )
        state_tax = state_income_tax(
            taxable_income, self.profile.state, filing_status, self.profile.state_tax_rate_bps
        )

        niit = 0
        if self.profile.include_niit:
            niit = net_investment_income_tax(magi, investment_income, filing_status)

        irmaa = 0
        if self.profile.include_irmaa:
            irmaa = self._irmaa(
                filing_status, age, spouse_age,
                lookback_magi if lookback_magi is not None else magi,
            )

        return TaxBreakdown(
            taxable_social_security=taxable_ss,
            magi=magi,
            standard_deduction=deduction,
            taxable_income=taxable_income,
            federal_tax=federal_tax,
            state_tax=state_tax,
            niit_tax=niit,
            irmaa_surcharge=irmaa,
            marginal_rate=get_marginal_rate(taxable_income, filing_status, year),
        )

    def _irmaa(self, filing_status: FilingStatus, age: int, spouse_age: Optional[int], magi: int) -> int:
        joint = filing_status == FilingStatus.MARRIED_FILING_JOINTLY
        covered = 1 if age >= IRMAA_START_AGE else 0
        if joint and spouse_age is not None and spouse_age >= IRMAA_START_AGE:
            covered += 1
        if covered == 0:
            return 0
        return irmaa_annual_surcharge(magi, joint) * covered


# =============================================================================
# SIMULATION
# =============================================================================

def validate_horizon(profile: ClientProfile, start_year: int, end_year: int) -> None:
    if end_year < start_year:
        raise InvalidHorizon(
            f"End year {end_year} is before start year {start_year}",
            {"start_year": start_year, "end_year": end_year},
        )
    if end_year - start_year + 1 > MAX_HORIZON_YEARS:
        raise InvalidHorizon(
            f"Horizon of {end_year - start_year + 1} years exceeds {MAX_HORIZON_YEARS}",
            {"start_year": start_year, "end_year": end_year},
        )
    if start_year < profile.birth_year:
        raise InvalidHorizon(
            "Projection cannot start before the client's birth year",
            {"start_year": start_year, "birth_year": profile.birth_year},
        )


class ProjectionSimulator:
    """
    Runs one strategy policy over a horizon.

    `widowed_from_year` switches the household to a single filer from that
    year on: the spouse drops out and the survivor keeps the larger Social
    Security benefit.
    """

    def __init__(
        self,
        profile: ClientProfile,
        policy: StrategyPolicy,
        start_year: int,
        widowed_from_year: Optional[int] = None,
    ):
        self.profile = profile
        self.policy = policy
        self.start_year = start_year
        self.widowed_from_year = widowed_from_year
        self.tax_calculator = AnnualTaxCalculator(profile)
        self.rmd_age = profile.rmd_start_age or rmd_start_age(profile.birth_year)

    def _is_widowed(self, year: int) -> bool:
        return self.widowed_from_year is not None and year >= self.widowed_from_year

    def _household(self, year: int) -> Tuple[FilingStatus, Optional[int]]:
        if self._is_widowed(year):
            return FilingStatus.SINGLE, None
        return self.profile.filing_status, self.profile.spouse_age_in(year)

    def _inflate(self, amount: int, year: int) -> int:
        return inflate_amount(amount, year - self.start_year, self.profile.inflation_rate_bps)

    def _social_security(self, year: int, age: int, spouse_age: Optional[int], filing_status: FilingStatus) -> int:
        profile = self.profile
        if self._is_widowed(year):
            if age < profile.social_security_start_age:
                return 0
            survivor = max(profile.social_security_benefit, profile.spouse_social_security_benefit)
            return self._inflate(survivor, year)

        total = 0
        if age >= profile.social_security_start_age:
            total += profile.social_security_benefit
        if (
            filing_status == FilingStatus.MARRIED_FILING_JOINTLY
            and spouse_age is not None
            and spouse_age >= profile.spouse_social_security_start_age
        ):
            total += profile.spouse_social_security_benefit
        return self._inflate(total, year)

    def advance_year(self, state: YearState) -> Tuple[YearState, YearlyResult]:
        """Project exactly one calendar year."""
        profile, policy = self.profile, self.policy
        year = state.year
        age = profile.age_in(year)
        filing_status, spouse_age = self._household(year)
        growth = profile.growth_rate_bps

        # Step 1: Investment growth
        traditional = state.traditional + apply_basis_points(state.traditional, growth)
        other = state.other_retirement + apply_basis_points(state.other_retirement, growth)
        roth = state.roth + apply_basis_points(state.roth, growth)
        taxable_growth = apply_basis_points(state.taxable, growth)
        taxable = state.taxable + taxable_growth

        # Step 2: RMDs from prior year-end balances
        rmd_traditional = min(traditional, required_minimum_distribution(state.traditional, age, self.rmd_age))
        rmd_other = min(other, required_minimum_distribution(state.other_retirement, age, self.rmd_age))
        traditional -= rmd_traditional
        other -= rmd_other
        rmd_total = rmd_traditional + rmd_other

        cash = rmd_total
        fixed_income = self._inflate(profile.pension_income + profile.other_income, year)
        social_security = self._social_security(year, age, spouse_age, filing_status)
        ordinary = rmd_total + fixed_income
        shortfall = 0

        # Step 3: Withdrawals
        withdrawal = 0
        if policy.withdrawal_type == WithdrawalType.SYSTEMATIC and age >= policy.withdrawal_start_age:
            need = self._inflate(policy.annual_withdrawal_need, year)

            from_cash = min(cash, need)
            cash -= from_cash
            need -= from_cash

            from_taxable = min(taxable, need)
            taxable -= from_taxable
            need -= from_taxable

            from_traditional = min(traditional, need)
            traditional -= from_traditional
            ordinary += from_traditional
            need -= from_traditional

            from_roth = min(roth, need)
            roth -= from_roth
            need -= from_roth

            withdrawal = from_cash + from_taxable + from_traditional + from_roth
            shortfall += need

        elif policy.withdrawal_type == WithdrawalType.PENALTY_FREE and age >= policy.withdrawal_start_age:
            withdrawal = apply_basis_points(traditional, policy.penalty_free_percent_bps)
            traditional -= withdrawal
            ordinary += withdrawal

        # Step 4: Roth conversion
        conversion = 0
        if conversion_allowed(policy, self.start_year, year, age):
            before = self.tax_calculator.calculate(
                year, filing_status, age, spouse_age, ordinary, social_security,
                investment_income=taxable_growth,
            )
            ceiling = conversion_ceiling(
                policy, profile, year, age, filing_status,
                before.standard_deduction, before.magi, before.magi,
            )
            conversion = planned_conversion(policy, traditional, ceiling, state.fully_converted)

            # Tax torpedo: conversion income pulls more Social Security into AGI
            if (
                ceiling is not None
                and conversion > 0
                and policy.conversion_type != ConversionType.FULL_CONVERSION
                and policy.constraint_type != ConstraintType.FIXED_AMOUNT
            ):
                with_conversion = ordinary + conversion
                magi_after = with_conversion + taxable_social_security(social_security, with_conversion, filing_status)
                overshoot = (magi_after - before.magi) - ceiling
                if overshoot > 0:
                    conversion = max(0, conversion - overshoot)

            traditional -= conversion
            roth += conversion
            ordinary += conversion

        fully_converted = state.fully_converted or (
            policy.conversion_type == ConversionType.FULL_CONVERSION and conversion > 0
        )

        # Step 5: Taxes, with IRMAA looking back two years when history exists
        lookback_magi = None
        if len(state.magi_history) >= IRMAA_LOOKBACK_YEARS:
            lookback_magi = state.magi_history[-IRMAA_LOOKBACK_YEARS]
        taxes = self.tax_calculator.calculate(
            year, filing_status, age, spouse_age, ordinary, social_security, lookback_magi, taxable_growth
        )

        # Step 6: Pay the bill
        tax_due = taxes.total_tax
        withheld = 0
        if conversion > 0 and pays_tax_from_conversion(policy):
            without_conversion = self.tax_calculator.calculate(
                year, filing_status, age, spouse_age, ordinary - conversion, social_security,
                lookback_magi, taxable_growth,
            )
            withheld = min(max(0, tax_due - without_conversion.total_tax), conversion, roth)
            roth -= withheld
            tax_due -= withheld

        paid = min(cash, tax_due)
        cash -= paid
        tax_due -= paid

        paid = min(taxable, tax_due)
        taxable -= paid
        tax_due -= paid

        if tax_due > 0 and conversion > withheld:
            extra = min(tax_due, conversion - withheld, roth)
            roth -= extra
            withheld += extra
            tax_due -= extra

        if tax_due > 0:
            logger.debug("Year %s: %s cents of tax could not be funded", year, tax_due)
            shortfall += tax_due

        # Step 7: Leftover distribution cash
        if profile.rmd_treatment == RmdTreatment.REINVESTED:
            taxable += cash

        aca_subsidy_lost = None
        if profile.include_aca and age < ACA_MEDICARE_AGE:
            aca_subsidy_lost = taxes.magi > aca_subsidy_cutoff(profile.effective_household_size, profile.state)

        cumulative_taxes = state.cumulative_taxes + taxes.total_tax
        cumulative_conversions = state.cumulative_conversions + conversion

        result = YearlyResult(
            year=year,
            age=age,
            spouse_age=spouse_age,
            filing_status=filing_status,
            traditional_balance=traditional,
            other_retirement_balance=other,
            roth_balance=roth,
            taxable_balance=taxable,
            rmd_amount=rmd_total,
            conversion_amount=conversion,
            withdrawal_amount=withdrawal,
            social_security_income=social_security,
            taxable_social_security=taxes.taxable_social_security,
            other_ordinary_income=fixed_income,
            magi=taxes.magi,
            standard_deduction=taxes.standard_deduction,
            taxable_income=taxes.taxable_income,
            federal_tax=taxes.federal_tax,
            state_tax=taxes.state_tax,
            niit_tax=taxes.niit_tax,
            irmaa_surcharge=taxes.irmaa_surcharge,
            total_tax=taxes.total_tax,
            marginal_rate=taxes.marginal_rate,
            tax_withheld_from_conversion=withheld,
            aca_subsidy_lost=aca_subsidy_lost,
            shortfall=shortfall,
            cumulative_taxes=cumulative_taxes,
            cumulative_conversions=cumulative_conversions,
        )

        next_state = YearState(
            year=year + 1,
            traditional=traditional,
            other_retirement=other,
            roth=roth,
            taxable=taxable,
            cumulative_taxes=cumulative_taxes,
            cumulative_conversions=cumulative_conversions,
            magi_history=state.magi_history + (taxes.magi,),
            fully_converted=fully_converted,
        )
        return next_state, result

    def run(self, end_year: int) -> SimulationResult:
        validate_horizon(self.profile, self.start_year, end_year)
        validate_policy(self.policy, self.profile.filing_status)

        state = YearState.from_profile(self.profile, self.start_year)
        years: List[YearlyResult] = []
        while state.year <= end_year:
            state, result = self.advance_year(state)
            years.append(result)

        summary = summarize(years, self.profile.heir_tax_rate_bps)
        logger.debug(
            "Projected %s (%s-%s): %s years, ending net worth %s",
            self.policy.name, self.start_year, end_year, len(years), summary.ending_net_worth,
        )

        return SimulationResult(
            strategy_name=self.policy.name,
            policy=self.policy,
            start_year=self.start_year,
            end_year=end_year,
            years=years,
            summary=summary,
        )


def summarize(years: List[YearlyResult], heir_tax_rate_bps: int) -> SimulationSummary:
    """Terminal metrics; deferred balances pass to heirs taxed at their rate."""
    last = years[-1]
    heir_tax = apply_basis_points(
        last.traditional_balance + last.other_retirement_balance, heir_tax_rate_bps
    )
    total_federal = sum(y.federal_tax for y in years)
    total_state = sum(y.state_tax for y in years)
    total_niit = sum(y.niit_tax for y in years)
    total_irmaa = sum(y.irmaa_surcharge for y in years)

    return SimulationSummary(
        final_traditional=last.traditional_balance,
        final_other_retirement=last.other_retirement_balance,
        final_roth=last.roth_balance,
        final_taxable=last.taxable_balance,
        ending_net_worth=last.net_worth,
        total_federal_tax=total_federal,
        total_state_tax=total_state,
        total_niit=total_niit,
        total_irmaa=total_irmaa,
        total_taxes=total_federal + total_state + total_niit + total_irmaa,
        total_conversions=sum(y.conversion_amount for y in years),
        total_rmds=sum(y.rmd_amount for y in years),
        total_withdrawals=sum(y.withdrawal_amount for y in years),
        total_shortfall=sum(y.shortfall for y in years),
        heir_tax=heir_tax,
        after_tax_legacy=last.net_worth - heir_tax,
    )


def run_simulation(
    profile: ClientProfile,
    policy: StrategyPolicy,
    start_year: int,
    end_year: int,
    widowed_from_year: Optional[int] = None,
) -> SimulationResult:
    """
    Project one strategy from start_year to end_year inclusive.

    Raises:
        InvalidHorizon: end before start, or more than MAX_HORIZON_YEARS.
        StrategyConfigurationError: the policy cannot be simulated.
    """
    simulator = ProjectionSimulator(profile, policy, start_year, widowed_from_year)
    return simulator.run(end_year)
