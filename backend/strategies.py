"""
RothPilot - Conversion Strategies
=================================
Strategy policies and the conversion ceiling rules they select.

A policy is a closed combination of conversion_type x constraint_type x
withdrawal_type. The projection engine dispatches on it here instead of
carrying one code path per strategy, which keeps the analyses
strategy-agnostic.
"""

from typing import Dict, List, Optional

from exceptions import StrategyConfigurationError
from models import (
    ClientProfile,
    ConstraintType,
    ConversionType,
    StrategyPolicy,
    TaxPaymentSource,
)
from tax_constants import (
    ACA_MEDICARE_AGE,
    TAX_TABLE_BASE_YEAR,
    FilingStatus,
    aca_subsidy_cutoff,
    bracket_ceiling,
    irmaa_headroom,
)


# =============================================================================
# CONSTANTS
# =============================================================================

BASELINE_NAME = "baseline"
CLIENT_STRATEGY_NAME = "client_strategy"

# IRMAA uses MAGI from two years earlier, so protection starts two years before Medicare
IRMAA_PROTECTION_AGE = 63

# Lowest risk first; used to break ties between equally wealthy strategies
STRATEGY_RISK_ORDER = ["irmaa_safe", "conservative", "moderate", "aggressive"]

PRESET_DEFINITIONS: Dict[str, Dict] = {
    "conservative": {
        "description": "Fill the 22% bracket each year",
        "constraint_type": ConstraintType.BRACKET_CEILING,
        "target_bracket_rate": 22,
    },
    "moderate": {
        "description": "Fill the 24% bracket each year",
        "constraint_type": ConstraintType.BRACKET_CEILING,
        "target_bracket_rate": 24,
    },
    "aggressive": {
        "description": "Fill the 32% bracket each year",
        "constraint_type": ConstraintType.BRACKET_CEILING,
        "target_bracket_rate": 32,
    },
    "irmaa_safe": {
        "description": "Fill the 24% bracket but stay below the next IRMAA tier",
        "constraint_type": ConstraintType.IRMAA_THRESHOLD,
        "target_bracket_rate": 24,
    },
}


# =============================================================================
# POLICY CONSTRUCTION
# =============================================================================

def _withdrawal_plan(profile: ClientProfile) -> Dict:
    return {
        "withdrawal_type": profile.withdrawal_type,
        "withdrawal_start_age": profile.withdrawal_start_age,
        "annual_withdrawal_need": profile.annual_withdrawal_need,
        "penalty_free_percent_bps": profile.penalty_free_percent_bps,
    }


def baseline_policy(profile: ClientProfile) -> StrategyPolicy:
    """No conversions; shares the client's withdrawal plan so comparisons stay fair."""
    return StrategyPolicy(
        name=BASELINE_NAME,
        conversion_type=ConversionType.NO_CONVERSION,
        constraint_type=ConstraintType.NONE,
        **_withdrawal_plan(profile),
    )


def policy_from_profile(profile: ClientProfile, name: str = CLIENT_STRATEGY_NAME) -> StrategyPolicy:
    """The client's own configured strategy."""
    return StrategyPolicy(
        name=name,
        conversion_type=profile.conversion_type,
        constraint_type=profile.constraint_type,
        target_bracket_rate=profile.target_bracket_rate,
        fixed_conversion_amount=profile.fixed_conversion_amount,
        annual_conversion_cap=profile.annual_conversion_cap,
        years_to_defer=profile.years_to_defer_conversion,
        conversion_end_age=profile.conversion_end_age,
        tax_payment_source=profile.tax_payment_source,
        **_withdrawal_plan(profile),
    )


def preset_policy(profile: ClientProfile, preset: str) -> StrategyPolicy:
    """Build one of the named presets around the client's withdrawal and payment settings."""
    if preset not in PRESET_DEFINITIONS:
        raise StrategyConfigurationError(f"Unknown strategy preset: {preset}", {"preset": preset})

    definition = PRESET_DEFINITIONS[preset]
    return StrategyPolicy(
        name=preset,
        conversion_type=ConversionType.OPTIMIZED_AMOUNT,
        constraint_type=definition["constraint_type"],
        target_bracket_rate=definition["target_bracket_rate"],
        years_to_defer=profile.years_to_defer_conversion,
        conversion_end_age=profile.conversion_end_age,
        tax_payment_source=profile.tax_payment_source,
        **_withdrawal_plan(profile),
    )


def preset_policies(profile: ClientProfile) -> List[StrategyPolicy]:
    return [preset_policy(profile, name) for name in PRESET_DEFINITIONS]


# =============================================================================
# VALIDATION
# =============================================================================

def validate_policy(policy: StrategyPolicy, filing_status: FilingStatus) -> None:
    """
    Reject combinations the engine cannot simulate.

    Raises:
        StrategyConfigurationError: naming the offending option.
    """
    details = {"strategy": policy.name}

    if policy.conversion_type == ConversionType.FIXED_AMOUNT and not policy.fixed_conversion_amount:
        raise StrategyConfigurationError("fixed_amount conversion requires fixed_conversion_amount", details)

    if policy.conversion_type == ConversionType.OPTIMIZED_AMOUNT and policy.constraint_type == ConstraintType.NONE:
        raise StrategyConfigurationError("optimized_amount conversion requires a ceiling constraint", details)

    if policy.constraint_type == ConstraintType.FIXED_AMOUNT and policy.annual_conversion_cap is None:
        raise StrategyConfigurationError("fixed_amount constraint requires annual_conversion_cap", details)

    needs_bracket = policy.constraint_type == ConstraintType.BRACKET_CEILING or (
        policy.constraint_type == ConstraintType.IRMAA_THRESHOLD
        and policy.conversion_type == ConversionType.OPTIMIZED_AMOUNT
    )
    if needs_bracket and policy.target_bracket_rate is None:
        raise StrategyConfigurationError(f"{policy.constraint_type.value} constraint requires target_bracket_rate", details)

    # The target only matters to constraints that read it
    reads_bracket = needs_bracket or policy.constraint_type == ConstraintType.IRMAA_THRESHOLD
    if reads_bracket and policy.target_bracket_rate is not None:
        ceiling = bracket_ceiling(policy.target_bracket_rate, TAX_TABLE_BASE_YEAR, filing_status)
        if ceiling is None or ceiling == float('inf'):
            raise StrategyConfigurationError(
                f"No bracket ceiling for a {policy.target_bracket_rate}% target",
                {**details, "target_bracket_rate": policy.target_bracket_rate},
            )


# =============================================================================
# CONVERSION CEILINGS
# =============================================================================

def bracket_room(
    target_rate: int,
    year: int,
    filing_status: FilingStatus,
    deduction: int,
    income_before_conversion: int,
) -> int:
    """Conversion that fills taxable income exactly to the top of the target bracket."""
    ceiling = bracket_ceiling(target_rate, year, filing_status)
    return max(0, int(deduction + ceiling - income_before_conversion))


def conversion_ceiling(
    policy: StrategyPolicy,
    profile: ClientProfile,
    year: int,
    age: int,
    filing_status: FilingStatus,
    deduction: int,
    income_before_conversion: int,
    magi_before_conversion: int,
) -> Optional[int]:
    """
    Largest conversion allowed this year, or None when nothing caps it.
    """
    limits = []

    if policy.constraint_type == ConstraintType.BRACKET_CEILING:
        limits.append(bracket_room(
            policy.target_bracket_rate, year, filing_status, deduction, income_before_conversion
        ))

    elif policy.constraint_type == ConstraintType.IRMAA_THRESHOLD:
        if policy.target_bracket_rate is not None:
            limits.append(bracket_room(
                policy.target_bracket_rate, year, filing_status, deduction, income_before_conversion
            ))
        if age >= IRMAA_PROTECTION_AGE:
            headroom = irmaa_headroom(
                magi_before_conversion, filing_status == FilingStatus.MARRIED_FILING_JOINTLY
            )
            if headroom is not None:
                limits.append(max(0, headroom))

    elif policy.constraint_type == ConstraintType.FIXED_AMOUNT:
        limits.append(policy.annual_conversion_cap)

    if profile.include_aca and age < ACA_MEDICARE_AGE:
        cutoff = aca_subsidy_cutoff(profile.effective_household_size, profile.state)
        limits.append(max(0, cutoff - magi_before_conversion))

    return min(limits) if limits else None


def conversion_allowed(policy: StrategyPolicy, start_year: int, year: int, age: int) -> bool:
    """Deferral and end-age window for conversions."""
    if not policy.converts:
        return False
    if year < start_year + policy.years_to_defer:
        return False
    if policy.conversion_end_age is not None and age >= policy.conversion_end_age:
        return False
    return True


def planned_conversion(
    policy: StrategyPolicy,
    available: int,
    ceiling: Optional[int],
    already_fully_converted: bool,
) -> int:
    """Conversion amount before the tax-torpedo correction."""
    if available <= 0:
        return 0

    if policy.conversion_type == ConversionType.FULL_CONVERSION:
        return 0 if already_fully_converted else available

    if policy.conversion_type == ConversionType.FIXED_AMOUNT:
        amount = policy.fixed_conversion_amount
        if ceiling is not None:
            amount = min(amount, ceiling)
        return min(amount, available)

    if policy.conversion_type == ConversionType.OPTIMIZED_AMOUNT:
        # validate_policy guarantees a ceiling
        return min(ceiling, available)

    return 0


def pays_tax_from_conversion(policy: StrategyPolicy) -> bool:
    return policy.tax_payment_source == TaxPaymentSource.FROM_IRA
