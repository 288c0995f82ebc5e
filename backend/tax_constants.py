"""
RothPilot - Tax Tables
======================
Hardcoded 2026 federal tax data and the pure lookup functions built on it.

CRITICAL: These tables are the ONLY source of truth for projection math.
All monetary values are integer cents. Bracket rates are integer percents
(22 = 22%); assumption rates elsewhere are integer basis points (500 = 5%).

Years after the 2026 reference year are escalated by a fixed annual
inflation factor so a multi-decade projection does not freeze 2026 dollars.
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# =============================================================================
# FILING STATUS ENUM
# =============================================================================

class FilingStatus(str, Enum):
    SINGLE = "single"
    MARRIED_FILING_JOINTLY = "married_filing_jointly"
    MARRIED_FILING_SEPARATELY = "married_filing_separately"
    HEAD_OF_HOUSEHOLD = "head_of_household"


JOINT_STATUSES = (FilingStatus.MARRIED_FILING_JOINTLY, FilingStatus.MARRIED_FILING_SEPARATELY)


# =============================================================================
# INFLATION ESCALATION
# =============================================================================

TAX_TABLE_BASE_YEAR = 2026
TAX_TABLE_INFLATION_BPS = 270  # 2.7% assumed annual escalation

BASIS_POINTS = 10000


# =============================================================================
# 2026 FEDERAL TAX BRACKETS
# Format: List of (upper_limit_cents, marginal_rate_percent) tuples
# The last tuple uses float('inf') for unlimited income
# =============================================================================

FEDERAL_BRACKETS_2026: Dict[FilingStatus, List[Tuple[float, int]]] = {
    FilingStatus.SINGLE: [
        (1180000, 10),       # 10% on first $11,800
        (4800000, 12),       # 12% on $11,800 to $48,000
        (10300000, 22),      # 22% on $48,000 to $103,000
        (19700000, 24),      # 24% on $103,000 to $197,000
        (25000000, 32),      # 32% on $197,000 to $250,000
        (62600000, 35),      # 35% on $250,000 to $626,000
        (float('inf'), 37)   # 37% on over $626,000
    ],
    FilingStatus.MARRIED_FILING_JOINTLY: [
        (2360000, 10),
        (9600000, 12),
        (20600000, 22),
        (39400000, 24),
        (50000000, 32),
        (75200000, 35),
        (float('inf'), 37)
    ],
    FilingStatus.MARRIED_FILING_SEPARATELY: [
        (1180000, 10),
        (4800000, 12),
        (10300000, 22),
        (19700000, 24),
        (25000000, 32),
        (37600000, 35),
        (float('inf'), 37)
    ],
    FilingStatus.HEAD_OF_HOUSEHOLD: [
        (1680000, 10),
        (6400000, 12),
        (10300000, 22),
        (19700000, 24),
        (25000000, 32),
        (62600000, 35),
        (float('inf'), 37)
    ],
}


# =============================================================================
# 2026 STANDARD DEDUCTIONS
# =============================================================================

STANDARD_DEDUCTION_2026: Dict[FilingStatus, int] = {
    FilingStatus.SINGLE: 1525000,
    FilingStatus.MARRIED_FILING_JOINTLY: 3050000,
    FilingStatus.MARRIED_FILING_SEPARATELY: 1525000,
    FilingStatus.HEAD_OF_HOUSEHOLD: 2290000,
}

# Additional deduction for age 65+
ADDITIONAL_STANDARD_DEDUCTION_2026 = {
    "single_or_hoh": 195000,  # One combined amount for Single/HOH
    "married": 155000         # Per qualifying spouse for Married
}

SENIOR_DEDUCTION_AGE = 65


# =============================================================================
# FEDERAL POVERTY LEVEL (2025 HHS guidelines, for ACA cliff modeling)
# =============================================================================

FPL_2025 = {
    "contiguous": {"base": 1558000, "per_person": 548000},
    "alaska": {"base": 1946000, "per_person": 686000},
    "hawaii": {"base": 1792000, "per_person": 631000},
}

ACA_SUBSIDY_CUTOFF_MULTIPLE = 4  # 400% FPL
ACA_MEDICARE_AGE = 65


# =============================================================================
# MEDICARE IRMAA TIERS (2026 projected)
# Format: (single_lower, joint_lower, part_b_monthly, part_d_monthly)
# CLIFF thresholds: $1 over a lower bound triggers the whole tier
# =============================================================================

IRMAA_TIERS_2026: List[Tuple[int, int, int, int]] = [
    (0, 0, 18500, 0),                   # Standard premium
    (10600000, 21200000, 25920, 1320),
    (13300000, 26600000, 37000, 3410),
    (16700000, 33400000, 48080, 5500),
    (20000000, 40000000, 59160, 7590),
    (50000000, 75000000, 62830, 8110),
]

IRMAA_START_AGE = 65
IRMAA_LOOKBACK_YEARS = 2


# =============================================================================
# SOCIAL SECURITY TAXATION (not inflation-adjusted since 1984/1993)
# =============================================================================

SS_PROVISIONAL_THRESHOLDS: Dict[FilingStatus, Tuple[int, int]] = {
    FilingStatus.SINGLE: (2500000, 3400000),
    FilingStatus.HEAD_OF_HOUSEHOLD: (2500000, 3400000),
    FilingStatus.MARRIED_FILING_JOINTLY: (3200000, 4400000),
    FilingStatus.MARRIED_FILING_SEPARATELY: (0, 0),
}

SS_BASE_AMOUNTS: Dict[FilingStatus, int] = {
    FilingStatus.SINGLE: 450000,
    FilingStatus.HEAD_OF_HOUSEHOLD: 450000,
    FilingStatus.MARRIED_FILING_JOINTLY: 600000,
    FilingStatus.MARRIED_FILING_SEPARATELY: 0,
}


# =============================================================================
# STATE INCOME TAX (basis points)
# Flat states are exact; for progressive states this is the top rate, used
# only where STATE_TAX_BRACKETS has no schedule
# =============================================================================

STATE_TAX_RATES_BPS: Dict[str, int] = {
    # No income tax
    "AK": 0, "FL": 0, "NV": 0, "NH": 0, "SD": 0,
    "TN": 0, "TX": 0, "WY": 0, "WA": 0,
    # Flat
    "AZ": 250, "CO": 440, "GA": 550, "ID": 580, "IL": 495,
    "IN": 315, "IA": 600, "KY": 450, "LA": 425, "MI": 425,
    "MS": 500, "NC": 475, "PA": 307, "UT": 485,
    # Progressive (top rate)
    "AL": 500, "AR": 470, "CA": 930, "CT": 699, "DE": 660,
    "DC": 1075, "HI": 1100, "KS": 570, "ME": 715, "MD": 575,
    "MA": 500, "MN": 985, "MO": 480, "MT": 590, "NE": 664,
    "NJ": 1075, "NM": 590, "NY": 1090, "ND": 290, "OH": 399,
    "OK": 475, "OR": 990, "RI": 599, "SC": 640, "VT": 875,
    "VA": 575, "WV": 550, "WI": 765,
}

# Progressive state schedules, same (upper_limit_cents, rate_percent) format
# as the federal table. Not escalated. Married filing jointly uses "married",
# every other status uses "single".
STATE_TAX_BRACKETS: Dict[str, Dict[str, List[Tuple[float, Decimal]]]] = {
    "CA": {
        "single": [
            (1096900, Decimal("1.0")),
            (2601600, Decimal("2.0")),
            (4103700, Decimal("4.0")),
            (5694400, Decimal("6.0")),
            (7187600, Decimal("8.0")),
            (36663800, Decimal("9.3")),
            (43996500, Decimal("10.3")),
            (73327500, Decimal("11.3")),
            (146655100, Decimal("12.3")),
            (float('inf'), Decimal("13.3")),
        ],
        "married": [
            (2193800, Decimal("1.0")),
            (5203200, Decimal("2.0")),
            (8207400, Decimal("4.0")),
            (11388800, Decimal("6.0")),
            (14375200, Decimal("8.0")),
            (73327600, Decimal("9.3")),
            (87993000, Decimal("10.3")),
            (146655000, Decimal("11.3")),
            (293310200, Decimal("12.3")),
            (float('inf'), Decimal("13.3")),
        ],
    },
    "NY": {
        "single": [
            (850000, Decimal("4.0")),
            (1137000, Decimal("4.5")),
            (1349000, Decimal("5.25")),
            (2145000, Decimal("5.5")),
            (8000000, Decimal("6.0")),
            (13500000, Decimal("6.85")),
            (21500000, Decimal("9.65")),
            (100000000, Decimal("10.3")),
            (float('inf'), Decimal("10.9")),
        ],
        "married": [
            (1700000, Decimal("4.0")),
            (2274000, Decimal("4.5")),
            (2698000, Decimal("5.25")),
            (32390000, Decimal("5.5")),
            (161550000, Decimal("6.0")),
            (215400000, Decimal("6.85")),
            (323100000, Decimal("9.65")),
            (2693750000, Decimal("10.3")),
            (float('inf'), Decimal("10.9")),
        ],
    },
    "NJ": {
        "single": [
            (2000000, Decimal("1.4")),
            (3500000, Decimal("1.75")),
            (4000000, Decimal("3.5")),
            (7500000, Decimal("5.525")),
            (50000000, Decimal("6.37")),
            (100000000, Decimal("8.97")),
            (float('inf'), Decimal("10.75")),
        ],
    },
}
STATE_TAX_BRACKETS["NJ"]["married"] = STATE_TAX_BRACKETS["NJ"]["single"]


# =============================================================================
# NET INVESTMENT INCOME TAX (statutory thresholds, never indexed)
# =============================================================================

NIIT_THRESHOLDS_CENTS: Dict[FilingStatus, int] = {
    FilingStatus.SINGLE: 20000000,
    FilingStatus.MARRIED_FILING_JOINTLY: 25000000,
    FilingStatus.MARRIED_FILING_SEPARATELY: 12500000,
    FilingStatus.HEAD_OF_HOUSEHOLD: 20000000,
}

NIIT_RATE_BPS = 380  # 3.8%


# =============================================================================
# REQUIRED MINIMUM DISTRIBUTIONS
# IRS Uniform Lifetime Table, divisors stored in tenths (26.5 -> 265)
# =============================================================================

UNIFORM_LIFETIME_TABLE: Dict[int, int] = {
    72: 274, 73: 265, 74: 255, 75: 246, 76: 237, 77: 229, 78: 220,
    79: 211, 80: 202, 81: 194, 82: 185, 83: 177, 84: 168, 85: 160,
    86: 152, 87: 144, 88: 137, 89: 129, 90: 122, 91: 115, 92: 108,
    93: 101, 94: 95, 95: 89, 96: 84, 97: 78, 98: 73, 99: 68, 100: 64,
    101: 60, 102: 56, 103: 52, 104: 49, 105: 46, 106: 43, 107: 41,
    108: 39, 109: 37, 110: 35, 111: 34, 112: 33, 113: 31, 114: 30,
    115: 29, 116: 28, 117: 27, 118: 25, 119: 23, 120: 20,
}

DEFAULT_RMD_START_AGE = 73


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def round_half_up(value: Decimal) -> int:
    """Round an exact Decimal amount to whole cents."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def apply_basis_points(amount: int, rate_bps: int) -> int:
    """Return amount * rate, rounded half up to the cent."""
    return round_half_up(Decimal(amount) * rate_bps / BASIS_POINTS)


def inflation_factor(years: int, rate_bps: int) -> Decimal:
    """Compounded escalation factor; never below 1 for non-positive years."""
    if years <= 0:
        return Decimal(1)
    return (Decimal(1) + Decimal(rate_bps) / BASIS_POINTS) ** years


def inflate_amount(amount: int, years: int, rate_bps: int) -> int:
    """Escalate a base-year amount by `years` of compounded inflation."""
    if years <= 0 or amount == 0:
        return amount
    return round_half_up(Decimal(amount) * inflation_factor(years, rate_bps))


def _table_factor(year: int) -> Decimal:
    return inflation_factor(year - TAX_TABLE_BASE_YEAR, TAX_TABLE_INFLATION_BPS)


def federal_brackets(year: int, filing_status: FilingStatus) -> List[Tuple[float, int]]:
    """
    Federal brackets for a tax year.
    Thresholds after 2026 are escalated and rounded to the nearest whole dollar.
    """
    base = FEDERAL_BRACKETS_2026[filing_status]
    if year <= TAX_TABLE_BASE_YEAR:
        return list(base)

    factor = _table_factor(year)
    escalated = []
    for limit, rate in base:
        if limit == float('inf'):
            escalated.append((limit, rate))
        else:
            dollars = round_half_up(Decimal(int(limit)) * factor / 100)
            escalated.append((dollars * 100, rate))
    return escalated


def bracket_ceiling(rate: int, year: int, filing_status: FilingStatus) -> Optional[float]:
    """Upper bound of the bracket taxed at `rate`, or None if no such bracket."""
    for limit, bracket_rate in federal_brackets(year, filing_status):
        if bracket_rate == rate:
            return limit
    return None


def calculate_federal_tax_with_breakdown(
    taxable_income: int,
    filing_status: FilingStatus,
    year: int = TAX_TABLE_BASE_YEAR,
) -> Tuple[int, List[Tuple[int, int, int]]]:
    """
    Progressive federal tax with the amount taxed in each bracket.

    Returns:
        (total_tax, [(rate, income_in_bracket, tax_in_bracket), ...])
    """
    return _progressive_tax(taxable_income, federal_brackets(year, filing_status))


def _progressive_tax(taxable_income: int, brackets: List[Tuple[float, Any]]) -> Tuple[int, List[Tuple[Any, int, int]]]:
    """Walk (upper_limit, rate_percent) brackets, rounding each bracket's tax to the cent."""
    if taxable_income <= 0:
        return 0, []

    total_tax = 0
    breakdown = []
    remaining_income = taxable_income
    prev_limit = 0

    for limit, rate in brackets:
        bracket_size = limit - prev_limit if limit != float('inf') else remaining_income
        taxable_in_bracket = int(min(remaining_income, bracket_size))

        if taxable_in_bracket <= 0:
            break

        tax_in_bracket = round_half_up(Decimal(taxable_in_bracket) * rate / 100)
        total_tax += tax_in_bracket
        breakdown.append((rate, taxable_in_bracket, tax_in_bracket))

        remaining_income -= taxable_in_bracket
        prev_limit = limit

        if remaining_income <= 0:
            break

    return total_tax, breakdown


def calculate_federal_tax(
    taxable_income: int,
    filing_status: FilingStatus,
    year: int = TAX_TABLE_BASE_YEAR,
) -> int:
    """
    Calculate federal income tax in cents.
    This is the AUTHORITATIVE calculation used by every projection.
    """
    total_tax, _ = calculate_federal_tax_with_breakdown(taxable_income, filing_status, year)
    return total_tax


def get_marginal_rate(
    taxable_income: int,
    filing_status: FilingStatus,
    year: int = TAX_TABLE_BASE_YEAR,
) -> int:
    """Marginal bracket rate (percent) for a taxable income level; 0 when nothing is taxed."""
    if taxable_income <= 0:
        return 0
    brackets = federal_brackets(year, filing_status)

    for limit, rate in brackets:
        if taxable_income <= limit:
            return rate

    return brackets[-1][1]


def standard_deduction(
    filing_status: FilingStatus,
    primary_age: int,
    spouse_age: Optional[int] = None,
    year: int = TAX_TABLE_BASE_YEAR,
) -> int:
    """
    Standard deduction in cents, including the 65+ bonus.

    Married filers get the married bonus per qualifying spouse; single and
    head-of-household filers get one combined bonus. Base and bonus are each
    escalated from the reference year and rounded down to whole dollars.
    """
    factor = _table_factor(year)

    def escalate(amount: int) -> int:
        return int(Decimal(amount) * factor // 100) * 100

    base = escalate(STANDARD_DEDUCTION_2026[filing_status])

    bonus = 0
    if filing_status in JOINT_STATUSES:
        per_spouse = escalate(ADDITIONAL_STANDARD_DEDUCTION_2026["married"])
        if primary_age >= SENIOR_DEDUCTION_AGE:
            bonus += per_spouse
        if spouse_age is not None and spouse_age >= SENIOR_DEDUCTION_AGE:
            bonus += per_spouse
    elif primary_age >= SENIOR_DEDUCTION_AGE:
        bonus += escalate(ADDITIONAL_STANDARD_DEDUCTION_2026["single_or_hoh"])

    return base + bonus


def federal_poverty_level(household_size: int, state: str) -> int:
    """FPL for a household; Alaska and Hawaii use their own tables."""
    if household_size < 1:
        raise ValueError("Household size must be at least 1")

    state = state.upper()
    if state == "AK":
        table = FPL_2025["alaska"]
    elif state == "HI":
        table = FPL_2025["hawaii"]
    else:
        table = FPL_2025["contiguous"]

    return table["base"] + table["per_person"] * (household_size - 1)


def aca_subsidy_cutoff(household_size: int, state: str) -> int:
    """Income above 400% FPL loses the premium tax credit entirely."""
    return ACA_SUBSIDY_CUTOFF_MULTIPLE * federal_poverty_level(household_size, state)


def irmaa_tier(magi: int, joint: bool) -> int:
    """Index into IRMAA_TIERS_2026 (0 = standard premium)."""
    for index in range(len(IRMAA_TIERS_2026) - 1, -1, -1):
        single_lower, joint_lower, _, _ = IRMAA_TIERS_2026[index]
        if magi >= (joint_lower if joint else single_lower):
            return index
    return 0


def irmaa_annual_surcharge(magi: int, joint: bool) -> int:
    """Extra Part B plus Part D premium for one person over a year."""
    _, _, part_b, part_d = IRMAA_TIERS_2026[irmaa_tier(magi, joint)]
    standard_part_b = IRMAA_TIERS_2026[0][2]
    return ((part_b - standard_part_b) + part_d) * 12


def irmaa_headroom(magi: int, joint: bool) -> Optional[int]:
    """Cents of additional MAGI allowed before the next IRMAA cliff; None above the top tier."""
    for single_lower, joint_lower, _, _ in IRMAA_TIERS_2026:
        threshold = joint_lower if joint else single_lower
        if threshold > magi:
            return threshold - magi - 1
    return None


def taxable_social_security(benefits: int, other_income: int, filing_status: FilingStatus) -> int:
    """
    Taxable portion of Social Security benefits (the 0/50/85% rules).
    `other_income` is AGI excluding Social Security.
    """
    if benefits <= 0:
        return 0

    half_benefits = round_half_up(Decimal(benefits) / 2)
    provisional = other_income + half_benefits
    lower, upper = SS_PROVISIONAL_THRESHOLDS[filing_status]

    if provisional <= lower:
        return 0

    if provisional <= upper:
        return min(round_half_up(Decimal(provisional - lower) / 2), half_benefits)

    lesser = min(SS_BASE_AMOUNTS[filing_status], half_benefits)
    from_excess = round_half_up(Decimal(provisional - upper) * 85 / 100)
    return min(from_excess + lesser, round_half_up(Decimal(benefits) * 85 / 100))


def state_tax_rate_bps(state: str, override_bps: Optional[int] = None) -> int:
    """Effective state rate; an explicit override always wins."""
    if override_bps is not None:
        return override_bps
    return STATE_TAX_RATES_BPS.get(state.upper(), 0)


def state_income_tax(
    taxable_income: int,
    state: str,
    filing_status: FilingStatus,
    override_bps: Optional[int] = None,
) -> int:
    """
    State income tax in cents on federal taxable income.

    An override rate is applied flat. States with a schedule in
    STATE_TAX_BRACKETS are taxed progressively; all others at their flat
    (or top) rate.
    """
    if taxable_income <= 0:
        return 0
    if override_bps is None:
        schedules = STATE_TAX_BRACKETS.get(state.upper())
        if schedules:
            key = "married" if filing_status == FilingStatus.MARRIED_FILING_JOINTLY else "single"
            total_tax, _ = _progressive_tax(taxable_income, schedules[key])
            return total_tax
    return apply_basis_points(taxable_income, state_tax_rate_bps(state, override_bps))


def net_investment_income_tax(magi: int, investment_income: int, filing_status: FilingStatus) -> int:
    """3.8% on the lesser of net investment income and MAGI above the threshold."""
    excess = magi - NIIT_THRESHOLDS_CENTS[filing_status]
    if excess <= 0 or investment_income <= 0:
        return 0
    return apply_basis_points(min(investment_income, excess), NIIT_RATE_BPS)


def rmd_start_age(birth_year: int) -> int:
    """Age at which distributions become mandatory."""
    if birth_year <= 1950:
        return 72
    return DEFAULT_RMD_START_AGE


def required_minimum_distribution(prior_year_balance: int, age: int, start_age: int) -> int:
    """RMD = prior year-end balance / Uniform Lifetime divisor."""
    if age < start_age or prior_year_balance <= 0:
        return 0
    divisor_tenths = UNIFORM_LIFETIME_TABLE[min(max(age, 72), 120)]
    return min(prior_year_balance, round_half_up(Decimal(prior_year_balance) * 10 / divisor_tenths))
