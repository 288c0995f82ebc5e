"""
RothPilot - Data Models
=======================
Pydantic models for the projection engine's inputs and outputs.

These models serve as the contract between:
- The advisor-facing API layer
- The year-by-year projection engine
- The derived analyses (break-even, sensitivity, widow penalty)

All money is integer cents. Rates are integer basis points unless the field
name says otherwise.
"""

from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    ValidationError,
    computed_field,
    field_validator,
    model_validator,
)

from exceptions import InvalidProfile
from tax_constants import FEDERAL_BRACKETS_2026, STATE_TAX_RATES_BPS, FilingStatus

Cents = Annotated[StrictInt, Field(ge=0)]


# =============================================================================
# ENUMS
# =============================================================================

class ConversionType(str, Enum):
    OPTIMIZED_AMOUNT = "optimized_amount"   # Fill up to the ceiling
    FIXED_AMOUNT = "fixed_amount"
    FULL_CONVERSION = "full_conversion"
    NO_CONVERSION = "no_conversion"


class ConstraintType(str, Enum):
    BRACKET_CEILING = "bracket_ceiling"
    IRMAA_THRESHOLD = "irmaa_threshold"
    FIXED_AMOUNT = "fixed_amount"
    NONE = "none"


class WithdrawalType(str, Enum):
    NO_WITHDRAWALS = "no_withdrawals"
    SYSTEMATIC = "systematic"
    PENALTY_FREE = "penalty_free"


class TaxPaymentSource(str, Enum):
    FROM_TAXABLE = "from_taxable"
    FROM_IRA = "from_ira"


class RmdTreatment(str, Enum):
    REINVESTED = "reinvested"
    SPENT = "spent"


VALID_BRACKET_RATES = sorted({rate for brackets in FEDERAL_BRACKETS_2026.values() for _, rate in brackets})


# =============================================================================
# CLIENT PROFILE - CORE INPUT
# =============================================================================

class ClientProfile(BaseModel):
    """
    Immutable snapshot of everything the engine needs about one client.

    Every projection is a pure function of this record plus the horizon,
    so two equal profiles always produce identical results.
    """
    model_config = ConfigDict(frozen=True)

    client_name: Optional[str] = None

    # Personal
    date_of_birth: date
    spouse_date_of_birth: Optional[date] = None
    filing_status: FilingStatus = FilingStatus.SINGLE
    state: str = Field(min_length=2, max_length=2)
    household_size: Optional[int] = Field(default=None, ge=1, le=20)

    # Account balances
    traditional_ira: Cents = 0
    roth_ira: Cents = 0
    taxable_accounts: Cents = 0
    other_retirement: Cents = 0

    # Market and inflation assumptions
    growth_rate_bps: int = Field(default=600, ge=-5000, le=5000)
    inflation_rate_bps: int = Field(default=250, ge=0, le=2000)

    # Income (annual, today's dollars)
    social_security_benefit: Cents = 0
    social_security_start_age: int = Field(default=67, ge=62, le=70)
    spouse_social_security_benefit: Cents = 0
    spouse_social_security_start_age: int = Field(default=67, ge=62, le=70)
    pension_income: Cents = 0
    other_income: Cents = 0

    # Conversion strategy
    conversion_type: ConversionType = ConversionType.OPTIMIZED_AMOUNT
    constraint_type: ConstraintType = ConstraintType.BRACKET_CEILING
    target_bracket_rate: Optional[int] = 24
    fixed_conversion_amount: Optional[Cents] = None
    annual_conversion_cap: Optional[Cents] = None
    years_to_defer_conversion: int = Field(default=0, ge=0, le=50)
    conversion_end_age: Optional[int] = Field(default=None, ge=0, le=120)
    tax_payment_source: TaxPaymentSource = TaxPaymentSource.FROM_TAXABLE

    # Withdrawals and distributions
    withdrawal_type: WithdrawalType = WithdrawalType.NO_WITHDRAWALS
    withdrawal_start_age: int = Field(default=65, ge=0, le=120)
    annual_withdrawal_need: Cents = 0
    penalty_free_percent_bps: int = Field(default=1000, ge=0, le=10000)
    rmd_treatment: RmdTreatment = RmdTreatment.REINVESTED
    rmd_start_age: Optional[int] = Field(default=None, ge=70, le=80)

    # Tax settings
    state_tax_rate_bps: Optional[int] = Field(default=None, ge=0, le=2000)
    tax_multiplier_bps: int = Field(default=10000, ge=0, le=50000)
    include_irmaa: bool = True
    include_aca: bool = False
    include_niit: bool = False
    heir_tax_rate_bps: int = Field(default=4000, ge=0, le=10000)

    # Horizon and analysis flags
    end_age: int = Field(default=95, ge=1, le=120)
    enable_sensitivity: bool = False
    enable_widow_analysis: bool = False
    spouse_death_age: Optional[int] = Field(default=None, ge=1, le=120)

    @field_validator('state', mode='before')
    @classmethod
    def normalize_state(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            if v not in STATE_TAX_RATES_BPS:
                raise ValueError(f"Unknown state code: {v}")
        return v

    @field_validator('target_bracket_rate')
    @classmethod
    def check_bracket_rate(cls, v):
        if v is not None and v not in VALID_BRACKET_RATES:
            raise ValueError(f"target_bracket_rate must be one of {VALID_BRACKET_RATES}")
        return v

    @model_validator(mode='after')
    def check_household(self):
        if self.filing_status == FilingStatus.MARRIED_FILING_JOINTLY and self.spouse_date_of_birth is None:
            raise ValueError("spouse_date_of_birth is required for married_filing_jointly")
        if self.spouse_death_age is not None and self.spouse_date_of_birth is None:
            raise ValueError("spouse_death_age requires spouse_date_of_birth")
        return self

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ClientProfile":
        """Validate raw input, failing fast with InvalidProfile."""
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            errors = [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ]
            raise InvalidProfile("Client profile failed validation", {"errors": errors}) from exc

    @property
    def birth_year(self) -> int:
        return self.date_of_birth.year

    @property
    def spouse_birth_year(self) -> Optional[int]:
        return self.spouse_date_of_birth.year if self.spouse_date_of_birth else None

    def age_in(self, year: int) -> int:
        return year - self.birth_year

    def spouse_age_in(self, year: int) -> Optional[int]:
        if self.spouse_birth_year is None:
            return None
        return year - self.spouse_birth_year

    @property
    def projection_end_year(self) -> int:
        return self.birth_year + self.end_age

    @property
    def effective_household_size(self) -> int:
        if self.household_size is not None:
            return self.household_size
        return 2 if self.filing_status == FilingStatus.MARRIED_FILING_JOINTLY else 1

    @property
    def starting_net_worth(self) -> int:
        return self.traditional_ira + self.roth_ira + self.taxable_accounts + self.other_retirement


# =============================================================================
# STRATEGY POLICY
# =============================================================================

class StrategyPolicy(BaseModel):
    """
    One conversion strategy: conversion_type x constraint_type x withdrawal_type
    plus the parameters each variant needs.

    Combinations are checked by strategies.validate_policy at run time so a
    bad variant fails on its own without affecting the others.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    conversion_type: ConversionType = ConversionType.NO_CONVERSION
    constraint_type: ConstraintType = ConstraintType.NONE
    target_bracket_rate: Optional[int] = None
    fixed_conversion_amount: Optional[Cents] = None
    annual_conversion_cap: Optional[Cents] = None
    years_to_defer: int = Field(default=0, ge=0)
    conversion_end_age: Optional[int] = None
    tax_payment_source: TaxPaymentSource = TaxPaymentSource.FROM_TAXABLE

    withdrawal_type: WithdrawalType = WithdrawalType.NO_WITHDRAWALS
    withdrawal_start_age: int = 65
    annual_withdrawal_need: Cents = 0
    penalty_free_percent_bps: int = Field(default=1000, ge=0, le=10000)

    @property
    def converts(self) -> bool:
        return self.conversion_type != ConversionType.NO_CONVERSION


# =============================================================================
# PROJECTION OUTPUT
# =============================================================================

class YearlyResult(BaseModel):
    """End-of-year snapshot for one projected year."""
    model_config = ConfigDict(frozen=True)

    year: int
    age: int
    spouse_age: Optional[int] = None
    filing_status: FilingStatus

    # Balances at year end
    traditional_balance: int
    other_retirement_balance: int
    roth_balance: int
    taxable_balance: int

    # Flows during the year
    rmd_amount: int = 0
    conversion_amount: int = 0
    withdrawal_amount: int = 0
    social_security_income: int = 0
    taxable_social_security: int = 0
    other_ordinary_income: int = 0
    magi: int = 0

    # Taxes
    standard_deduction: int = 0
    taxable_income: int = 0
    federal_tax: int = 0
    state_tax: int = 0
    niit_tax: int = 0
    irmaa_surcharge: int = 0
    total_tax: int = 0
    marginal_rate: int = 0
    tax_withheld_from_conversion: int = 0
    aca_subsidy_lost: Optional[bool] = None

    # Unfunded tax or withdrawal need after clamping balances at zero
    shortfall: int = 0

    cumulative_taxes: int = 0
    cumulative_conversions: int = 0

    @computed_field
    @property
    def net_worth(self) -> int:
        return (
            self.traditional_balance
            + self.other_retirement_balance
            + self.roth_balance
            + self.taxable_balance
        )


class SimulationSummary(BaseModel):
    """Terminal metrics for one strategy run."""
    model_config = ConfigDict(frozen=True)

    final_traditional: int
    final_other_retirement: int
    final_roth: int
    final_taxable: int
    ending_net_worth: int
    total_federal_tax: int
    total_state_tax: int
    total_niit: int
    total_irmaa: int
    total_taxes: int
    total_conversions: int
    total_rmds: int
    total_withdrawals: int
    total_shortfall: int
    heir_tax: int
    after_tax_legacy: int


class SimulationResult(BaseModel):
    """One strategy's full projection."""
    model_config = ConfigDict(frozen=True)

    strategy_name: str
    policy: StrategyPolicy
    start_year: int
    end_year: int
    years: List[YearlyResult]
    summary: SimulationSummary


class StrategyFailure(BaseModel):
    """A strategy variant that could not be computed in a multi-strategy run."""
    code: Literal["PartialStrategyFailure"] = "PartialStrategyFailure"
    strategy_name: str
    cause: str
    message: str


class StrategyComparison(BaseModel):
    """Headline metrics of one strategy against the baseline."""
    strategy_name: str
    ending_wealth: int
    lifetime_tax_savings: int
    break_even_year: Optional[int] = None
    break_even_age: Optional[int] = None
    total_irmaa: int
    heir_benefit: int
    total_conversions: int


class MultiStrategyResult(BaseModel):
    start_year: int
    end_year: int
    baseline: SimulationResult
    strategies: Dict[str, SimulationResult] = Field(default_factory=dict)
    comparisons: List[StrategyComparison] = Field(default_factory=list)
    failures: List[StrategyFailure] = Field(default_factory=list)
    best_strategy: Optional[str] = None


# =============================================================================
# ANALYSIS OUTPUT
# =============================================================================

class CrossoverPoint(BaseModel):
    """A year in which the lead between strategy and baseline changes hands."""
    year: int
    age: int
    strategy_ahead: bool
    net_worth_difference: int


class BreakEvenAnalysis(BaseModel):
    status: Literal["break_even", "no_break_even"]
    break_even_year: Optional[int] = None
    break_even_age: Optional[int] = None
    # First year the strategy caught up, even if it later fell behind again
    simple_break_even_year: Optional[int] = None
    simple_break_even_age: Optional[int] = None
    crossovers: List[CrossoverPoint] = Field(default_factory=list)
    final_net_worth_difference: int
    total_tax_savings: int

    @computed_field
    @property
    def has_break_even(self) -> bool:
        return self.status == "break_even"


class SensitivityScenario(BaseModel):
    """A perturbation relative to the client's own assumptions."""
    model_config = ConfigDict(frozen=True)

    name: str
    growth_adjustment_bps: int = 0
    tax_multiplier_bps: int = 10000


class SensitivityOutcome(BaseModel):
    scenario: SensitivityScenario
    growth_rate_bps: int
    tax_multiplier_bps: int
    tax_savings: int
    ending_wealth: int
    baseline_ending_wealth: int
    break_even_age: Optional[int] = None
    tax_savings_delta: int = 0
    ending_wealth_delta: int = 0
    break_even_age_delta: Optional[int] = None


class SensitivityResult(BaseModel):
    base_case: SensitivityOutcome
    outcomes: List[SensitivityOutcome]
    break_even_range: Tuple[Optional[int], Optional[int]]
    wealth_range: Tuple[int, int]


class WidowTaxImpact(BaseModel):
    year: int
    survivor_age: int
    married_tax: int
    single_tax: int
    married_marginal_rate: int
    single_marginal_rate: int
    tax_increase: int
    bracket_jump: int


class WidowAnalysisResult(BaseModel):
    death_year: int
    spouse_death_age: int
    first_single_year: int
    years: List[WidowTaxImpact]
    total_additional_tax: int
    average_bracket_jump_bps: int
    recommended_conversion_increase: int


class EngineFailure(BaseModel):
    """Serializable form of an engine exception."""
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
