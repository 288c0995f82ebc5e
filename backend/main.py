"""
RothPilot - FastAPI Backend
===========================
HTTP layer around the projection engine.

Service responsibilities (the engine knows nothing about these):
1. Advisor identity from the upstream auth gateway
2. Input fingerprinting and projection caching
3. Best-effort audit logging of each calculation
4. Mapping typed engine errors to HTTP responses
"""

import os
import logging
import time
from datetime import date, datetime, timezone
from typing import Optional, Dict, Any, List
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Header, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Local imports
from tax_constants import (
    STANDARD_DEDUCTION_2026,
    TAX_TABLE_BASE_YEAR,
    FilingStatus,
    calculate_federal_tax_with_breakdown,
    federal_brackets,
    get_marginal_rate,
)
from models import ClientProfile, StrategyPolicy
from exceptions import (
    IneligibleAnalysis,
    InvalidHorizon,
    InvalidProfile,
    MismatchedHorizon,
    ProjectionError,
    StrategyConfigurationError,
)
from projection_engine import run_simulation
from multi_strategy import MultiStrategyRunner, run_all
from analysis import analyze_break_even, analyze_widow_penalty, run_sensitivity_analysis
from strategies import baseline_policy, policy_from_profile
from audit_log import ENGINE_VERSION, AuditLog, fingerprint_profile

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION SETUP
# =============================================================================

# In-memory storage (replace with database in production)
projections_db: Dict[str, Dict[str, Any]] = {}
audit_log = AuditLog()

ERROR_STATUS_CODES = {
    InvalidProfile.code: 422,
    InvalidHorizon.code: 400,
    StrategyConfigurationError.code: 400,
    MismatchedHorizon.code: 409,
    IneligibleAnalysis.code: 422,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("RothPilot starting up...")
    if os.getenv("ROTHPILOT_TEST_ADVISOR_ID"):
        logger.warning("Development test identity is enabled")
    yield
    logger.info("RothPilot shutting down...")


app = FastAPI(
    title="RothPilot",
    description="Roth conversion projection API for financial advisors",
    version=ENGINE_VERSION,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv(
        "ROTHPILOT_CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ProjectionRequest(BaseModel):
    profile: Dict[str, Any]
    start_year: Optional[int] = None
    end_year: Optional[int] = None


class MultiStrategyRequest(ProjectionRequest):
    strategies: Optional[List[StrategyPolicy]] = None


class AnalysisRequest(ProjectionRequest):
    include_sensitivity: Optional[bool] = None
    include_widow: Optional[bool] = None


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_advisor_id(x_advisor_id: Optional[str] = Header(default=None)) -> str:
    """
    Identity comes from the auth gateway's X-Advisor-Id header.
    ROTHPILOT_TEST_ADVISOR_ID stands in only when explicitly configured.
    """
    if x_advisor_id:
        return x_advisor_id

    test_identity = os.getenv("ROTHPILOT_TEST_ADVISOR_ID")
    if test_identity:
        logger.warning("Request without X-Advisor-Id; using development test identity")
        return test_identity

    raise HTTPException(status_code=401, detail="Missing advisor identity")


def resolve_horizon(request: ProjectionRequest, profile: ClientProfile) -> tuple:
    """The engine never reads the clock; the service picks the start year."""
    start_year = request.start_year
    if start_year is None:
        configured = os.getenv("ROTHPILOT_START_YEAR")
        start_year = int(configured) if configured else date.today().year
    end_year = request.end_year if request.end_year is not None else profile.projection_end_year
    return start_year, end_year


def parse_filing_status(value: str) -> FilingStatus:
    try:
        return FilingStatus(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid filing status")


def record_calculation(advisor_id, fingerprint, strategy, comparison, baseline, started):
    audit_log.log_calculation(
        advisor_id=advisor_id,
        input_hash=fingerprint,
        strategy=strategy.strategy_name,
        break_even_age=comparison.break_even_age,
        total_tax_savings=comparison.lifetime_tax_savings,
        baseline_final_wealth=baseline.summary.ending_net_worth,
        strategy_final_wealth=strategy.summary.ending_net_worth,
        calculation_ms=int((time.perf_counter() - started) * 1000),
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@app.get("/api/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "engine_version": ENGINE_VERSION,
        "cached_projections": len(projections_db),
    }


# --- PROJECTIONS ---

@app.post("/api/projections")
async def create_projection(request: ProjectionRequest, advisor_id: str = Depends(get_advisor_id)):
    """Baseline and the client's own strategy, cached by input fingerprint."""
    profile = ClientProfile.from_payload(request.profile)
    start_year, end_year = resolve_horizon(request, profile)
    fingerprint = fingerprint_profile(profile, start_year, end_year)

    if fingerprint in projections_db:
        logger.info(f"[{fingerprint[:12]}] Serving cached projection")
        return {**projections_db[fingerprint], "cached": True}

    started = time.perf_counter()
    baseline = run_simulation(profile, baseline_policy(profile), start_year, end_year)
    strategy = run_simulation(profile, policy_from_profile(profile), start_year, end_year)
    comparison = MultiStrategyRunner.compare(baseline, strategy)
    break_even = analyze_break_even(baseline, strategy)

    response = {
        "fingerprint": fingerprint,
        "start_year": start_year,
        "end_year": end_year,
        "baseline": baseline.model_dump(mode="json"),
        "strategy": strategy.model_dump(mode="json"),
        "comparison": comparison.model_dump(mode="json"),
        "break_even": break_even.model_dump(mode="json"),
    }
    projections_db[fingerprint] = response
    record_calculation(advisor_id, fingerprint, strategy, comparison, baseline, started)

    return {**response, "cached": False}


@app.post("/api/projections/multi-strategy")
async def create_multi_strategy_projection(
    request: MultiStrategyRequest, advisor_id: str = Depends(get_advisor_id)
):
    """Baseline plus every requested strategy (presets when none are given)."""
    profile = ClientProfile.from_payload(request.profile)
    start_year, end_year = resolve_horizon(request, profile)

    result = run_all(profile, start_year, end_year, request.strategies)
    if result.failures:
        logger.info(f"{len(result.failures)} strategy variant(s) failed for advisor {advisor_id}")

    return result.model_dump(mode="json")


# --- ANALYSIS ---

@app.post("/api/analysis")
async def run_analysis(request: AnalysisRequest, advisor_id: str = Depends(get_advisor_id)):
    """Break-even plus optional sensitivity and widow-penalty analyses."""
    profile = ClientProfile.from_payload(request.profile)
    start_year, end_year = resolve_horizon(request, profile)

    baseline = run_simulation(profile, baseline_policy(profile), start_year, end_year)
    strategy = run_simulation(profile, policy_from_profile(profile), start_year, end_year)

    response: Dict[str, Any] = {
        "start_year": start_year,
        "end_year": end_year,
        "break_even": analyze_break_even(baseline, strategy).model_dump(mode="json"),
    }

    include_sensitivity = request.include_sensitivity
    if include_sensitivity is None:
        include_sensitivity = profile.enable_sensitivity
    if include_sensitivity:
        sensitivity = run_sensitivity_analysis(profile, start_year, end_year)
        response["sensitivity"] = sensitivity.model_dump(mode="json")

    include_widow = request.include_widow
    if include_widow is None:
        include_widow = profile.enable_widow_analysis
    if include_widow:
        try:
            widow = analyze_widow_penalty(profile, start_year, end_year)
            response["widow"] = widow.model_dump(mode="json")
        except IneligibleAnalysis as e:
            # Not an error for the advisor; the section is simply not shown
            logger.info(f"Widow analysis skipped: {e.message}")
            response["widow_skipped"] = e.message

    return response


# --- TAX REFERENCE DATA ---

@app.get("/api/reference/brackets")
async def get_tax_brackets(filing_status: Optional[str] = None, year: int = TAX_TABLE_BASE_YEAR):
    """Federal brackets (escalated for years after 2026), amounts in cents."""

    def describe(status: FilingStatus) -> Dict[str, Any]:
        return {
            "brackets": [
                {"limit": b[0] if b[0] != float('inf') else "unlimited", "rate": b[1]}
                for b in federal_brackets(year, status)
            ],
            "base_standard_deduction_2026": STANDARD_DEDUCTION_2026[status],
        }

    if filing_status:
        status = parse_filing_status(filing_status)
        return {"filing_status": status.value, "year": year, **describe(status)}

    # Return all
    return {status.value: describe(status) for status in FilingStatus}


@app.get("/api/reference/federal-tax")
async def get_federal_tax_report(
    taxable_income: int = Query(ge=0),
    filing_status: str = FilingStatus.SINGLE.value,
    year: int = TAX_TABLE_BASE_YEAR,
):
    """Federal tax on a taxable income, bracket by bracket, amounts in cents."""
    status = parse_filing_status(filing_status)
    total_tax, breakdown = calculate_federal_tax_with_breakdown(taxable_income, status, year)

    return {
        "filing_status": status.value,
        "year": year,
        "taxable_income": taxable_income,
        "total_tax": total_tax,
        "effective_rate_bps": total_tax * 10000 // taxable_income if taxable_income else 0,
        "marginal_rate": get_marginal_rate(taxable_income, status, year),
        "brackets": [
            {"rate": rate, "income": income, "tax": tax}
            for rate, income, tax in breakdown
        ],
    }


# --- AUDIT ---

@app.get("/api/audit")
async def get_audit_history(
    limit: int = Query(default=10, ge=1, le=100),
    advisor_id: str = Depends(get_advisor_id),
):
    """Most recent calculations recorded for the calling advisor."""
    entries = audit_log.history(advisor_id, limit)
    return {
        "advisor_id": advisor_id,
        "entries": [entry.model_dump(mode="json") for entry in entries],
    }


# --- ERROR HANDLERS ---

@app.exception_handler(ProjectionError)
async def projection_error_handler(request, exc: ProjectionError):
    failure = exc.to_failure()
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(failure.code, 400),
        content={"error": failure.code, "detail": failure.message, "details": failure.details}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if os.getenv("ROTHPILOT_DEBUG") else "An error occurred"
        }
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
