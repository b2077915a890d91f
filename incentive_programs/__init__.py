"""
Incentive programs: dealer rebates, co-op funds, contests and spiffs.

Public entry point is ``IncentiveService``; the component services,
calculator and DTOs are exported for direct use and testing.
"""

from incentive_programs.calculator import (
    calculate_accrual,
    next_tier,
    project_rebate,
    select_tier,
)
from incentive_programs.models import (
    AccrualPeriod,
    AccrualStatus,
    ClaimStatus,
    ClaimType,
    EnrollmentStatus,
    FlatRate,
    OrderLine,
    PayoutCaps,
    PayoutStatus,
    PeriodType,
    ProductFilter,
    ProgramStatus,
    ProgramType,
    ReviewDecision,
    Tier,
    TieredRates,
)
from incentive_programs.periods import available_periods, explicit_period, resolve_period
from incentive_programs.service import IncentiveService, bootstrap
from incentive_programs.volume import OrderLineVolumeSource, StaticVolumeSource, VolumeSource

__all__ = [
    "IncentiveService",
    "bootstrap",
    "calculate_accrual",
    "next_tier",
    "project_rebate",
    "select_tier",
    "available_periods",
    "explicit_period",
    "resolve_period",
    "VolumeSource",
    "StaticVolumeSource",
    "OrderLineVolumeSource",
    "AccrualPeriod",
    "AccrualStatus",
    "ClaimStatus",
    "ClaimType",
    "EnrollmentStatus",
    "FlatRate",
    "OrderLine",
    "PayoutCaps",
    "PayoutStatus",
    "PeriodType",
    "ProductFilter",
    "ProgramStatus",
    "ProgramType",
    "ReviewDecision",
    "Tier",
    "TieredRates",
]
