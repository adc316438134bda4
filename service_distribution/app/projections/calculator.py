"""
Financial projections for distribution scenarios.

Two formulas share one parameter model: ``calculate_projections`` is the
full computation run by compute jobs, ``quick_estimate`` is the cheap
approximation served when a live edit cannot wait for the queue.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from shared.utils.errors import ValidationError

MAX_BREAK_EVEN_MONTHS = 24
MIN_RISK_SCORE = 10
MAX_RISK_SCORE = 90

DEFAULT_PARAMETERS: Dict[str, Any] = {
    "msrp": 32.99,
    "distributorMargin": 22,
    "retailerMargin": 35,
    "volumeCommitment": 75000,
    "marketingSpend": 150000,
    "seasonalAdjustment": 1.0,
}

PARAMETER_FIELDS = tuple(DEFAULT_PARAMETERS)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards positive infinity."""
    return int(math.floor(value + 0.5))


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _roi(profit: float, marketing_spend: float) -> float:
    if marketing_spend <= 0:
        return 0.0
    return round_half_up(profit / marketing_spend * 100) / 100


class ProjectionParameters(BaseModel):
    """Scenario inputs; missing fields take the baseline values."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    msrp: float = Field(DEFAULT_PARAMETERS["msrp"], ge=0.01, le=10_000)
    distributor_margin: float = Field(DEFAULT_PARAMETERS["distributorMargin"], ge=0, le=100, alias="distributorMargin")
    retailer_margin: float = Field(DEFAULT_PARAMETERS["retailerMargin"], ge=0, le=100, alias="retailerMargin")
    volume_commitment: int = Field(DEFAULT_PARAMETERS["volumeCommitment"], ge=1, le=10_000_000, alias="volumeCommitment")
    marketing_spend: float = Field(DEFAULT_PARAMETERS["marketingSpend"], ge=0, le=100_000_000, alias="marketingSpend")
    seasonal_adjustment: float = Field(
        DEFAULT_PARAMETERS["seasonalAdjustment"], ge=0.1, le=5.0, alias="seasonalAdjustment"
    )

    @field_validator("*", mode="before")
    @classmethod
    def _reject_booleans(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("boolean is not a number")
        return value

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]] = None) -> "ProjectionParameters":
        """Validate a (possibly partial) camelCase parameter map."""
        values = {key: value for key, value in (values or {}).items() if value is not None}
        try:
            return cls.model_validate(values)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ValidationError(
                f"Invalid projection parameter: {first.get('msg', 'invalid value')}",
                field=field,
                value=values.get(field) if field else None,
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ProjectionResult(BaseModel):
    """Year-one projection for a scenario."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    year1_revenue: int = Field(alias="year1Revenue")
    year1_volume: int = Field(alias="year1Volume")
    year1_profit: int = Field(alias="year1Profit")
    roi: float
    break_even_months: int = Field(alias="breakEvenMonths")
    risk_score: int = Field(alias="riskScore")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def calculate_projections(params: ProjectionParameters) -> ProjectionResult:
    """Full projection used by ``calculate-projections`` jobs."""
    retail_price = params.msrp * (1 - params.retailer_margin / 100)
    unit_contribution = params.msrp * params.distributor_margin / 100

    year1_volume = round_half_up(params.volume_commitment * params.seasonal_adjustment)
    year1_revenue = round_half_up(retail_price * params.volume_commitment * params.seasonal_adjustment)
    year1_profit = round_half_up(unit_contribution * year1_volume - params.marketing_spend)
    roi = _roi(year1_profit, params.marketing_spend)

    monthly_contribution = unit_contribution * params.volume_commitment / 12
    if monthly_contribution > 0:
        break_even = int(_clamp(round_half_up(params.marketing_spend / monthly_contribution), 1, MAX_BREAK_EVEN_MONTHS))
    else:
        break_even = MAX_BREAK_EVEN_MONTHS

    risk = 30
    risk += 20 if roi < 1 else 0
    risk += 15 if break_even > 12 else 0
    risk += 10 if params.volume_commitment < 50_000 else 0
    risk += 10 if params.distributor_margin < 15 else -5

    return ProjectionResult(
        year1_revenue=year1_revenue,
        year1_volume=year1_volume,
        year1_profit=year1_profit,
        roi=roi,
        break_even_months=break_even,
        risk_score=int(_clamp(risk, MIN_RISK_SCORE, MAX_RISK_SCORE)),
    )


def quick_estimate(params: ProjectionParameters) -> ProjectionResult:
    """Cheap approximation served when the full computation is not available in time."""
    retail_price = params.msrp * (1 - params.retailer_margin * 0.01)
    unit_margin = retail_price * params.distributor_margin * 0.01
    adjusted_volume = params.volume_commitment * params.seasonal_adjustment

    gross_profit = unit_margin * adjusted_volume
    profit = round_half_up(gross_profit - params.marketing_spend)
    roi = _roi(profit, params.marketing_spend)

    monthly_profit = gross_profit / 12
    if monthly_profit > 0:
        break_even = int(_clamp(round_half_up(params.marketing_spend / monthly_profit), 1, MAX_BREAK_EVEN_MONTHS))
    else:
        break_even = MAX_BREAK_EVEN_MONTHS

    risk = 35
    if roi < 0.5:
        risk += 25
    elif roi < 1:
        risk += 15
    elif roi < 2:
        risk += 5
    else:
        risk -= 5

    if break_even > 18:
        risk += 20
    elif break_even > 12:
        risk += 10
    else:
        risk -= 5

    if params.volume_commitment < 25_000:
        risk += 15
    elif params.volume_commitment < 50_000:
        risk += 5
    else:
        risk -= 5

    if params.distributor_margin < 15:
        risk += 10
    elif params.distributor_margin > 30:
        risk += 5

    return ProjectionResult(
        year1_revenue=round_half_up(retail_price * adjusted_volume),
        year1_volume=round_half_up(adjusted_volume),
        year1_profit=profit,
        roi=roi,
        break_even_months=break_even,
        risk_score=int(_clamp(risk, MIN_RISK_SCORE, MAX_RISK_SCORE)),
    )
