from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.core.exceptions.exceptions import InvalidQueryError


def parse_positive_int(field: str, raw: Optional[str]) -> Optional[int]:
    """Strict parse of a query-string integer; None when absent.

    Raises InvalidQueryError for non-numeric or non-positive input.
    """
    if raw is None or str(raw).strip() == "":
        return None
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise InvalidQueryError(field, raw) from None
    if value < 1:
        raise InvalidQueryError(field, raw)
    return value


def clamp_int(field: str, raw: Optional[str], default: int, maximum: Optional[int] = None) -> int:
    """Lenient variant used by the HTTP layer: bad input falls back to `default`."""
    try:
        value = parse_positive_int(field, raw)
    except InvalidQueryError:
        value = None
    if value is None:
        value = default
    if maximum is not None:
        value = min(value, maximum)
    return value


class TreasuryQuery(BaseModel):
    """One incoming lookup: search term plus 1-indexed page and page size."""
    model_config = ConfigDict(frozen=True)

    search: str = ""
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_params(cls, search: Optional[str], page: Optional[str], limit: Optional[str],
                    default_limit: int, max_limit: int) -> "TreasuryQuery":
        return cls(
            search=search or "",
            page=clamp_int("page", page, 1),
            limit=clamp_int("limit", limit, min(default_limit, max_limit), max_limit),
        )


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TreasuryResult(_CamelModel):
    records: List[Dict[str, Any]]
    total: int = Field(..., description="Records matching the search")
    display_total: int = Field(..., alias="displayTotal")
    current_page: int = Field(..., alias="currentPage")
    limit: int
    total_records: Optional[int] = Field(None, alias="totalRecords", description="Size of the unfiltered dataset")


class TreasuryResponse(BaseModel):
    success: bool = True
    result: TreasuryResult


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[str] = None


class CondoListResult(BaseModel):
    condos: List[str]
    total: int


class CondoListResponse(BaseModel):
    success: bool = True
    result: CondoListResult


class UnitOption(_CamelModel):
    level: Optional[str]
    use_type: Optional[str] = Field(None, alias="useType")
    value_per_sqm: Optional[float] = Field(None, alias="valuePerSqm")


class UnitOptionsResponse(BaseModel):
    success: bool = True
    condo: str
    units: List[UnitOption]


class AppraisalResponse(_CamelModel):
    success: bool = True
    condo: str
    level: str
    use_type: str = Field(..., alias="useType")
    value_per_sqm: Optional[float] = Field(None, alias="valuePerSqm")
