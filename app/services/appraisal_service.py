from typing import Any, Dict, List, Optional, Tuple

from app.config.settings import settings
from app.core.exceptions.exceptions import RecordNotFoundError
from app.schemas.treasury import UnitOption
from app.services.dataset_cache import DatasetCache
from app.services.query_service import name_matches


LEVEL_FIELD = "OFLEVEL"
USE_TYPE_FIELD = "USE_CATG"
VALUE_FIELD = "VAL_AMT_P_MET"


def _to_num(v) -> Optional[float]:
    if v is None:
        return None
    if isinstance(v, (int, float)):
        return float(v)
    s = str(v).replace(",", "").strip()
    try:
        return float(s)
    except ValueError:
        return None


def _as_text(v) -> Optional[str]:
    return None if v is None else str(v)


def _level_sort_key(level: Optional[str]) -> Tuple[int, float, str]:
    # numeric floors first in numeric order, then anything else alphabetically
    num = _to_num(level)
    if num is not None:
        return (0, num, "")
    return (1, 0.0, level or "")


class AppraisalService:
    """Condominium / floor / use-category lookups over the cached dataset."""

    def __init__(self, cache: DatasetCache, name_field: str = settings.NAME_FIELD):
        self.cache = cache
        self.name_field = name_field

    async def list_condos(self, search: str = "", limit: Optional[int] = None) -> Tuple[List[str], int]:
        """Sorted unique condo names matching `search`, and how many there are in total."""
        records = await self.cache.get_all()
        names = {
            str(r[self.name_field])
            for r in records
            if r.get(self.name_field) is not None and (not search or name_matches(r, search, self.name_field))
        }
        ordered = sorted(names)
        if limit is not None:
            return ordered[:limit], len(ordered)
        return ordered, len(ordered)

    async def _records_for(self, condo: str) -> List[Dict[str, Any]]:
        records = await self.cache.get_all()
        return [r for r in records if r.get(self.name_field) == condo]

    async def unit_options(self, condo: str) -> List[UnitOption]:
        matches = await self._records_for(condo)
        if not matches:
            raise RecordNotFoundError(f"condo '{condo}'")

        seen = {}
        for r in matches:
            key = (_as_text(r.get(LEVEL_FIELD)), _as_text(r.get(USE_TYPE_FIELD)))
            if key not in seen:
                seen[key] = _to_num(r.get(VALUE_FIELD))

        keys = sorted(seen, key=lambda k: (_level_sort_key(k[0]), k[1] or ""))
        return [UnitOption(level=lvl, use_type=use, value_per_sqm=seen[(lvl, use)]) for lvl, use in keys]

    async def appraised_value(self, condo: str, level: str, use_type: str) -> Optional[float]:
        for r in await self._records_for(condo):
            if _as_text(r.get(LEVEL_FIELD)) == level and _as_text(r.get(USE_TYPE_FIELD)) == use_type:
                return _to_num(r.get(VALUE_FIELD))
        raise RecordNotFoundError(f"condo '{condo}', level '{level}', use type '{use_type}'")
