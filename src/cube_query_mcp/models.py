# Cube Query MCP Server
# File: models.py
# Version: v1

"""Domain and wire models exchanged with the remote cube engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


@dataclass(frozen=True)
class Dimension:
    """A hierarchical axis; ``levels`` run from coarsest to finest."""

    name: str
    levels: Tuple[str, ...]

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "Dimension":
        name = item.get("name") or item.get("dimName") or ""
        return cls(name=str(name), levels=tuple(str(lv) for lv in _as_list(item.get("levels"))))


@dataclass(frozen=True)
class CuboidDimension:
    """A column of the prepared-cuboid table."""

    name: str
    num_bits: int = 0

    @property
    def header(self) -> str:
        return f"{self.name} ({self.num_bits} bits)"

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "CuboidDimension":
        return cls(name=str(item.get("name", "")), num_bits=int(item.get("numBits") or 0))


@dataclass(frozen=True)
class Filter:
    """A filter applied on the engine side; the local copy is a cache."""

    dimension_name: str
    dimension_level: str
    values: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return f"{self.dimension_name} / {self.dimension_level} = {','.join(self.values)}"

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "Filter":
        return cls(
            dimension_name=str(item.get("dimensionName", "")),
            dimension_level=str(item.get("dimensionLevel", "")),
            values=tuple(str(v) for v in _as_list(item.get("values"))),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimensionName": self.dimension_name,
            "dimensionLevel": self.dimension_level,
            "values": list(self.values),
        }


@dataclass
class CubeMetadata:
    """Payload of ``selectCube``."""

    hierarchy: List[Dimension]
    cuboid_dimensions: List[CuboidDimension]
    measures: List[str]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CubeMetadata":
        return cls(
            hierarchy=[
                Dimension.from_dict(d)
                for d in _as_list(data.get("dimensionHierarchy"))
                if isinstance(d, dict)
            ],
            cuboid_dimensions=[
                CuboidDimension.from_dict(d)
                for d in _as_list(data.get("dimensions"))
                if isinstance(d, dict)
            ],
            measures=[str(m) for m in _as_list(data.get("measures"))],
        )


@dataclass(frozen=True)
class DimensionDef:
    """A selection resolved to names, as sent to the engine."""

    dimension_name: str
    level_name: str

    def to_dict(self) -> Dict[str, str]:
        return {"dimensionName": self.dimension_name, "levelName": self.level_name}


@dataclass(frozen=True)
class QueryRequest:
    horizontal: Tuple[DimensionDef, ...]
    series: Tuple[DimensionDef, ...]
    measure: str
    aggregation: str
    solver: str
    mode: str
    page_size: int
    measure2: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "horizontal": [d.to_dict() for d in self.horizontal],
            "series": [d.to_dict() for d in self.series],
            "measure": self.measure,
            "aggregation": self.aggregation,
            "solver": self.solver,
            "mode": self.mode,
            "isBatchMode": self.mode == "Batch",
            "pageSize": self.page_size,
        }
        if self.measure2 is not None:
            payload["measure2"] = self.measure2
        return payload


@dataclass
class SeriesData:
    """One chart line; ``data`` holds ``{"x": ..., "y": ...}`` points."""

    name: str
    data: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "SeriesData":
        points = [dict(p) for p in _as_list(item.get("data")) if isinstance(p, dict)]
        return cls(name=str(item.get("name", "")), data=points)


@dataclass
class Metric:
    name: str
    value: Any

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "Metric":
        return cls(name=str(item.get("name", "")), value=item.get("value"))


@dataclass
class QueryResult:
    """Payload shared by ``startQuery`` and ``continueQuery``.

    ``page_id`` is the page that ``rows`` belong to. The computation cursor
    is (``current_computed_page``, ``current_computed_row``).
    """

    page_id: int
    rows: List[Dict[str, Any]]
    current_computed_page: int
    current_computed_row: int
    is_complete: bool
    series: List[SeriesData] = field(default_factory=list)
    metrics: List[Metric] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueryResult":
        page_id = int(data.get("pageId") or 0)
        computed_page = data.get("currentComputedPage")
        return cls(
            page_id=page_id,
            rows=[dict(r) for r in _as_list(data.get("rows")) if isinstance(r, dict)],
            current_computed_page=page_id if computed_page is None else int(computed_page),
            current_computed_row=int(data.get("currentComputedRow") or 0),
            is_complete=bool(data.get("isComplete", False)),
            series=[
                SeriesData.from_dict(s) for s in _as_list(data.get("series")) if isinstance(s, dict)
            ],
            metrics=[
                Metric.from_dict(m) for m in _as_list(data.get("metrics")) if isinstance(m, dict)
            ],
        )


@dataclass
class PageResult:
    """Payload of ``getPage``."""

    page_id: int
    page_size: int
    rows: List[Dict[str, Any]]
