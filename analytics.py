"""
Aggregation pipelines over the potion collection.

Every pipeline is assembled from the lookup tables below. Request values are
first parsed into the enums, so a field path never comes straight from a
query string.
"""
import math
from enum import Enum
from typing import Any, Dict, List, Optional


class GroupBy(str, Enum):
    vendor_id = "vendor_id"
    categories = "categories"


class Metric(str, Enum):
    avg = "avg"
    sum = "sum"
    count = "count"


class MetricField(str, Enum):
    score = "score"
    price = "price"
    count = "count"
    strength = "ratings.strength"
    flavor = "ratings.flavor"


class InvalidSearch(ValueError):
    """Search parameters that cannot be turned into a pipeline."""


UNWIND_CATEGORIES = {"$unwind": "$categories"}

GROUP_KEYS = {
    GroupBy.vendor_id: "$vendor_id",
    GroupBy.categories: "$categories",
}

# metric -> (output key, accumulator operator)
METRIC_ACCUMULATORS = {
    Metric.avg: ("average", "$avg"),
    Metric.sum: ("total", "$sum"),
    Metric.count: ("count", "$sum"),
}

FIELD_PATHS = {
    MetricField.score: "$score",
    MetricField.price: "$price",
    MetricField.count: "$count",
    MetricField.strength: "$ratings.strength",
    MetricField.flavor: "$ratings.flavor",
}


def distinct_categories_pipeline() -> List[Dict[str, Any]]:
    return [
        UNWIND_CATEGORIES,
        {"$group": {"_id": "$categories"}},
        {"$count": "distinct_categories"},
    ]


def average_score_pipeline(group: GroupBy) -> List[Dict[str, Any]]:
    pipeline: List[Dict[str, Any]] = []
    if group is GroupBy.categories:
        pipeline.append(UNWIND_CATEGORIES)
    pipeline.append({"$group": {"_id": GROUP_KEYS[group], "average_score": {"$avg": "$score"}}})
    pipeline.append({"$sort": {"_id": 1}})
    return pipeline


def search_pipeline(group: GroupBy, metric: Metric, field: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Build the grouping pipeline behind the search endpoint.

    ``field`` names the numeric value aggregated by ``avg`` and ``sum`` and
    is ignored for ``count``.

    Raises:
        InvalidSearch: a parameter is outside its table, or ``field`` is
            missing for a metric that needs it.
    """
    try:
        group = GroupBy(group)
        metric = Metric(metric)
    except ValueError as exc:
        raise InvalidSearch(str(exc)) from exc

    output_key, operator = METRIC_ACCUMULATORS[metric]
    if metric is Metric.count:
        operand: Any = 1
    else:
        if not field:
            raise InvalidSearch(f"field is required for metric '{metric.value}'")
        try:
            operand = FIELD_PATHS[MetricField(field)]
        except ValueError as exc:
            raise InvalidSearch(f"unknown field '{field}'") from exc

    pipeline: List[Dict[str, Any]] = []
    if group is GroupBy.categories:
        pipeline.append(UNWIND_CATEGORIES)
    pipeline.append({"$group": {"_id": GROUP_KEYS[group], output_key: {operator: operand}}})
    pipeline.append({"$sort": {"_id": 1}})
    return pipeline


def search_output_key(metric: Metric) -> str:
    return METRIC_ACCUMULATORS[Metric(metric)][0]


def ratio(strength: Any, flavor: Any) -> Optional[float]:
    """
    strength / flavor with IEEE semantics: x/0 is +-inf and 0/0 is nan.

    Returns None when either rating is missing or not a number.
    """
    if isinstance(strength, bool) or isinstance(flavor, bool):
        return None
    if not isinstance(strength, (int, float)) or not isinstance(flavor, (int, float)):
        return None
    if flavor == 0:
        if strength == 0 or math.isnan(strength):
            return math.nan
        # 1 / -0.0 is -inf
        return math.copysign(math.inf, strength) * math.copysign(1.0, flavor)
    return strength / flavor


def finite_or_none(value: Optional[float]) -> Optional[float]:
    """JSON has no infinity or NaN, so those go out as null."""
    if value is None or not math.isfinite(value):
        return None
    return value
