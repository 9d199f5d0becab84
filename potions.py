import logging
import math
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from pymongo.database import Database

import analytics
from analytics import GroupBy, Metric
from auth import get_current_user
from database import POTION_COLLECTION, create_document, get_db, get_documents, serialize
from schemas import Potion, PotionUpdate

logger = logging.getLogger(__name__)

# Every catalog route sits behind the session check
router = APIRouter(prefix="/potions", tags=["potions"], dependencies=[Depends(get_current_user)])


class UpdateResult(BaseModel):
    acknowledged: bool
    matched_count: int
    modified_count: int


class DeleteResult(BaseModel):
    acknowledged: bool
    deleted_count: int


def to_object_id(value: str) -> Optional[ObjectId]:
    """Parse a path id; malformed ids give None instead of an error."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def parse_number(raw: Optional[str]) -> float:
    """Query-string number; anything that does not parse becomes nan."""
    if raw is None:
        return math.nan
    try:
        return float(raw)
    except ValueError:
        return math.nan


def clean_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    # Identity is store-assigned and operator keys must never reach a write
    return {k: v for k, v in data.items() if k not in ("_id", "id") and not k.startswith("$")}


# CRUD
@router.get("/all")
def list_potions(db: Database = Depends(get_db)):
    return get_documents(db, POTION_COLLECTION)


@router.get("/names", response_model=List[str])
def list_names(db: Database = Depends(get_db)):
    cursor = db[POTION_COLLECTION].find({}, {"name": 1, "_id": 0})
    return [doc["name"] for doc in cursor if "name" in doc]


@router.get("/vendor/{vendor_id}")
def list_by_vendor(vendor_id: str, db: Database = Depends(get_db)):
    # vendor ids may be stored as numbers; the path segment is always a string
    candidates: List[Any] = [vendor_id]
    if vendor_id.lstrip("-").isdigit():
        candidates.append(int(vendor_id))
    return get_documents(db, POTION_COLLECTION, {"vendor_id": {"$in": candidates}})


@router.get("/price-range")
def list_by_price_range(
    min_price: Optional[str] = Query(None, alias="min", description="Exclusive lower bound"),
    max_price: Optional[str] = Query(None, alias="max", description="Exclusive upper bound"),
    db: Database = Depends(get_db),
):
    low, high = parse_number(min_price), parse_number(max_price)
    # nan compares false with every price
    if math.isnan(low) or math.isnan(high):
        return []
    return get_documents(db, POTION_COLLECTION, {"price": {"$gt": low, "$lt": high}})


# Analytics
@router.get("/analytics/distinct-categories")
def distinct_categories(db: Database = Depends(get_db)):
    rows = list(db[POTION_COLLECTION].aggregate(analytics.distinct_categories_pipeline()))
    return {"distinct_categories": rows[0]["distinct_categories"] if rows else 0}


@router.get("/analytics/average-score-by-vendor")
def average_score_by_vendor(db: Database = Depends(get_db)):
    rows = db[POTION_COLLECTION].aggregate(analytics.average_score_pipeline(GroupBy.vendor_id))
    return [{"vendor_id": row["_id"], "average_score": row["average_score"]} for row in rows]


@router.get("/analytics/average-score-by-category")
def average_score_by_category(db: Database = Depends(get_db)):
    rows = db[POTION_COLLECTION].aggregate(analytics.average_score_pipeline(GroupBy.categories))
    return [{"category": row["_id"], "average_score": row["average_score"]} for row in rows]


@router.get("/analytics/strength-flavor-ratio")
def strength_flavor_ratio(db: Database = Depends(get_db)):
    results = []
    for doc in db[POTION_COLLECTION].find({}, {"name": 1, "ratings": 1}):
        ratings = doc.get("ratings") or {}
        value = analytics.ratio(ratings.get("strength"), ratings.get("flavor"))
        results.append({
            "id": str(doc["_id"]),
            "name": doc.get("name"),
            "ratio": analytics.finite_or_none(value),
        })
    return results


@router.get("/analytics/search")
def search(
    group: GroupBy = Query(...),
    metric: Metric = Query(...),
    field: Optional[str] = Query(None, description="Required for avg and sum, ignored for count"),
    db: Database = Depends(get_db),
):
    try:
        pipeline = analytics.search_pipeline(group, metric, field)
    except analytics.InvalidSearch as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    key = analytics.search_output_key(metric)
    return [{"group": row["_id"], key: row[key]} for row in db[POTION_COLLECTION].aggregate(pipeline)]


# Item routes come last so /{potion_id} does not shadow the fixed paths
@router.get("/{potion_id}")
def get_potion(potion_id: str, db: Database = Depends(get_db)):
    oid = to_object_id(potion_id)
    doc = db[POTION_COLLECTION].find_one({"_id": oid}) if oid else None
    if not doc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Potion not found")
    return serialize(doc)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_potion(payload: Potion, db: Database = Depends(get_db)):
    potion = create_document(db, POTION_COLLECTION, clean_fields(payload.model_dump(exclude_unset=True)))
    logger.info("Created potion %s", potion["id"])
    return potion


@router.put("/{potion_id}", response_model=UpdateResult)
def update_potion(potion_id: str, payload: PotionUpdate, db: Database = Depends(get_db)):
    oid = to_object_id(potion_id)
    if oid is None:
        return UpdateResult(acknowledged=True, matched_count=0, modified_count=0)

    updates = clean_fields(payload.model_dump(exclude_unset=True))
    if not updates:
        matched = db[POTION_COLLECTION].count_documents({"_id": oid})
        return UpdateResult(acknowledged=True, matched_count=matched, modified_count=0)

    result = db[POTION_COLLECTION].update_one({"_id": oid}, {"$set": updates})
    return UpdateResult(
        acknowledged=result.acknowledged,
        matched_count=result.matched_count,
        modified_count=result.modified_count,
    )


@router.delete("/{potion_id}", response_model=DeleteResult)
def delete_potion(potion_id: str, db: Database = Depends(get_db)):
    oid = to_object_id(potion_id)
    if oid is None:
        return DeleteResult(acknowledged=True, deleted_count=0)
    result = db[POTION_COLLECTION].delete_one({"_id": oid})
    if result.deleted_count:
        logger.info("Deleted potion %s", potion_id)
    return DeleteResult(acknowledged=result.acknowledged, deleted_count=result.deleted_count)
