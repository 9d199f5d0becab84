"""
Database Schemas for the Potions API

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name (User -> "user", Potion -> "potion").
"""
from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    password_hash: str = Field(..., description="BCrypt hash of the password")
    created_at: Optional[datetime] = None


class Ratings(BaseModel):
    strength: Optional[float] = None
    flavor: Optional[float] = None


class Potion(BaseModel):
    # Fields outside the documented schema are kept and stored as-is
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    price: Optional[float] = None
    score: Optional[float] = None
    count: Optional[Union[int, float]] = Field(None, description="Available quantity")
    ingredients: Optional[List[str]] = None
    ratings: Optional[Ratings] = None
    categories: Optional[List[str]] = None
    vendor_id: Optional[Union[str, int]] = Field(None, description="Opaque id of the owning vendor")


class PotionUpdate(BaseModel):
    """Partial update: only the fields present in the request body are written."""

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = None
    score: Optional[float] = None
    count: Optional[Union[int, float]] = None
    ingredients: Optional[List[str]] = None
    ratings: Optional[Ratings] = None
    categories: Optional[List[str]] = None
    vendor_id: Optional[Union[str, int]] = None
