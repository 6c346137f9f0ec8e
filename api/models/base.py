# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common fields and validation.
"""

from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from bson import ObjectId


def generate_object_id() -> str:
    """Generate a new MongoDB ObjectId as string."""
    return str(ObjectId())


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class BaseEntity(BaseModel):
    """Base entity with common fields for all domain objects."""

    model_config = ConfigDict(
        # Allow population by field name or alias
        populate_by_name=True,
        # Validate assignment
        validate_assignment=True,
        # Arbitrary types allowed
        arbitrary_types_allowed=True
    )

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=utcnow, description="Last update timestamp")
    created_by: str = Field(..., description="User ID who created this entity")
    updated_by: str = Field(..., description="User ID who last updated this entity")
    schema_version: int = Field(default=1, description="Schema version for migrations")

    def update_timestamp(self, updated_by: str, at: Optional[datetime] = None) -> None:
        """Update the timestamp and updated_by fields."""
        self.updated_at = at or utcnow()
        self.updated_by = updated_by
