# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common fields and document mapping.
"""

from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Optional, Set
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from bson import ObjectId


def generate_object_id() -> str:
    """Generate a new MongoDB ObjectId as string."""
    return str(ObjectId())


def to_naive_utc(value: Any) -> Optional[datetime]:
    """
    Normalise a datetime or ISO-8601 string to naive UTC, the form stored in MongoDB.

    Aware values are converted before the offset is dropped; naive values are taken as UTC.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CamelModel(BaseModel):
    """Model whose wire and storage representation uses camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        # Allow population by field name or alias
        populate_by_name=True,
        # Use enum values instead of enum objects
        use_enum_values=True,
        validate_assignment=True,
        arbitrary_types_allowed=True
    )


class BaseEntity(CamelModel):
    """Base entity with common fields for all domain objects."""

    id: str = Field(default_factory=generate_object_id, description="Unique identifier")
    created_at: datetime = Field(default_factory=datetime.utcnow, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=datetime.utcnow, description="Last update timestamp")
    deleted_at: Optional[datetime] = Field(None, description="Soft delete timestamp")
    created_by: Optional[str] = Field(None, description="User ID who created this entity")
    updated_by: Optional[str] = Field(None, description="User ID who last updated this entity")
    schema_version: int = Field(default=1, description="Schema version for migrations")

    # Fields never returned to API clients
    private_fields: ClassVar[Set[str]] = set()

    def is_deleted(self) -> bool:
        """Check if entity is soft deleted."""
        return self.deleted_at is not None

    def to_document(self) -> Dict[str, Any]:
        """Dump the entity as a MongoDB document (camelCase, without id)."""
        document = self.model_dump(by_alias=True, exclude={"id"})
        document["_id"] = ObjectId(self.id) if ObjectId.is_valid(self.id) else self.id
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]):
        """Build the entity from a stored document."""
        data = dict(document)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        return cls.model_validate(data)

    def to_api(self) -> Dict[str, Any]:
        """Dump the entity for API responses."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude=set(self.private_fields) | {"deleted_at", "schema_version"}
        )
