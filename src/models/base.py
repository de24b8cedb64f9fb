import datetime as dt
from typing import Annotated, Optional
from pydantic import BaseModel, Field, ConfigDict, BeforeValidator, field_serializer

# Standardizes MongoDB ObjectIds to strings
PyObjectId = Annotated[str, BeforeValidator(str)]


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


class MongoBaseModel(BaseModel):
    """Base for every document persisted by the record store."""
    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        extra='forbid'
    )

    id: Optional[PyObjectId] = Field(None, alias="_id")
    created_at: dt.datetime = Field(default_factory=utc_now)
    updated_at: dt.datetime = Field(default_factory=utc_now)

    @field_serializer("created_at", "updated_at")
    def serialize_dt(self, value: dt.datetime):
        return value.isoformat()
