from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator


class Article(BaseModel):
    title: str = ""
    url: str = ""
    pub_date: datetime
    description: str = ""
    image_url: str = ""
    # Ordering tie-break only; never serialized to API callers
    source_url: str = Field(default="", exclude=True)

    @field_validator("title", "url", "description", "image_url", "source_url", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("pub_date")
    @classmethod
    def _as_utc(cls, v: datetime) -> datetime:
        # Naive timestamps are treated as UTC
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class FeedSource(BaseModel):
    url: str
