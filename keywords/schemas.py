from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .validation import validate_keyword_text


KeywordStatus = Literal["active", "inactive", "archived", "pending"]
BulkOperation = Literal["activate", "deactivate", "archive", "delete", "scrape"]
ScrapingType = Literal["instagram", "google_maps"]


def _clean_description(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def _clean_tags(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    return [tag.strip() for tag in value if tag and tag.strip()]


class KeywordCreate(BaseModel):
    keyword: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: str = Field(default="general", min_length=1, max_length=100)
    priority: int = Field(default=1, ge=1, le=5)
    status: KeywordStatus = "active"
    tags: Optional[List[str]] = Field(default=None, max_length=10)
    search_volume: Optional[int] = Field(default=None, ge=0)
    competition_score: Optional[float] = Field(default=None, ge=0, le=1)
    metadata: Optional[dict[str, Any]] = None

    @field_validator("keyword")
    @classmethod
    def _keyword(cls, value: str) -> str:
        return validate_keyword_text(value)

    @field_validator("description")
    @classmethod
    def _description(cls, value: Optional[str]) -> Optional[str]:
        return _clean_description(value)

    @field_validator("category")
    @classmethod
    def _category(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Category is required")
        return trimmed

    @field_validator("tags")
    @classmethod
    def _tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        for tag in value or []:
            if len(tag) > 50:
                raise ValueError("Tag too long")
        return _clean_tags(value)


class KeywordUpdate(BaseModel):
    id: int = Field(gt=0)
    keyword: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    priority: Optional[int] = Field(default=None, ge=1, le=5)
    status: Optional[KeywordStatus] = None
    tags: Optional[List[str]] = Field(default=None, max_length=10)
    search_volume: Optional[int] = Field(default=None, ge=0)
    competition_score: Optional[float] = Field(default=None, ge=0, le=1)
    performance_metrics: Optional[dict[str, Any]] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("keyword")
    @classmethod
    def _keyword(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return validate_keyword_text(value)

    @field_validator("description")
    @classmethod
    def _description(cls, value: Optional[str]) -> Optional[str]:
        return _clean_description(value)

    @field_validator("tags")
    @classmethod
    def _tags(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        for tag in value or []:
            if len(tag) > 50:
                raise ValueError("Tag too long")
        return _clean_tags(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"id"})


class BulkOperationRequest(BaseModel):
    operation: BulkOperation
    keyword_ids: List[int] = Field(alias="keywordIds", min_length=1, max_length=100)
    scraping_type: Optional[ScrapingType] = Field(default=None, alias="scrapingType")
    max_results: int = Field(default=1, alias="maxResults", ge=1, le=200)

    model_config = {"populate_by_name": True}

    @field_validator("keyword_ids")
    @classmethod
    def _positive_ids(cls, value: List[int]) -> List[int]:
        if any(item <= 0 for item in value):
            raise ValueError("Keyword ids must be positive")
        return value

    @field_validator("scraping_type", mode="before")
    @classmethod
    def _scraping_alias(cls, value: Any) -> Any:
        if value == "google-maps":
            return "google_maps"
        return value

    @model_validator(mode="after")
    def _scrape_needs_type(self) -> "BulkOperationRequest":
        if self.operation == "scrape" and self.scraping_type is None:
            raise ValueError("Scraping type is required for scrape operations")
        return self


class KeywordImportRequest(BaseModel):
    keywords: List[KeywordCreate] = Field(min_length=1, max_length=500)
