"""
Pydantic models for Logseq Search MCP Server.

Contains raw corpus models (as returned by providers), the content record
variants produced by a search, and the request/result envelopes.
"""

from __future__ import annotations

import hashlib
import json
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .config import DEFAULT_LIMIT, Settings, settings
from .utils import ValidationError

Timestamp = Union[int, float, str, None]

SearchTarget = Literal["pages", "blocks", "templates", "tasks", "properties", "both"]
SortKey = Literal[
    "relevance", "created", "updated", "title", "page_title", "length", "deadline", "scheduled"
]
SortOrder = Literal["asc", "desc"]


def _ref_id(value: Any) -> Any:
    """Logseq refers to pages/parents as {"id": 42}; keep the id only."""
    if isinstance(value, dict):
        value = value.get("uuid") or value.get("name") or value.get("id")
    return None if value is None else str(value)


# ============== Raw corpus models ==============

class Page(BaseModel):
    """A page as returned by a corpus provider."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    original_name: str | None = Field(default=None, alias="originalName")
    journal: bool = Field(default=False, alias="journal?")
    journal_day: int | None = Field(default=None, alias="journalDay")
    properties: dict[str, Any] = Field(default_factory=dict)
    created_at: Timestamp = Field(default=None, validation_alias=AliasChoices("createdAt", "created_at"))
    updated_at: Timestamp = Field(default=None, validation_alias=AliasChoices("updatedAt", "updated_at"))
    content: str = ""

    @model_validator(mode="before")
    @classmethod
    def _coerce_identity(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if data.get("uuid"):
                data["id"] = str(data["uuid"])
            elif data.get("id") is not None:
                data["id"] = str(data["id"])
            if data.get("properties") is None:
                data["properties"] = {}
            if data.get("content") is None:
                data.pop("content", None)
        return data

    @property
    def display_name(self) -> str:
        return self.original_name or self.name


class Block(BaseModel):
    """A block (outline node) as returned by a corpus provider."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uuid: str
    content: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)
    page: str | None = None
    parent: str | None = None
    children: list[Block] = Field(default_factory=list)
    created_at: Timestamp = Field(
        default=None, validation_alias=AliasChoices("created-at", "createdAt", "created_at")
    )
    updated_at: Timestamp = Field(
        default=None, validation_alias=AliasChoices("updated-at", "updatedAt", "updated_at")
    )

    @model_validator(mode="before")
    @classmethod
    def _coerce_refs(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("uuid") and data.get("id") is not None:
                data["uuid"] = str(data["id"])
            if data.get("content") is None:
                data["content"] = ""
            if data.get("properties") is None:
                data["properties"] = {}
            data["page"] = _ref_id(data.get("page"))
            data["parent"] = _ref_id(data.get("parent"))
            # Non-tree responses list children as ["uuid", "..."] pairs
            data["children"] = [c for c in data.get("children") or [] if isinstance(c, (dict, Block))]
        return data


# ============== Content records ==============

class BaseRecord(BaseModel):
    """Fields shared by every search result record. Records are read-only."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    content: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    created: Timestamp = None
    updated: Timestamp = None
    relevance_score: float = 0.0

    def primary_text(self) -> str:
        """Text used by length/contains/exclude filters and length sorting."""
        return self.content or self.name

    def ranking_text(self) -> str:
        """Text scored by the relevance ranker."""
        return self.primary_text()

    def scope_name(self) -> str:
        """Page name checked by namespace and page-title scopes."""
        return self.name

    def is_journal(self) -> bool:
        return False


class PageRecord(BaseRecord):
    type: Literal["page"] = "page"
    journal: bool = False
    journal_day: int | None = None
    match_reason: str | None = None

    def ranking_text(self) -> str:
        return f"{self.name} {self.content}".strip()

    def is_journal(self) -> bool:
        return self.journal


class BlockRecord(BaseRecord):
    type: Literal["block"] = "block"
    page: str = ""
    parent: str | None = None
    children: list[str] = Field(default_factory=list)

    def scope_name(self) -> str:
        return self.page


class TemplateRecord(BaseRecord):
    type: Literal["template"] = "template"
    template_type: str = "page"
    placeholders: list[str] = Field(default_factory=list)

    def ranking_text(self) -> str:
        return f"{self.name} {self.content}".strip()


class TaskRecord(BaseRecord):
    type: Literal["task"] = "task"
    page: str = ""
    status: str = "TODO"
    scheduled: str | None = None
    deadline: str | None = None

    def scope_name(self) -> str:
        return self.page


class PropertyRecord(BaseRecord):
    type: Literal["property"] = "property"
    owner: Literal["page", "block"] = "page"
    page: str = ""
    key: str = ""
    value: Any = None

    def scope_name(self) -> str:
        return self.page


ContentRecord = Annotated[
    Union[PageRecord, BlockRecord, TemplateRecord, TaskRecord, PropertyRecord],
    Field(discriminator="type"),
]


# ============== Request / response ==============

class SearchScope(BaseModel):
    """Restricts results to a namespace, page list, journal flag or tag."""

    model_config = ConfigDict(extra="ignore")

    namespace: str | None = None
    journal: bool | None = None
    page_titles: list[str] | None = None
    tag: str | None = None


class SearchFilter(BaseModel):
    """Attribute predicates applied after query evaluation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    length_min: int | None = Field(default=None, ge=0, alias="lengthMin")
    length_max: int | None = Field(default=None, ge=1, alias="lengthMax")
    properties_any: dict[str, Any] | None = None
    properties_all: dict[str, Any] | None = None
    tags_any: list[str] | None = None
    tags_all: list[str] | None = None
    created_after: Timestamp = Field(default=None, alias="createdAfter")
    created_before: Timestamp = Field(default=None, alias="createdBefore")
    updated_after: Timestamp = Field(default=None, alias="updatedAfter")
    updated_before: Timestamp = Field(default=None, alias="updatedBefore")
    contains: str | None = None
    exclude: str | None = None
    # Task-only predicates
    todo_state: str | None = Field(default=None, alias="todoState")
    scheduled_on: str | None = Field(default=None, alias="scheduledOn")
    deadlined_on: str | None = Field(default=None, alias="deadlinedOn")


def _loads_if_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


class SearchRequest(BaseModel):
    """A single search call."""

    model_config = ConfigDict(extra="ignore")

    query: str | None = None
    target: SearchTarget = "both"
    scope: SearchScope | None = None
    filter: SearchFilter | None = None
    sort: SortKey = "relevance"
    order: SortOrder = "desc"
    limit: int = DEFAULT_LIMIT
    cursor: str | None = None
    strict: bool = False

    @model_validator(mode="before")
    @classmethod
    def _preprocess(cls, data: Any, info: ValidationInfo) -> Any:
        """Accept stringified objects/arrays and numeric strings from tool callers."""
        if not isinstance(data, dict):
            return data
        data = dict(data)

        for key in ("filter", "scope"):
            data[key] = _loads_if_json(data.get(key))

        if isinstance(data.get("filter"), dict):
            data["filter"] = dict(data["filter"])
            for key in ("tags_all", "tags_any"):
                if key in data["filter"]:
                    data["filter"][key] = _loads_if_json(data["filter"][key])

        if isinstance(data.get("scope"), dict) and "page_titles" in data["scope"]:
            data["scope"] = dict(data["scope"])
            data["scope"]["page_titles"] = _loads_if_json(data["scope"]["page_titles"])

        limit = data.get("limit")
        if isinstance(limit, str) and limit.strip().lstrip("-").isdigit():
            data["limit"] = int(limit)
        if data.get("limit") is None:
            data.pop("limit", None)
            if info.context:
                data["limit"] = info.context["default_limit"]

        if isinstance(data.get("cursor"), int):
            data["cursor"] = str(data["cursor"])

        return {k: v for k, v in data.items() if v is not None}

    @field_validator("limit")
    @classmethod
    def _check_limit(cls, value: int, info: ValidationInfo) -> int:
        max_limit = (info.context or {}).get("max_limit", settings.max_limit)
        if value < 1 or value > max_limit:
            raise ValueError(f"limit must be between 1 and {max_limit}")
        return value

    @classmethod
    def from_arguments(
        cls, arguments: dict[str, Any] | SearchRequest, config: Settings | None = None
    ) -> SearchRequest:
        """Validate raw arguments, raising the engine's ValidationError.

        config supplies the default and maximum limit; the process settings otherwise.
        """
        if isinstance(arguments, SearchRequest):
            arguments = arguments.model_dump(exclude_none=True)
        context = None
        if config is not None:
            context = {"default_limit": config.default_limit, "max_limit": config.max_limit}
        try:
            return cls.model_validate(arguments, context=context)
        except PydanticValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(part) for part in err['loc']) or 'request'}: {err['msg']}"
                for err in e.errors()
            )
            raise ValidationError(f"Invalid search request: {details}") from e

    def shape_digest(self) -> str:
        """Digest of everything besides query/target/limit/cursor that shapes results."""
        shape = self.model_dump(
            mode="json",
            by_alias=True,
            include={"scope", "filter", "sort", "order", "strict"},
            exclude_none=True,
        )
        raw = json.dumps(shape, sort_keys=True, default=str)
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:12]


class SearchResult(BaseModel):
    """The result envelope returned to the calling layer."""

    results: list[ContentRecord]
    total_found: int
    has_more: bool
    next_cursor: str | None = None
