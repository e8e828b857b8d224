"""
Query parser for Logseq Search MCP Server.

Turns a query string into a filter expression tree. OR binds loosest; each
OR operand may be an AND of atomic filters. Parentheses are not supported.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

OR_TOKEN = " OR "
AND_TOKEN = " AND "


class Filter(BaseModel):
    """An atomic filter: the raw, trimmed operand text."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["filter"] = "filter"
    text: str


class And(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["and"] = "and"
    operands: list[FilterExpression] = Field(default_factory=list)


class Or(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["or"] = "or"
    operands: list[FilterExpression] = Field(default_factory=list)


FilterExpression = Annotated[Union[Filter, And, Or], Field(discriminator="kind")]

And.model_rebuild()
Or.model_rebuild()


def _parse_and(text: str) -> Filter | And:
    if AND_TOKEN not in text:
        return Filter(text=text.strip())
    return And(operands=[Filter(text=part.strip()) for part in text.split(AND_TOKEN)])


def parse(query: str) -> Filter | And | Or:
    """Parse a query string.

    "a OR b AND c" parses as Or(a, And(b, c)). Empty operands are kept as
    empty-text filters, which match nothing.
    """
    if OR_TOKEN in query:
        return Or(operands=[_parse_and(part.strip()) for part in query.split(OR_TOKEN)])
    return _parse_and(query.strip())
