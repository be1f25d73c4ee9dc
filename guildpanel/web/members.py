"""
Filtering, sorting and pagination for the JSON member list.

Operations run in a fixed order: filter, stable sort, then slice, so that
consecutive pages of the same query never overlap.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import discord

from .stats import format_member_for


DEFAULT_START = 0
DEFAULT_LIMIT = 50
TRUTHY = {"1", "true", "yes", "on"}


class InvalidMemberQuery(ValueError):
    """A query parameter that cannot be honoured, e.g. an unknown sort field."""


class FilterTarget(Enum):
    MEMBER = "member"
    USER = "user"


class SortField(Enum):
    USERNAME = "username"
    DISPLAY_NAME = "displayName"
    ID = "id"
    JOINED_AT = "joinedAt"
    CREATED_AT = "createdAt"
    STATUS = "status"
    BOT = "bot"
    TAG = "tag"
    DISCRIMINATOR = "discriminator"


def to_millis(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def _nullable(value):
    return (value is None, value if value is not None else 0)


SORT_KEYS: Dict[SortField, Callable[[Any], Any]] = {
    SortField.USERNAME: lambda m: m.name.lower(),
    SortField.DISPLAY_NAME: lambda m: m.display_name.lower(),
    SortField.ID: lambda m: int(m.id),
    SortField.JOINED_AT: lambda m: _nullable(to_millis(m.joined_at)),
    SortField.CREATED_AT: lambda m: _nullable(to_millis(m.created_at)),
    SortField.STATUS: lambda m: str(m.status),
    SortField.BOT: lambda m: bool(m.bot),
    SortField.TAG: lambda m: str(m).lower(),
    SortField.DISCRIMINATOR: lambda m: str(m.discriminator),
}


def _parse_int(raw: Optional[str], default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _is_truthy(raw: Optional[str]) -> bool:
    return raw is not None and raw.strip().lower() in TRUTHY


@dataclass
class MemberQuery:
    start: int = DEFAULT_START
    limit: int = DEFAULT_LIMIT
    filter_text: Optional[str] = None
    filter_target: FilterTarget = FilterTarget.MEMBER
    sort_by: Optional[SortField] = None
    descending: bool = False
    fetch: bool = False

    @classmethod
    def from_args(cls, args: Mapping[str, str]) -> "MemberQuery":
        start = max(_parse_int(args.get("start"), DEFAULT_START), 0)
        limit = _parse_int(args.get("limit"), DEFAULT_LIMIT)
        if limit <= 0:
            limit = DEFAULT_LIMIT

        filter_text = args.get("filter")
        if not filter_text or filter_text == "null":
            filter_text = None

        sort_by = None
        raw_sort = args.get("sortby")
        if raw_sort:
            try:
                sort_by = SortField(raw_sort)
            except ValueError:
                raise InvalidMemberQuery(f"Unknown sort field: {raw_sort}") from None

        order = (args.get("order") or "asc").lower()
        if order not in ("asc", "desc"):
            raise InvalidMemberQuery(f"Unknown sort order: {order}")

        return cls(
            start=start,
            limit=limit,
            filter_text=filter_text,
            filter_target=FilterTarget.USER if _is_truthy(args.get("filterUser")) else FilterTarget.MEMBER,
            sort_by=sort_by,
            descending=order == "desc",
            fetch=_is_truthy(args.get("fetch")),
        )

    def matches(self, member: Any) -> bool:
        if self.filter_text is None:
            return True
        name = member.name if self.filter_target is FilterTarget.USER else member.display_name
        return self.filter_text.lower() in (name or "").lower()


@dataclass
class MemberPage:
    total: int
    page: int
    pageof: int
    members: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"total": self.total, "page": self.page, "pageof": self.pageof, "members": self.members}


def select_members(members: Sequence[Any], query: MemberQuery) -> List[Any]:
    """Filter and sort; the result is the full ordered set that pages are cut from."""
    selected = [member for member in members if query.matches(member)]
    if query.sort_by is not None:
        selected.sort(key=SORT_KEYS[query.sort_by], reverse=query.descending)
    return selected


def summarize_member(member: Any, now: Optional[datetime] = None) -> dict:
    now = now or discord.utils.utcnow()
    joined_at = member.joined_at
    return {
        "id": str(member.id),
        "status": str(member.status),
        "bot": bool(member.bot),
        "username": member.name,
        "displayName": member.display_name,
        "tag": str(member),
        "discriminator": member.discriminator,
        "joinedAt": to_millis(joined_at),
        "createdAt": to_millis(member.created_at),
        "highestRole": {"hexColor": str(member.top_role.colour)},
        "memberFor": format_member_for(now - joined_at) if joined_at else "",
        "roles": [
            {"name": role.name, "id": str(role.id), "hexColor": str(role.colour)}
            for role in member.roles
            if not role.is_default()
        ],
    }


def build_member_page(guild: Any, query: MemberQuery, now: Optional[datetime] = None) -> MemberPage:
    members = list(guild.members)
    selected = select_members(members, query)
    window = selected[query.start:query.start + query.limit]
    return MemberPage(
        total=len(members),
        page=query.start // query.limit + 1,
        pageof=math.ceil(len(selected) / query.limit),
        members=[summarize_member(member, now) for member in window],
    )
