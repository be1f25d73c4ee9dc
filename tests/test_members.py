"""Tests for the filtered, sorted and paged member list."""
import pytest

from conftest import GUILD_ID, NOW
from guildpanel.web.members import (
    DEFAULT_LIMIT,
    FilterTarget,
    InvalidMemberQuery,
    MemberQuery,
    SortField,
    build_member_page,
    select_members,
    summarize_member,
)


def names(page):
    return [m["username"] for m in page.members]


def test_from_args_defaults():
    query = MemberQuery.from_args({})

    assert query.start == 0
    assert query.limit == DEFAULT_LIMIT
    assert query.filter_text is None
    assert query.filter_target is FilterTarget.MEMBER
    assert query.sort_by is None
    assert query.descending is False
    assert query.fetch is False


@pytest.mark.parametrize("raw_limit", ["0", "-5", "many"])
def test_unusable_limit_falls_back_to_default(raw_limit):
    assert MemberQuery.from_args({"limit": raw_limit}).limit == DEFAULT_LIMIT


def test_negative_start_is_clamped():
    assert MemberQuery.from_args({"start": "-10"}).start == 0


def test_literal_null_filter_is_ignored():
    assert MemberQuery.from_args({"filter": "null"}).filter_text is None


def test_flags_are_parsed():
    query = MemberQuery.from_args({"filterUser": "true", "fetch": "1", "sortby": "joinedAt", "order": "DESC"})

    assert query.filter_target is FilterTarget.USER
    assert query.fetch is True
    assert query.sort_by is SortField.JOINED_AT
    assert query.descending is True


def test_unknown_sort_field_is_rejected():
    with pytest.raises(InvalidMemberQuery):
        MemberQuery.from_args({"sortby": "karma"})


def test_unknown_sort_order_is_rejected():
    with pytest.raises(InvalidMemberQuery):
        MemberQuery.from_args({"order": "sideways"})


def test_filter_and_sort_by_username(guild):
    query = MemberQuery.from_args({"start": "0", "limit": "2", "filter": "al", "sortby": "username"})

    page = build_member_page(guild, query, NOW)

    assert names(page) == ["albert", "alice"]
    assert page.total == 3
    assert page.page == 1
    assert page.pageof == 1


def test_filter_matches_display_name_by_default(guild):
    query = MemberQuery.from_args({"filter": "bobby"})

    assert [m.name for m in select_members(guild.members, query)] == ["bob"]


def test_filter_user_matches_account_name_instead(guild):
    by_member = MemberQuery.from_args({"filter": "bobby", "filterUser": "true"})
    by_user = MemberQuery.from_args({"filter": "BOB", "filterUser": "true"})

    assert select_members(guild.members, by_member) == []
    assert [m.name for m in select_members(guild.members, by_user)] == ["bob"]


def test_every_returned_member_matches_the_filter(guild):
    query = MemberQuery.from_args({"filter": "AL"})

    for member in build_member_page(guild, query, NOW).members:
        assert "al" in member["displayName"].lower()


def test_consecutive_pages_partition_the_sorted_set(guild):
    seen = []
    for start in range(0, 3):
        query = MemberQuery.from_args({"start": str(start), "limit": "1", "sortby": "joinedAt"})
        page = build_member_page(guild, query, NOW)
        assert page.page == start + 1
        assert page.pageof == 3
        seen.extend(names(page))

    assert seen == ["alice", "albert", "bob"]


def test_descending_order(guild):
    query = MemberQuery.from_args({"sortby": "id", "order": "desc"})

    assert names(build_member_page(guild, query, NOW)) == ["bob", "albert", "alice"]


def test_unsorted_query_keeps_cache_order(guild):
    assert names(build_member_page(guild, MemberQuery(), NOW)) == ["alice", "albert", "bob"]


def test_start_past_the_end_returns_empty_page(guild):
    page = build_member_page(guild, MemberQuery(start=10, limit=5), NOW)

    assert page.members == []
    assert page.page == 3
    assert page.pageof == 1


def test_summary_fields(guild):
    alice = guild.get_member(11)

    summary = summarize_member(alice, NOW)

    assert summary["id"] == "11"
    assert summary["displayName"] == "Alice"
    assert summary["tag"] == "alice"
    assert summary["bot"] is False
    assert summary["joinedAt"] == int(alice.joined_at.timestamp() * 1000)
    assert summary["memberFor"] == "30 days, 0 hrs, 0 mins, 0 secs"
    assert [role["name"] for role in summary["roles"]] == ["Moderator"]
    assert summary["highestRole"] == {"hexColor": "#3498db"}


def test_members_list_endpoint(http, login):
    login()

    response = http.get(f"/dashboard/{GUILD_ID}/members/list?start=0&limit=2&filter=al&sortby=username")

    assert response.status_code == 200
    data = response.get_json()
    assert [m["username"] for m in data["members"]] == ["albert", "alice"]
    assert data["total"] == 3
    assert data["page"] == 1
    assert data["pageof"] == 1


def test_members_list_endpoint_rejects_unknown_sort(http, login):
    login()

    response = http.get(f"/dashboard/{GUILD_ID}/members/list?sortby=karma")

    assert response.status_code == 400
    assert "karma" in response.get_json()["error"]


def test_members_list_fetch_refreshes_member_cache(http, login, guild):
    login()

    response = http.get(f"/dashboard/{GUILD_ID}/members/list?fetch=true")

    assert response.status_code == 200
    assert guild.chunk_calls == 1
