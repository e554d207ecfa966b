"""Tests for the pure rating, access, enrichment and filtering logic.

None of these touch the database: ORM objects are built unattached and
enriched records are constructed directly.
"""
from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace

import pytest

from startin.access import (
    AccessRole,
    can_discover,
    can_edit_startup,
    can_view_rating,
    can_view_sensitive_data,
    require_owner,
    resolve_access_role,
    visible_ratings,
)
from startin.enricher import enrich_many, enrich_startup
from startin.errors import AuthorizationError, ConfigurationError
from startin.filtering import FilterQuery, SortDir, SortKey, filter_and_sort, paginate, sort_startups
from startin.models import AccessGrant, Engagement, Rating, Startup, UserProfile
from startin.ratings import RATING_DIMENSIONS, aggregate_ratings, round_half_up, validate_score
from startin.schemas import EnrichedStartup

# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_startup(id="s1", owner="owner", visibility="public", **kw) -> Startup:
    return Startup(id=id, user_id=owner, name=kw.pop("name", "Acme"), visibility=visibility, **kw)


def make_rating(score, dimension="market-demand", user="rater", visibility="public", startup_id="s1", id=None):
    return Rating(
        id=id or f"{user}-{dimension}", startup_id=startup_id, user_id=user,
        dimension=dimension, score=score, visibility=visibility,
    )


def grant(user, role="viewer", startup_id="s1") -> AccessGrant:
    return AccessGrant(startup_id=startup_id, user_id=user, role=role)


def item(id, name="X", status=None, rating=None, created=None, **kw) -> EnrichedStartup:
    return EnrichedStartup(
        id=id, user_id="owner", name=name, status=status, avg_rating=rating,
        created_at=created, **kw,
    )


def names(items) -> list[str]:
    return [i.name for i in items]


# =========================================================================
# Rating aggregation
# =========================================================================


class TestAggregateRatings:
    def test_empty_is_zero(self):
        agg = aggregate_ratings([])
        assert agg.overall == 0
        assert agg.dimensions == {}
        assert agg.count == 0

    def test_mean_rounded_to_one_decimal(self):
        assert aggregate_ratings([{"score": s, "dimension": "team-founders"} for s in (4, 5, 3)]).overall == 4.0
        assert aggregate_ratings([{"score": s, "dimension": "team-founders"} for s in (3, 3, 4)]).overall == 3.3

    def test_rounds_half_up(self):
        agg = aggregate_ratings([{"score": s, "dimension": "business-model"} for s in (4, 4, 4, 5)])
        assert agg.overall == 4.3
        assert round_half_up(2.25) == 2.3
        assert round_half_up(2.24) == 2.2

    def test_two_raters_same_dimension(self):
        agg = aggregate_ratings([
            make_rating(4, user="alice"),
            make_rating(2, user="bob"),
        ])
        assert agg.dimensions["market-demand"].avg == 3.0
        assert agg.dimensions["market-demand"].count == 2

    def test_partial_dimension_sets(self):
        agg = aggregate_ratings([
            make_rating(5, dimension="market-demand"),
            make_rating(3, dimension="team-founders"),
        ])
        assert set(agg.dimensions) == {"market-demand", "team-founders"}
        assert agg.overall == 4.0
        assert agg.dimensions_dict()["team-founders"] == {"avg": 3.0, "count": 1}

    def test_overall_stays_in_range(self):
        for scores in ([1], [5, 5, 5], [1, 2, 3, 4, 5], [2, 5]):
            overall = aggregate_ratings([{"score": s, "dimension": "market-demand"} for s in scores]).overall
            assert 0 <= overall <= 5

    def test_ignores_missing_scores(self):
        agg = aggregate_ratings([{"score": None, "dimension": "market-demand"}, {"score": 4, "dimension": "market-demand"}])
        assert agg.overall == 4.0
        assert agg.count == 1

    def test_six_dimensions(self):
        assert list(RATING_DIMENSIONS) == [
            "market-demand", "solution-execution", "team-founders",
            "business-model", "validation-traction", "environment-runway",
        ]

    @pytest.mark.parametrize("bad", [0, 6, 3.5, "4", True])
    def test_validate_score_rejects(self, bad):
        with pytest.raises(ValueError):
            validate_score(bad)


# =========================================================================
# Access evaluation
# =========================================================================


class TestSensitiveDataGate:
    @pytest.mark.parametrize("visibility", ["public", "invite-only", "private", None])
    def test_owner_always_sees(self, visibility):
        assert can_view_sensitive_data(make_startup(visibility=visibility), "owner") is True

    def test_public_visible_to_any_user(self):
        s = make_startup(visibility="public")
        assert all(can_view_sensitive_data(s, u) for u in ("alice", "bob", "zed"))

    def test_private_without_grant_hidden(self):
        assert can_view_sensitive_data(make_startup(visibility="private"), "alice") is False

    def test_invite_only_with_grant(self):
        s = make_startup(visibility="invite-only")
        assert can_view_sensitive_data(s, "alice", [grant("alice", "commenter")]) is True
        assert can_view_sensitive_data(s, "bob", [grant("alice", "commenter")]) is False

    def test_grant_for_other_startup_ignored(self):
        s = make_startup(visibility="private")
        assert can_view_sensitive_data(s, "alice", [grant("alice", startup_id="other")]) is False

    def test_unknown_role_ignored(self):
        s = make_startup(visibility="private")
        assert can_view_sensitive_data(s, "alice", [grant("alice", role="admin")]) is False

    def test_anonymous_denied(self):
        assert can_view_sensitive_data(make_startup(visibility="public"), None) is False

    def test_fails_closed_without_visibility(self):
        assert can_view_sensitive_data(make_startup(visibility=None), "alice") is False
        assert can_view_sensitive_data(SimpleNamespace(id="s1"), "alice") is False


class TestAccessRole:
    def test_owner_is_editor(self):
        assert resolve_access_role(make_startup(), "owner") == AccessRole.EDITOR

    def test_granted_role(self):
        s = make_startup(visibility="private")
        assert resolve_access_role(s, "alice", [grant("alice", "commenter")]) == AccessRole.COMMENTER

    def test_public_has_no_role(self):
        assert resolve_access_role(make_startup(), "alice") is None

    def test_anonymous_has_no_role(self):
        assert resolve_access_role(make_startup(), None) is None

    def test_can_edit(self):
        s = make_startup(visibility="private")
        assert can_edit_startup(s, "owner")
        assert can_edit_startup(s, "ed", [grant("ed", "editor")])
        assert not can_edit_startup(s, "viewer", [grant("viewer", "viewer")])

    def test_can_discover(self):
        private = make_startup(visibility="private")
        assert can_discover(make_startup(), None)
        assert not can_discover(private, None)
        assert not can_discover(private, "alice")
        assert can_discover(private, "alice", [grant("alice")])

    def test_require_owner(self):
        s = make_startup()
        require_owner(s, "owner")
        with pytest.raises(AuthorizationError):
            require_owner(s, "alice")
        with pytest.raises(AuthorizationError):
            require_owner(s, None)


class TestRatingVisibility:
    def test_public_rating_visible(self):
        assert can_view_rating(make_rating(4), make_startup(), "anyone")

    def test_private_rating_author_only(self):
        r = make_rating(4, user="alice", visibility="private")
        s = make_startup()
        assert can_view_rating(r, s, "alice")
        assert not can_view_rating(r, s, "bob")
        assert not can_view_rating(r, s, "owner")

    def test_inner_circle(self):
        r = make_rating(4, user="alice", visibility="inner-circle")
        s = make_startup()
        assert can_view_rating(r, s, "owner")
        assert can_view_rating(r, s, "carol", [grant("carol")])
        assert not can_view_rating(r, s, "bob")

    def test_visible_ratings_applies_startup_gate_first(self):
        s = make_startup(visibility="private")
        ratings = [make_rating(4, user="alice")]
        assert visible_ratings(ratings, s, "bob") == []
        assert len(visible_ratings(ratings, s, "bob", [grant("bob")])) == 1


# =========================================================================
# Enrichment
# =========================================================================


class TestEnrichStartup:
    def test_creator_name(self):
        s = make_startup()
        assert enrich_startup(s, [], "owner").creator_name == "You"
        assert enrich_startup(s, [], "bob", creator=UserProfile(id="owner", name="Olga")).creator_name == "Olga"
        assert enrich_startup(s, [], "bob", creator=UserProfile(id="owner", name=None)).creator_name == "Unknown"
        assert enrich_startup(s, [], "bob").creator_name == "Unknown"

    def test_dimension_average_across_raters(self):
        e = enrich_startup(make_startup(), [make_rating(4, user="a"), make_rating(2, user="b")], "viewer")
        assert e.dimension_ratings["market-demand"].avg == 3.0
        assert e.dimension_ratings["market-demand"].count == 2
        assert e.avg_rating == 3.0
        assert len(e.user_ratings) == 2

    def test_no_ratings_is_zero(self):
        e = enrich_startup(make_startup(), [], "viewer")
        assert e.avg_rating == 0
        assert e.dimension_ratings == {}

    def test_gate_failure_hides_ratings(self):
        s = make_startup(visibility="private", name="Secret")
        e = enrich_startup(s, [make_rating(5)], "stranger")
        assert e.name == "Secret"
        assert e.avg_rating is None
        assert e.dimension_ratings == {}
        assert e.user_ratings == []

    def test_private_ratings_excluded_from_aggregate(self):
        ratings = [make_rating(5, user="a"), make_rating(1, user="b", visibility="private")]
        assert enrich_startup(make_startup(), ratings, "viewer").avg_rating == 5.0
        assert enrich_startup(make_startup(), ratings, "b").avg_rating == 3.0

    def test_engagement_flags(self):
        engagements = [
            Engagement(startup_id="s1", user_id="viewer", type="saved"),
            Engagement(startup_id="s1", user_id="other", type="interest"),
        ]
        e = enrich_startup(make_startup(), [], "viewer", engagements=engagements)
        assert e.saved is True
        assert e.interested is False

    def test_anonymous_flags_false(self):
        engagements = [Engagement(startup_id="s1", user_id="viewer", type="saved")]
        e = enrich_startup(make_startup(), [], None, engagements=engagements)
        assert e.saved is False and e.interested is False

    def test_tags_decoded(self):
        e = enrich_startup(make_startup(tags_json='["ai", "fintech"]'), [], "viewer")
        assert e.tags == ["ai", "fintech"]

    def test_access_role_reported(self):
        s = make_startup(visibility="invite-only")
        assert enrich_startup(s, [], "owner").access_role == "editor"
        assert enrich_startup(s, [], "c", grants=[grant("c", "commenter")]).access_role == "commenter"

    def test_enrich_many_groups_rows(self):
        s1, s2 = make_startup(id="s1"), make_startup(id="s2", owner="zed")
        out = enrich_many(
            [s1, s2], "owner",
            ratings=[make_rating(4, startup_id="s1"), make_rating(2, startup_id="s2", user="x")],
            profiles={"zed": UserProfile(id="zed", name="Zed")},
        )
        assert [e.avg_rating for e in out] == [4.0, 2.0]
        assert [e.creator_name for e in out] == ["You", "Zed"]


# =========================================================================
# Filtering & sorting
# =========================================================================


class TestFilterQuery:
    def test_from_params_splits_csv(self):
        q = FilterQuery.from_params(tags="ai, fintech,", status="Active", sort_by="name", sort_dir="ASC")
        assert q.tags == ["ai", "fintech"]
        assert q.status == ["Active"]
        assert q.sort_by == SortKey.NAME
        assert q.sort_dir == SortDir.ASC

    def test_avg_rating_alias(self):
        assert FilterQuery.from_params(sort_by="avg_rating").sort_by == SortKey.RATING

    def test_unknown_sort_key_rejected(self):
        with pytest.raises(ConfigurationError, match="sort_by"):
            FilterQuery.from_params(sort_by="popularity")

    def test_unknown_direction_rejected(self):
        with pytest.raises(ConfigurationError):
            FilterQuery.from_params(sort_dir="sideways")

    def test_bad_rating_bounds_rejected(self):
        with pytest.raises(ConfigurationError):
            FilterQuery.from_params(min_rating=4, max_rating=2)
        with pytest.raises(ConfigurationError):
            FilterQuery.from_params(min_rating=7)

    def test_default_bounds(self):
        q = FilterQuery(min_rating=3)
        assert q.rating_filter_active
        assert q.rating_bounds == (3, 5)
        assert not FilterQuery().rating_filter_active


class TestFilterAndSort:
    @pytest.fixture()
    def startups(self):
        return [
            item("a", "Alpha", status="Active", rating=4.5, summary="AI for farms", tags=["ai", "agri"],
                 created=datetime(2024, 1, 1)),
            item("b", "beta", status="Discovery", rating=3.0, description="Payments rails", tags=["fintech"],
                 visibility="invite-only", created=datetime(2024, 3, 1)),
            item("c", "Gamma", rating=None, tags=[], created=datetime(2024, 2, 1)),
            item("d", "Delta", status="Back-burner", rating=2.0, summary=None, description=None, tags=["ai"],
                 created=None),
        ]

    def test_empty_search_matches_all(self, startups):
        assert len(filter_and_sort(startups, FilterQuery(search=""))) == len(startups)

    def test_search_is_case_insensitive_across_fields(self, startups):
        assert names(filter_and_sort(startups, FilterQuery(search="FARMS"))) == ["Alpha"]
        assert names(filter_and_sort(startups, FilterQuery(search="payments"))) == ["beta"]
        assert names(filter_and_sort(startups, FilterQuery(search="gam"))) == ["Gamma"]

    def test_tags_any_match(self, startups):
        q = FilterQuery(tags=["ai", "fintech"], sort_by=SortKey.NAME, sort_dir=SortDir.ASC)
        assert names(filter_and_sort(startups, q)) == ["Alpha", "beta", "Delta"]

    def test_status_and_visibility_facets(self, startups):
        assert names(filter_and_sort(startups, FilterQuery(status=["Active", "Discovery"], sort_by=SortKey.NAME,
                                                           sort_dir=SortDir.ASC))) == ["Alpha", "beta"]
        assert names(filter_and_sort(startups, FilterQuery(visibility=["invite-only"]))) == ["beta"]

    def test_facets_are_anded(self, startups):
        q = FilterQuery(tags=["ai"], status=["Back-burner"])
        assert names(filter_and_sort(startups, q)) == ["Delta"]

    def test_rating_range_excludes_unrated(self, startups):
        q = FilterQuery(min_rating=1, sort_by=SortKey.NAME, sort_dir=SortDir.ASC)
        assert "Gamma" not in names(filter_and_sort(startups, q))
        q = FilterQuery(min_rating=3, max_rating=4)
        assert names(filter_and_sort(startups, q)) == ["beta"]

    def test_rating_range_inactive_by_default(self, startups):
        assert "Gamma" in names(filter_and_sort(startups, FilterQuery()))

    def test_zero_min_keeps_unrated(self, startups):
        assert "Gamma" in names(filter_and_sort(startups, FilterQuery(min_rating=0)))

    def test_sort_by_rating_desc_treats_missing_as_zero(self, startups):
        assert names(filter_and_sort(startups, FilterQuery())) == ["Alpha", "beta", "Delta", "Gamma"]

    def test_sort_by_name_is_case_insensitive(self, startups):
        q = FilterQuery(sort_by=SortKey.NAME, sort_dir=SortDir.ASC)
        assert names(filter_and_sort(startups, q)) == ["Alpha", "beta", "Delta", "Gamma"]

    def test_sort_by_created_at(self, startups):
        q = FilterQuery(sort_by=SortKey.CREATED_AT, sort_dir=SortDir.DESC)
        assert names(filter_and_sort(startups, q)) == ["beta", "Gamma", "Alpha", "Delta"]

    def test_active_first(self):
        items = [item("1", "B", status="Draft"), item("2", "A", status="Active"), item("3", "Z", status="Active")]
        ordered = sort_startups(items, SortKey.NAME, SortDir.ASC, active_first=True)
        assert [f"{i.status} {i.name}" for i in ordered] == ["Active A", "Active Z", "Draft B"]

    def test_active_first_with_descending_key(self):
        items = [item("1", "B", status="Draft"), item("2", "A", status="Active"), item("3", "Z", status="Active")]
        ordered = sort_startups(items, SortKey.NAME, SortDir.DESC, active_first=True)
        assert names(ordered) == ["Z", "A", "B"]

    def test_ties_break_on_id_in_both_directions(self):
        items = [item("c", "Same", rating=3.0), item("a", "Same", rating=3.0), item("b", "Same", rating=3.0)]
        for direction in SortDir:
            ordered = sort_startups(items, SortKey.RATING, direction)
            assert [i.id for i in ordered] == ["a", "b", "c"]

    def test_idempotent(self, startups):
        q = FilterQuery(tags=["ai", "fintech"], min_rating=1, active_first=True)
        once = filter_and_sort(startups, q)
        assert filter_and_sort(once, q) == once

    def test_does_not_mutate_input(self, startups):
        before = [s.id for s in startups]
        filter_and_sort(startups, FilterQuery(sort_by=SortKey.NAME))
        assert [s.id for s in startups] == before


class TestPaginate:
    def test_pages(self):
        items = [item(str(i)) for i in range(5)]
        page, total = paginate(items, page=2, per_page=2)
        assert [i.id for i in page] == ["2", "3"]
        assert total == 5

    def test_past_the_end(self):
        page, total = paginate([item("1")], page=3, per_page=10)
        assert page == [] and total == 1

    def test_invalid(self):
        with pytest.raises(ConfigurationError):
            paginate([], page=0)
