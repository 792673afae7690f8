"""
Unit tests for channel name normalization, matching and grouping.
"""
import pytest

from channel_matcher import (
    BUILT_IN_MODELS,
    channel_matches,
    filter_by_patterns,
    get_built_in_model,
    group_channels,
    matches_any_pattern,
    normalize_channel_name,
    preview_patterns,
    tokenize,
)
from tests.fixtures.factories import make_record


class TestNormalizeChannelName:
    """Tests for normalize_channel_name()."""

    def test_strips_quality_and_region_words(self):
        assert normalize_channel_name("Sun TV HD") == "sun tv"
        assert normalize_channel_name("SUN TV USA") == "sun tv"
        assert normalize_channel_name("Star Sports 1 FHD 1080p") == "star sports 1"

    def test_keeps_language_and_tv_words(self):
        assert normalize_channel_name("Zee Tamil HD") == "zee tamil"
        assert normalize_channel_name("Colors TV") == "colors tv"

    def test_strips_bracketed_annotations(self):
        assert normalize_channel_name("[HD] Sun TV (Backup) {geo}") == "sun tv"

    def test_collapses_separators(self):
        assert normalize_channel_name("Sun-TV | VIP") == "sun tv"
        assert normalize_channel_name("sun_tv...hd") == "sun tv"

    @pytest.mark.parametrize("name", [
        "Sun TV HD",
        "[4K] Star Sports 1 (Backup)",
        "  Zee---Tamil  | VIP ",
        "HD",
        "",
        "News18 Tamil Nadu (720p) [Geo-blocked]",
        "(unbalanced [bracket Sun TV",
    ])
    def test_idempotent(self, name):
        once = normalize_channel_name(name)
        assert normalize_channel_name(once) == once

    def test_only_stop_words_yields_empty(self):
        assert normalize_channel_name("HD Live Stream") == ""

    def test_non_string_yields_empty(self):
        assert tokenize(None) == []


class TestChannelMatches:
    """Tests for channel_matches()."""

    @pytest.mark.parametrize("candidate", [
        "Sun TV", "Sun TV HD", "SunTV VIP", "SUN TV USA", "[HD] Sun TV", "sun-tv backup",
    ])
    def test_sun_tv_variants_match(self, candidate):
        assert channel_matches(candidate, "Sun TV") is True

    @pytest.mark.parametrize("candidate", ["Sunshine TV", "Sony TV", "Sun News", "Sun Music"])
    def test_sun_tv_lookalikes_rejected(self, candidate):
        assert channel_matches(candidate, "Sun TV") is False

    def test_language_word_prevents_cross_match(self):
        assert channel_matches("Zee Tamil HD", "Zee Tamil") is True
        assert channel_matches("Zee Marathi", "Zee Tamil") is False
        assert channel_matches("Zee Tamil", "Zee Marathi") is False

    def test_token_order_independent(self):
        assert channel_matches("Tamil Zee", "Zee Tamil") is True

    def test_missing_pattern_token_rejects(self):
        assert channel_matches("Sun", "Sun TV") is False
        assert channel_matches("Sports ESP", "ESPN") is False

    def test_short_pattern_matches_concatenated_prefix(self):
        assert channel_matches("ESPNews", "ESPN") is True

    def test_concatenation_only_for_short_patterns(self):
        """Patterns of three or more tokens must match token by token."""
        assert channel_matches("StarSportsTamil", "Star Sports Tamil") is False
        assert channel_matches("Star Sports Tamil HD", "Star Sports Tamil") is True

    def test_concatenation_needs_three_characters(self):
        assert channel_matches("ab extra", "a b") is False

    def test_empty_pattern_never_matches(self):
        assert channel_matches("Sun TV", "") is False
        assert channel_matches("Sun TV", "HD") is False


class TestPatternHelpers:
    def test_matches_any_pattern_returns_first_hit(self):
        assert matches_any_pattern("Sun TV HD", ["CNN", "  Sun TV ", "Sun"]) == "Sun TV"

    def test_matches_any_pattern_none(self):
        assert matches_any_pattern("Sun TV HD", ["CNN", ""]) is None

    def test_filter_by_patterns(self):
        sun = make_record(name="Sun TV HD")
        zee = make_record(name="Zee Marathi")
        result = filter_by_patterns([sun, zee], ["Sun TV", "Zee Tamil"])

        assert result.matched == [sun]
        assert result.unmatched == [zee]
        assert result.match_map == {sun.id: "Sun TV"}

    def test_preview_patterns(self):
        names = [f"Star Sports {i} HD" for i in range(1, 8)] + ["CNN"]
        preview = preview_patterns(names, ["Star Sports", " ", "BBC News"])

        assert len(preview) == 2
        assert preview[0]["pattern"] == "Star Sports"
        assert preview[0]["match_count"] == 7
        assert len(preview[0]["examples"]) == 5
        assert preview[1]["match_count"] == 0


class TestBuiltInModels:
    def test_three_models(self):
        assert {m.id for m in BUILT_IN_MODELS} == {"builtin_tamil", "builtin_sports", "builtin_news"}

    def test_lookup(self):
        assert get_built_in_model("builtin_news").default_group_name == "News"
        assert get_built_in_model("missing") is None

    def test_tamil_model_selects_tamil_channels_only(self):
        model = get_built_in_model("builtin_tamil")
        assert matches_any_pattern("Sun TV HD", model.patterns) == "Sun TV"
        assert matches_any_pattern("Zee Tamil", model.patterns) == "Zee Tamil"
        assert matches_any_pattern("Zee Marathi", model.patterns) is None


class TestGroupChannels:
    """Tests for group_channels()."""

    def test_groups_across_sources(self):
        records = [
            make_record(source_id="a", name="Sun TV HD"),
            make_record(source_id="b", name="Sun TV"),
            make_record(source_id="c", name="SUN TV (Backup)"),
        ]
        groups = group_channels(records, min_sources=2)

        assert len(groups) == 1
        assert groups[0].key == "sun tv"
        assert groups[0].name == "Sun TV"
        assert len(groups[0].members) == 3
        assert groups[0].source_ids == {"a", "b", "c"}

    def test_single_source_excluded(self):
        records = [
            make_record(source_id="a", name="CNN HD"),
            make_record(source_id="a", name="CNN"),
        ]
        assert group_channels(records, min_sources=2) == []

    def test_min_sources_one_keeps_single_source(self):
        records = [make_record(source_id="a", name="CNN")]
        assert len(group_channels(records, min_sources=1)) == 1

    def test_disabled_and_empty_keys_skipped(self):
        records = [
            make_record(source_id="a", name="BBC News", enabled=False),
            make_record(source_id="b", name="BBC News"),
            make_record(source_id="a", name="HD"),
            make_record(source_id="b", name="Live"),
        ]
        assert group_channels(records, min_sources=2) == []

    def test_to_dict(self):
        records = [
            make_record(source_id="a", name="CNN", logo="http://logo/cnn.png"),
            make_record(source_id="b", name="CNN HD"),
        ]
        data = group_channels(records)[0].to_dict()
        assert data["source_count"] == 2
        assert data["logo"] == "http://logo/cnn.png"
        assert len(data["channels"]) == 2
