"""
Unit tests for the feed_parser module.
"""
import json

import pytest

from channel_record import DEFAULT_CHANNEL_NAME, DEFAULT_GROUP, StreamKind
from feed_parser import (
    FIELD_SYNONYMS,
    ValidationError,
    as_text,
    extract_drm,
    extract_headers,
    flatten_entries,
    parse_feed,
    resolve_field,
)


class TestFieldSynonyms:
    """The synonym table is ordered; the first usable key wins."""

    def test_url_synonyms_in_priority_order(self):
        assert FIELD_SYNONYMS["url"][:2] == ("link", "url")

    def test_first_present_key_wins(self):
        raw = {"url": "http://a.example.com/second.m3u8", "link": "http://a.example.com/first.m3u8"}
        assert resolve_field(raw, "url") == "http://a.example.com/first.m3u8"

    def test_empty_value_falls_through(self):
        raw = {"name": "  ", "title": "Title Name"}
        assert resolve_field(raw, "name") == "Title Name"

    def test_group_skips_stream_kind_tokens(self):
        """A 'type' of 'hls' is a stream kind, not a group."""
        raw = {"type": "hls"}
        assert resolve_field(raw, "group") is None
        assert resolve_field({"type": "Movies"}, "group") == "Movies"

    def test_non_string_values_do_not_raise(self):
        raw = {"name": ["x"], "title": {"a": 1}, "channel": 42}
        assert resolve_field(raw, "name") == "42"

    def test_as_text_booleans_ignored(self):
        assert as_text(True) == ""
        assert as_text(None) == ""
        assert as_text(1.5) == "1.5"


class TestFlattenEntries:
    """Tests for wrapper detection and recursion."""

    def test_top_level_array(self):
        raw = [{"url": "http://a/1.m3u8"}, {"url": "http://a/2.m3u8"}]
        assert len(flatten_entries(raw)) == 2

    @pytest.mark.parametrize("key", ["channels", "streams", "items"])
    def test_wrapper_keys(self, key):
        raw = {key: [{"url": "http://a/1.m3u8"}]}
        assert len(flatten_entries(raw)) == 1

    def test_data_wrapper_with_list(self):
        raw = {"data": [{"link": "http://a/1.m3u8"}]}
        assert len(flatten_entries(raw)) == 1

    def test_data_wrapper_nesting_one_level_further(self):
        raw = {"data": {"channels": [{"link": "http://a/1.m3u8"}, {"link": "http://a/2.m3u8"}]}}
        assert len(flatten_entries(raw)) == 2

    def test_single_entry_object(self):
        raw = {"url": "http://a/1.m3u8", "name": "Only"}
        assert flatten_entries(raw) == [raw]

    def test_object_without_url_or_wrapper(self):
        assert flatten_entries({"name": "nothing"}) == []

    def test_array_members_that_are_wrappers(self):
        raw = [{"channels": [{"url": "http://a/1.m3u8"}]}, {"url": "http://a/2.m3u8"}]
        assert len(flatten_entries(raw)) == 2


class TestExtractDrm:
    def test_scheme_and_license_pair(self):
        drm = extract_drm({"drmScheme": "com.widevine.alpha", "drmLicense": "https://lic.example.com"})
        assert drm.license_type == "widevine"
        assert drm.license_key == "https://lic.example.com"

    def test_direct_fields(self):
        drm = extract_drm({"licenseType": "ClearKey", "licenseKey": "kid:key"})
        assert drm.license_type == "clearkey"
        assert drm.license_key == "kid:key"

    def test_shorthand_field(self):
        drm = extract_drm({"clearKey": "kid:key"})
        assert drm.license_type == "clearkey"

    def test_none_when_absent(self):
        assert extract_drm({"url": "http://a/1.mpd"}) is None


class TestExtractHeaders:
    def test_cookie_field_and_header_map(self):
        headers = extract_headers({
            "cookie": "__hdnea__=abc",
            "headers": {"User-Agent": "plaYtv/7.0", "Referer": "https://jio.example.com/"},
        })
        assert headers.cookie == "__hdnea__=abc"
        assert headers.user_agent == "plaYtv/7.0"
        assert headers.referer == "https://jio.example.com/"
        assert headers.extra["User-Agent"] == "plaYtv/7.0"

    def test_lowercase_header_spellings(self):
        headers = extract_headers({"headers": {"user-agent": "ua", "referer": "r"}})
        assert headers.user_agent == "ua"
        assert headers.referer == "r"

    def test_dedicated_fields_win_over_header_map(self):
        headers = extract_headers({"userAgent": "field-ua", "headers": {"User-Agent": "map-ua"}})
        assert headers.user_agent == "field-ua"

    def test_non_dict_header_map_ignored(self):
        headers = extract_headers({"headers": "not a map"})
        assert headers.is_empty()


class TestParseFeed:
    """Tests for parse_feed()."""

    def test_jiotv_style_array(self):
        payload = json.dumps([
            {
                "name": "Star Sports 1 HD",
                "link": "https://jio.example.com/ss1/index.mpd",
                "logo": "https://jio.example.com/ss1.png",
                "category": "Sports",
                "cookie": "__hdnea__=x",
                "drmScheme": "clearkey",
                "drmLicense": "kid:key",
            }
        ])
        records = parse_feed(payload, "src_json")

        assert len(records) == 1
        record = records[0]
        assert record.name == "Star Sports 1 HD"
        assert record.group == "Sports"
        assert record.stream_kind is StreamKind.DASH
        assert record.drm.license_type == "clearkey"
        assert record.headers.cookie == "__hdnea__=x"
        assert record.source_id == "src_json"

    def test_entries_without_url_dropped_siblings_kept(self):
        payload = [
            {"name": "No URL"},
            {"name": "Good", "url": "http://a.example.com/good.m3u8"},
            {"name": "Bad scheme", "url": "javascript:alert(1)"},
        ]
        records = parse_feed(payload, "src")
        assert [r.name for r in records] == ["Good"]

    def test_defaults_applied(self):
        records = parse_feed({"url": "http://a.example.com/x.ts"}, "src")
        assert records[0].name == DEFAULT_CHANNEL_NAME
        assert records[0].group == DEFAULT_GROUP
        assert records[0].guide_name == DEFAULT_CHANNEL_NAME

    def test_accepts_bytes_with_bom(self):
        payload = "\ufeff" + json.dumps([{"url": "http://a.example.com/x.m3u8"}])
        records = parse_feed(payload.encode("utf-8"), "src")
        assert len(records) == 1

    def test_invalid_json_raises(self):
        with pytest.raises(ValidationError):
            parse_feed("{not json", "src")

    def test_no_entries_raises(self):
        with pytest.raises(ValidationError):
            parse_feed({"channels": []}, "src")

    def test_only_invalid_urls_raises(self):
        with pytest.raises(ValidationError):
            parse_feed([{"url": "not-a-url"}], "src")

    def test_unsupported_payload_type_raises(self):
        with pytest.raises(ValidationError):
            parse_feed(12345, "src")
