"""Tests for the adapter helpers, the raw adapter and the ntfy adapter."""

import json

import pytest
from multidict import CIMultiDict, MultiDict

from hookfeed.adapters import NtfyAdapter, RawAdapter, create_adapter
from hookfeed.adapters.base import InboundRequest
from hookfeed.adapters.utils import (
    REDACTED,
    copy_body,
    copy_values,
    first_present,
    parse_bool,
    resolve_priority,
    sanitize_secrets,
    split_and_trim,
)
from hookfeed.errors import AdapterParseError
from hookfeed.models import parse_priority


def make_request(body=b"", headers=None, query=None, route_key="alerts"):
    if isinstance(body, (dict, list)):
        body = json.dumps(body).encode()
    elif isinstance(body, str):
        body = body.encode()
    return InboundRequest(
        body=body,
        headers=CIMultiDict(headers or {}),
        query=MultiDict(query or {}),
        route_key=route_key,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestPriorityParsing:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("min", 1),
            ("low", 2),
            ("default", 3),
            ("high", 4),
            ("max", 5),
            ("urgent", 5),
            ("HIGH", 4),
            ("1", 1),
            ("5", 5),
            ("0", 1),
            ("10", 5),
            ("-3", 1),
            ("", 3),
            (" 4 ", 4),
        ],
    )
    def test_valid(self, text, expected):
        assert parse_priority(text) == expected

    def test_invalid_raises(self):
        with pytest.raises(ValueError):
            parse_priority("garbage")

    def test_resolve_degrades_with_warning(self):
        priority, warning = resolve_priority("garbage")
        assert priority == 3
        assert "garbage" in warning

    def test_resolve_valid_has_no_warning(self):
        assert resolve_priority("urgent") == (5, None)


class TestFieldHelpers:
    def test_split_and_trim(self):
        assert split_and_trim(" a, b ,,c ") == ["a", "b", "c"]
        assert split_and_trim("") == []

    @pytest.mark.parametrize("text", ["true", "1", "yes", "ON"])
    def test_parse_bool_true(self, text):
        assert parse_bool(text) == (True, None)

    @pytest.mark.parametrize("text", ["false", "0", "no", "off", ""])
    def test_parse_bool_false(self, text):
        assert parse_bool(text) == (False, None)

    def test_parse_bool_invalid(self):
        flag, warning = parse_bool("maybe")
        assert flag is False
        assert warning

    def test_first_present_skips_empty(self):
        assert first_present([lambda: None, lambda: "", lambda: [], lambda: "x"]) == "x"
        assert first_present([lambda: None]) is None


class TestCapture:
    def test_copy_body_empty(self):
        assert copy_body(b"") == {}

    def test_copy_body_json(self):
        assert copy_body(b'{"a": [1, 2]}') == {"a": [1, 2]}

    def test_copy_body_text_wrapped(self):
        assert copy_body(b"plain text") == {"$body": "plain text"}

    def test_copy_body_too_deep_wrapped(self):
        body = b"[" * 100_000
        assert copy_body(body) == {"$body": body.decode()}


    def test_copy_values_single_and_repeated(self):
        query = MultiDict([("a", "1"), ("b", "2"), ("b", "3")])
        assert copy_values(query) == {"a": "1", "b": ["2", "3"]}

    def test_sanitize_authorization_keeps_scheme(self):
        assert sanitize_secrets("Authorization", "Bearer abc123") == f"Bearer {REDACTED}"

    def test_sanitize_secret_params(self):
        assert sanitize_secrets("token", "abc") == REDACTED
        assert sanitize_secrets("Cookie", "session=1") == REDACTED
        assert sanitize_secrets("X-Title", "hello") == "hello"

    def test_copy_values_redacts(self):
        headers = CIMultiDict({"Authorization": "Basic Zm9v", "X-Title": "hi"})
        captured = copy_values(headers, sanitize_secrets)
        assert captured == {"Authorization": f"Basic {REDACTED}", "X-Title": "hi"}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class TestRegistry:
    def test_create_known(self):
        assert isinstance(create_adapter("raw"), RawAdapter)
        assert isinstance(create_adapter("NTFY"), NtfyAdapter)

    def test_unknown_adapter(self):
        with pytest.raises(AdapterParseError):
            create_adapter("slack")

    def test_fresh_instance_per_call(self):
        assert create_adapter("raw") is not create_adapter("raw")


# ---------------------------------------------------------------------------
# Raw adapter
# ---------------------------------------------------------------------------

class TestRawAdapter:
    def test_structured_body(self):
        adapter = RawAdapter()
        adapter.unmarshal_request(make_request(
            {"title": "Deploy", "message": "done", "priority": 4, "tags": ["ci"]},
            headers={"X-Source": "ci"},
            query={"env": "prod"},
        ))
        payload = adapter.as_canonical_payload()
        assert payload.title == "Deploy"
        assert payload.message == "done"
        assert payload.priority == 4
        assert payload.tags == ["ci"]
        assert payload.raw_headers == {"X-Source": "ci"}
        assert payload.raw_query_params == {"env": "prod"}
        assert payload.raw_request["title"] == "Deploy"
        assert adapter.warnings == []

    def test_caller_values_not_overwritten(self):
        adapter = RawAdapter()
        adapter.unmarshal_request(make_request(
            {"message": "x", "rawHeaders": {"custom": "yes"}, "metadata": {"k": 1}},
            headers={"X-Other": "1"},
        ))
        payload = adapter.as_canonical_payload()
        assert payload.raw_headers == {"custom": "yes"}
        assert payload.metadata == {"k": 1}

    def test_invalid_json_fails(self):
        with pytest.raises(AdapterParseError):
            RawAdapter().unmarshal_request(make_request("not json"))

    def test_empty_body_fails(self):
        with pytest.raises(AdapterParseError):
            RawAdapter().unmarshal_request(make_request(b""))

    def test_non_object_fails(self):
        with pytest.raises(AdapterParseError):
            RawAdapter().unmarshal_request(make_request([1, 2]))

    def test_priority_clamped(self):
        adapter = RawAdapter()
        adapter.unmarshal_request(make_request({"priority": 9}))
        assert adapter.as_canonical_payload().priority == 5

    def test_bad_priority_warns(self):
        adapter = RawAdapter()
        adapter.unmarshal_request(make_request({"priority": "garbage"}))
        assert adapter.as_canonical_payload().priority == 3
        assert adapter.warnings

    @pytest.mark.parametrize("body", [b'{"priority": 1e999}', b'{"priority": -1e999}', b'{"priority": NaN}'])
    def test_non_finite_priority_defaults(self, body):
        adapter = RawAdapter()
        adapter.unmarshal_request(make_request(body))
        assert adapter.as_canonical_payload().priority == 3
        assert adapter.warnings

    def test_huge_integer_priority_clamped(self):
        adapter = RawAdapter()
        adapter.unmarshal_request(make_request(b'{"priority": 1' + b"0" * 400 + b"}"))
        assert adapter.as_canonical_payload().priority == 5
        assert not adapter.warnings

    def test_deeply_nested_body_fails(self):
        with pytest.raises(AdapterParseError):
            RawAdapter().unmarshal_request(make_request(b"[" * 100_000 + b"]" * 100_000))



# ---------------------------------------------------------------------------
# ntfy adapter
# ---------------------------------------------------------------------------

def ntfy(**kwargs):
    adapter = NtfyAdapter()
    adapter.unmarshal_request(make_request(**kwargs))
    return adapter, adapter.as_canonical_payload()


class TestNtfyAdapter:
    def test_precedence_header_over_query_over_body(self):
        _, payload = ntfy(
            body={"title": "body", "priority": 2},
            headers={"Content-Type": "application/json", "X-Title": "header"},
            query={"title": "query", "p": "high"},
        )
        assert payload.title == "header"
        assert payload.priority == 4

    def test_query_over_body(self):
        _, payload = ntfy(
            body={"title": "body"},
            headers={"Content-Type": "application/json"},
            query={"t": "query"},
        )
        assert payload.title == "query"

    def test_body_used_when_json(self):
        _, payload = ntfy(
            body={"title": "T", "message": "M", "tags": ["a", "b"], "priority": 5},
            headers={"Content-Type": "application/json; charset=utf-8"},
        )
        assert payload.title == "T"
        assert payload.message == "M"
        assert payload.tags == ["a", "b"]
        assert payload.priority == 5

    def test_body_ignored_without_json_content_type(self):
        _, payload = ntfy(body='{"title": "T"}', headers={"Content-Type": "text/plain"})
        assert payload.title == ""
        assert payload.message == '{"title": "T"}'

    def test_plain_body_becomes_message(self):
        _, payload = ntfy(body="Backup done", headers={"X-Title": "Backup"})
        assert payload.title == "Backup"
        assert payload.message == "Backup done"
        assert payload.raw_request == {"$body": "Backup done"}

    def test_defaults(self):
        _, payload = ntfy(body="hi")
        assert payload.priority == 3
        assert payload.tags == []
        assert payload.metadata == {}

    def test_plain_header_aliases(self):
        _, payload = ntfy(headers={"Title": "t", "Message": "m", "Priority": "min"})
        assert (payload.title, payload.message, payload.priority) == ("t", "m", 1)

    def test_invalid_priority_warns_but_succeeds(self):
        adapter, payload = ntfy(body="x", headers={"X-Priority": "garbage"})
        assert payload.priority == 3
        assert any("garbage" in w for w in adapter.warnings)

    @pytest.mark.parametrize("body", [b'{"priority": 1e999}', b'{"priority": NaN}'])
    def test_non_finite_body_priority_warns(self, body):
        adapter, payload = ntfy(body=body, headers={"Content-Type": "application/json"})
        assert payload.priority == 3
        assert any("priority" in w for w in adapter.warnings)

    def test_deeply_nested_json_body_kept_as_text(self):
        body = b"[" * 100_000 + b"]" * 100_000
        adapter, payload = ntfy(body=body, headers={"Content-Type": "application/json"})
        assert adapter.warnings
        assert payload.raw_request == {"$body": body.decode()}


    def test_invalid_markdown_warns(self):
        adapter, payload = ntfy(body="x", query={"md": "perhaps"})
        assert "markdown" not in payload.metadata
        assert adapter.warnings

    def test_metadata_only_non_defaults(self):
        _, payload = ntfy(
            body="x",
            headers={
                "X-Tags": "a, b",
                "X-Click": "https://example.com",
                "X-Markdown": "yes",
            },
        )
        assert payload.metadata == {
            "tags": ["a", "b"],
            "click": "https://example.com",
            "markdown": True,
        }

    def test_actions_from_body(self):
        actions = [{"action": "view", "label": "Open", "url": "https://example.com"}]
        _, payload = ntfy(
            body={"message": "m", "actions": actions},
            headers={"Content-Type": "application/json"},
        )
        assert payload.metadata == {"actions": actions}

    def test_topic_comes_from_path_only(self):
        _, payload = ntfy(
            body={"topic": "other", "message": "m"},
            headers={"Content-Type": "application/json"},
            route_key="alerts",
        )
        assert payload.feed_id == "alerts"

    def test_zero_and_false_body_values_are_unset(self):
        _, payload = ntfy(
            body={"message": "m", "priority": 0, "markdown": False},
            headers={"Content-Type": "application/json"},
        )
        assert payload.priority == 3
        assert payload.metadata == {}

    def test_malformed_json_body_warns(self):
        adapter, payload = ntfy(body="{oops", headers={"Content-Type": "application/json"})
        assert adapter.warnings
        assert payload.message == "{oops"

    def test_secrets_redacted_in_capture(self):
        _, payload = ntfy(
            body="x",
            headers={"Authorization": "Bearer tk_123"},
            query={"token": "abc", "t": "title"},
        )
        assert payload.raw_headers["Authorization"] == f"Bearer {REDACTED}"
        assert payload.raw_query_params == {"token": REDACTED, "t": "title"}
