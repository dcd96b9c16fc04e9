"""Tests for secret redaction utility."""

from pinegate.utils.redaction import redact_for_logging, sanitize_error_message


class TestRedactForLogging:

    def test_redacts_session_cookies(self):
        data = {"sessionid": "abc", "sessionid_sign": "def", "username": "seller1"}
        result = redact_for_logging(data)
        assert result["sessionid"] == "***REDACTED***"
        assert result["sessionid_sign"] == "***REDACTED***"
        assert result["username"] == "seller1"

    def test_preserves_non_sensitive(self):
        data = {"pine_id": "PUB;abc", "status": "ok", "attempts": 2}
        assert redact_for_logging(data) == data

    def test_handles_nested_dict(self):
        data = {"response": {"auth_token": "tok123", "status": 200}}
        result = redact_for_logging(data)
        assert result["response"]["auth_token"] == "***REDACTED***"
        assert result["response"]["status"] == 200

    def test_container_keys_fully_redacted(self):
        data = {"headers": {"User-Agent": "x"}, "cookies": ["a", "b"]}
        result = redact_for_logging(data)
        assert result == {"headers": "***REDACTED***", "cookies": "***REDACTED***"}

    def test_list_of_dicts(self):
        data = {"items": [{"password": "p"}, {"name": "n"}, "plain"]}
        result = redact_for_logging(data)
        assert result["items"] == [{"password": "***REDACTED***"}, {"name": "n"}, "plain"]

    def test_does_not_mutate_input(self):
        data = {"secret": "s"}
        redact_for_logging(data)
        assert data == {"secret": "s"}

    def test_custom_patterns(self):
        result = redact_for_logging({"buyer": "x", "secret": "y"}, frozenset({"buyer"}))
        assert result == {"buyer": "***REDACTED***", "secret": "y"}


class TestSanitizeErrorMessage:

    def test_none_passes_through(self):
        assert sanitize_error_message(None) is None

    def test_cookie_header(self):
        msg = "request failed\nCookie: sessionid=abc; sessionid_sign=def\nstatus 403"
        result = sanitize_error_message(msg)
        assert "abc" not in result
        assert "def" not in result
        assert "status 403" in result

    def test_key_value_pairs(self):
        result = sanitize_error_message("sessionid=abc123, token: xyz")
        assert "abc123" not in result
        assert "xyz" not in result

    def test_json_style(self):
        result = sanitize_error_message('{"sessionid_sign": "v2:abc", "ok": true}')
        assert "v2:abc" not in result
        assert '"ok": true' in result

    def test_plain_message_unchanged(self):
        assert sanitize_error_message("Username not found") == "Username not found"

    def test_truncates(self):
        result = sanitize_error_message("x" * 5000, max_length=100)
        assert len(result) == 100
        assert result.endswith("...")
