"""Tests for utils/sanitize.py."""

from __future__ import annotations

from reconpilot.utils.sanitize import sanitize_error


class TestSanitizeError:
    def test_empty(self):
        assert sanitize_error("") == ""

    def test_anthropic_key(self):
        assert "sk-ant-" not in sanitize_error("bad key sk-ant-api03-abcdef")

    def test_bearer_token(self):
        assert sanitize_error("Authorization: Bearer abc.def") == "Authorization: Bearer [REDACTED]"

    def test_query_key(self):
        out = sanitize_error("GET https://api.shodan.io/search?key=s3cret&query=x failed")
        assert "s3cret" not in out
        assert "query=x" in out

    def test_literal_secrets(self):
        out = sanitize_error("token abcd1234 rejected", secrets=["abcd1234", None, "ab"])
        assert out == "token [REDACTED_KEY] rejected"

    def test_home_path(self, monkeypatch):
        monkeypatch.delenv("USERPROFILE", raising=False)
        monkeypatch.setenv("HOME", "/home/alice")
        assert sanitize_error("cannot read /home/alice/.config") == "cannot read [USER_HOME]/.config"
