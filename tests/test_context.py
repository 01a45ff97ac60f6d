"""
Tests for client context resolution.
"""

from datetime import datetime, timezone

from sharegate.access import ClientContextResolver


class TestClientContextResolver:
    """Test IP, user agent and timestamp resolution."""

    def test_forwarded_for_wins(self):
        request = ClientContextResolver.resolve(
            headers={"X-Forwarded-For": " 10.1.2.3 , 172.16.0.1", "User-Agent": "curl/8.0"},
            remote_addr="172.16.0.1",
        )
        assert request.client_ip == "10.1.2.3"
        assert request.user_agent == "curl/8.0"

    def test_header_names_case_insensitive(self):
        request = ClientContextResolver.resolve(
            headers={"x-forwarded-for": "192.168.1.5", "user-agent": "agent"},
        )
        assert request.client_ip == "192.168.1.5"
        assert request.user_agent == "agent"

    def test_falls_back_to_remote_addr(self):
        request = ClientContextResolver.resolve(headers={}, remote_addr="127.0.0.1")
        assert request.client_ip == "127.0.0.1"
        assert request.user_agent is None

    def test_empty_forwarded_for(self):
        assert ClientContextResolver.client_ip({"X-Forwarded-For": ""}, "10.0.0.9") == "10.0.0.9"

    def test_no_headers_no_addr(self):
        request = ClientContextResolver.resolve(headers=None)
        assert request.client_ip is None

    def test_timestamp(self):
        at = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)
        assert ClientContextResolver.resolve({}, timestamp=at).timestamp == at

    def test_default_timestamp_is_aware(self):
        assert ClientContextResolver.resolve({}).timestamp.tzinfo is not None
