# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Tests for TransportResponse."""

from restbucket.types.response import TransportResponse


class TestTransportResponse:
    """Tests for TransportResponse header access and status helpers."""

    def test_headers_lowercased(self):
        """Header names are stored lowercase."""
        response = TransportResponse(200, {"X-RateLimit-Bucket": "abc"})
        assert response.headers == {"x-ratelimit-bucket": "abc"}

    def test_header_lookup_is_case_insensitive(self):
        """header() matches names regardless of case."""
        response = TransportResponse(200, {"Retry-After": "1.5"})
        assert response.header("retry-after") == "1.5"
        assert response.header("RETRY-AFTER") == "1.5"
        assert response.header("missing", "default") == "default"

    def test_from_mapping(self):
        """from_mapping copies any mapping."""
        response = TransportResponse.from_mapping(204, None, None)
        assert response.status == 204
        assert response.headers == {}
        assert response.body is None
