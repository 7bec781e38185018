"""Tests for failure classification."""

import pytest

from offline_queue.services.errors import (
    TransientNetworkError,
    TransientServerError,
    TransportError,
    ValidationError,
    classify_failure,
)


class TestClassifyFailure:

    def test_no_response_is_network(self):
        assert isinstance(classify_failure(TransportError("Network Error")), TransientNetworkError)

    @pytest.mark.parametrize("code", ["timeout", "ETIMEDOUT", "ECONNABORTED", "connection_refused", "ECONNREFUSED"])
    def test_network_codes(self, code):
        error = TransportError("boom", response_received=True, status=400, code=code)
        assert isinstance(classify_failure(error), TransientNetworkError)

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_5xx_is_server(self, status):
        error = TransportError("boom", response_received=True, status=status, code="server_error")
        classified = classify_failure(error)
        assert isinstance(classified, TransientServerError)
        assert classified.status == status
        assert classified.is_transient

    @pytest.mark.parametrize("status", [400, 401, 404, 409, 422])
    def test_4xx_is_validation(self, status):
        error = TransportError("bad", response_received=True, status=status, code="client_error")
        classified = classify_failure(error)
        assert isinstance(classified, ValidationError)
        assert not classified.is_transient

    def test_foreign_exception_is_network(self):
        """Anything without a response (e.g. OSError from a socket) counts as network."""
        classified = classify_failure(ConnectionResetError("reset by peer"))
        assert isinstance(classified, TransientNetworkError)
        assert classified.code == "ConnectionResetError"

    def test_already_classified_passes_through(self):
        error = ValidationError("bad", status=400)
        assert classify_failure(error) is error
