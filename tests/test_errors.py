"""
Tests for the batch ErrorHandler.
"""

from unittest.mock import MagicMock

import pytest

from app.core import errors
from app.core.errors import ConfigurationError, ErrorHandler, UpstreamUnavailable


@pytest.fixture
def capture(monkeypatch):
    mock = MagicMock(return_value="evt-1")
    monkeypatch.setattr(errors, "capture_exception", mock)
    return mock


class TestErrorHandler:
    def test_success_is_not_failed(self, capture):
        with ErrorHandler("refresh_asset_price") as handler:
            pass

        assert handler.failed is False
        capture.assert_not_called()

    def test_failure_is_captured_and_suppressed(self, capture):
        with ErrorHandler("refresh_asset_price", context={"asset_id": 7}) as handler:
            raise UpstreamUnavailable("tcgplayer", "down")

        assert handler.failed is True
        assert handler.event_id == "evt-1"
        kwargs = capture.call_args.kwargs
        assert kwargs["context"] == {"operation": "refresh_asset_price", "asset_id": 7}
        assert kwargs["fingerprint"] == ["refresh_asset_price", "UpstreamUnavailable"]

    def test_configuration_error_propagates(self, capture):
        with pytest.raises(ConfigurationError):
            with ErrorHandler("refresh_asset_price"):
                raise ConfigurationError("JUSTTCG_API_KEY")

        capture.assert_not_called()
