"""
Unit Tests for the Metrics Abstraction Layer

Covers the MetricsClient implementations (Telegraf, NoOp), backend selection
through create_metrics_client, and interface compatibility between clients.
"""

import pytest
from unittest.mock import AsyncMock, Mock, patch

from net.cloudmon.app.metrics import (
    MetricsClient,
    NoOpMetricsClient,
    TelegrafCompatibilityClient,
    create_metrics_client,
)


class TestMetricsClientInterface:
    def test_interface_is_abstract(self):
        """MetricsClient should be abstract and not instantiable."""
        with pytest.raises(TypeError):
            MetricsClient()


class TestNoOpMetricsClient:
    @pytest.fixture
    def noop_client(self):
        return NoOpMetricsClient()

    def test_noop_calls(self, noop_client):
        """NoOp operations should not raise exceptions."""
        noop_client.increment("test.counter", 1, {"tag": "value"})
        noop_client.increment("test.counter")
        noop_client.gauge("test.gauge", 42.5)
        noop_client.timer("test.timer", 0.001, {"tag": "value"})

    async def test_noop_connect_and_close(self, noop_client):
        await noop_client.connect()
        await noop_client.close()


class TestTelegrafCompatibilityClient:
    @pytest.fixture
    def mock_telegraf_client(self):
        """Create a mock TelegrafStatsdClient."""
        mock = Mock()
        mock.connect = AsyncMock()
        mock.close = AsyncMock()
        return mock

    @pytest.fixture
    def telegraf_client(self, mock_telegraf_client):
        return TelegrafCompatibilityClient(mock_telegraf_client)

    def test_telegraf_increment(self, telegraf_client, mock_telegraf_client):
        telegraf_client.increment("test.counter", 3, {"method": "POST"})

        mock_telegraf_client.increment.assert_called_once_with(
            "test.counter", 3, tag_dict={"method": "POST"}
        )

    def test_telegraf_increment_no_tags(self, telegraf_client, mock_telegraf_client):
        """None tag_dict is passed on as an empty dict."""
        telegraf_client.increment("test.counter")

        mock_telegraf_client.increment.assert_called_once_with(
            "test.counter", 1, tag_dict={}
        )

    def test_telegraf_gauge(self, telegraf_client, mock_telegraf_client):
        telegraf_client.gauge("test.gauge", 42.0, {"status": "ok"})

        mock_telegraf_client.gauge.assert_called_once_with(
            "test.gauge", 42.0, tag_dict={"status": "ok"}
        )

    def test_telegraf_timer(self, telegraf_client, mock_telegraf_client):
        telegraf_client.timer("test.timer", 1.234, {"endpoint": "/api"})

        mock_telegraf_client.timer.assert_called_once_with(
            "test.timer", 1.234, tag_dict={"endpoint": "/api"}
        )

    async def test_telegraf_connect(self, telegraf_client, mock_telegraf_client):
        await telegraf_client.connect()
        mock_telegraf_client.connect.assert_awaited_once()

    async def test_telegraf_close(self, telegraf_client, mock_telegraf_client):
        await telegraf_client.close()
        mock_telegraf_client.close.assert_awaited_once()

    async def test_telegraf_close_error_is_logged(
        self, telegraf_client, mock_telegraf_client, caplog
    ):
        mock_telegraf_client.close.side_effect = OSError("socket gone")

        await telegraf_client.close()

        assert "Error closing Telegraf client" in caplog.text


class TestMetricsClientFactory:
    def test_factory_creates_noop_client(self):
        assert isinstance(create_metrics_client("none"), NoOpMetricsClient)

    @patch("net.cloudmon.app.metrics.TelegrafStatsdClient")
    def test_factory_creates_telegraf_client(self, mock_telegraf_class):
        mock_instance = Mock()
        mock_telegraf_class.return_value = mock_instance

        client = create_metrics_client("telegraf", host="localhost", port=8125, debug=True)

        assert isinstance(client, TelegrafCompatibilityClient)
        assert client.client is mock_instance
        mock_telegraf_class.assert_called_once_with(
            host="localhost", port=8125, debug=True
        )

    def test_factory_uses_preconfigured_telegraf_client(self):
        mock_client = Mock()

        client = create_metrics_client("telegraf", telegraf_client=mock_client)

        assert isinstance(client, TelegrafCompatibilityClient)
        assert client.client is mock_client

    def test_factory_handles_invalid_backend(self):
        with pytest.raises(ValueError, match="Invalid metrics backend: invalid"):
            create_metrics_client("invalid")

    @pytest.mark.parametrize("name", ["NONE", "None", "none"])
    def test_factory_is_case_insensitive(self, name):
        assert isinstance(create_metrics_client(name), NoOpMetricsClient)


class TestMetricsCompatibility:
    @pytest.fixture(params=["noop", "telegraf"])
    def any_metrics_client(self, request):
        if request.param == "noop":
            return NoOpMetricsClient()
        return TelegrafCompatibilityClient(Mock())

    def test_all_clients_implement_interface(self, any_metrics_client):
        assert isinstance(any_metrics_client, MetricsClient)

    def test_all_clients_support_operations(self, any_metrics_client):
        any_metrics_client.increment("test.counter")
        any_metrics_client.increment("test.counter", 5, {"tag": "value"})
        any_metrics_client.gauge("test.gauge", 3.14, {"tag": "value"})
        any_metrics_client.timer("test.timer", 0.001)
