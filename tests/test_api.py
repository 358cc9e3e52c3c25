"""
API Integration Tests

Tests for the FastAPI boundary of the paper trading engine.
Validates endpoints, error mapping and integration with the core engine.
"""

import pytest
from fastapi.testclient import TestClient

from paper_engine.api import create_app

from conftest import make_engine, make_settings


@pytest.fixture
def engine():
    return make_engine(make_settings())


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine=engine))


@pytest.fixture
def headers():
    return {"X-User-Id": "alice"}


class TestTradingEndpoints:
    """Order execution and snapshots"""

    def test_buy_and_account(self, client, headers):
        response = client.post("/trading/buy", json={"symbol": "AAPL", "shares": 100}, headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["order"]["side"] == "buy"
        assert data["order"]["price"] == 150.0
        assert data["balance"] == pytest.approx(84985.0)

        account = client.get("/trading/account", headers=headers).json()
        assert account["balance"] == pytest.approx(84985.0)
        assert account["total_value"] == pytest.approx(99985.0)
        assert account["positions"][0]["symbol"] == "AAPL"
        assert account["overview"]["position_count"] == 1

        positions = client.get("/trading/positions", headers=headers).json()["positions"]
        assert positions[0]["quantity"] == 100

    def test_sell_with_price(self, client, headers):
        client.post("/trading/buy", json={"symbol": "AAPL", "shares": 100}, headers=headers)
        response = client.post("/trading/sell", json={"symbol": "AAPL", "shares": 50, "price": 160}, headers=headers)
        assert response.status_code == 200
        assert response.json()["order"]["realized_pl"] == pytest.approx(492.0)

        orders = client.get("/trading/orders", headers=headers).json()
        assert orders["count"] == 2
        assert client.get("/trading/orders?limit=1", headers=headers).json()["orders"][0]["side"] == "sell"

    def test_missing_user_header(self, client):
        response = client.get("/trading/account")
        assert response.status_code == 422
        assert response.json()["kind"] == "validation_error"

    def test_invalid_body(self, client, headers):
        response = client.post("/trading/buy", json={"symbol": "AAPL", "shares": -1}, headers=headers)
        assert response.status_code == 422
        assert response.json()["kind"] == "validation_error"

    def test_business_errors_are_mapped(self, client, headers):
        response = client.post("/trading/sell", json={"symbol": "AAPL", "shares": 1}, headers=headers)
        assert response.status_code == 400
        assert response.json() == {"kind": "insufficient_position", "reason": "insufficient position"}

        response = client.post("/trading/buy", json={"symbol": "AAPL", "shares": 1000}, headers=headers)
        assert response.status_code == 403
        assert response.json()["kind"] == "risk_limit_exceeded"

    def test_users_are_isolated(self, client, headers):
        client.post("/trading/buy", json={"symbol": "MSFT", "shares": 10}, headers=headers)
        other = client.get("/trading/account", headers={"X-User-Id": "bob"}).json()
        assert other["balance"] == 100000.0
        assert other["positions"] == []


class TestAnalyticsEndpoints:
    """Performance and risk"""

    def test_performance(self, client, headers):
        client.post("/trading/buy", json={"symbol": "AAPL", "shares": 10}, headers=headers)
        client.post("/trading/sell", json={"symbol": "AAPL", "shares": 10, "price": 160}, headers=headers)

        data = client.get("/trading/performance?report=true", headers=headers).json()
        assert data["metrics"]["closing_trades"] == 1
        assert data["metrics"]["profit_factor"] == "inf"
        assert "PERFORMANCE REPORT" in data["report"]

    def test_empty_performance(self, client, headers):
        metrics = client.get("/trading/performance", headers=headers).json()["metrics"]
        assert metrics["sharpe_ratio"] == 0.0
        assert metrics["profit_factor"] == "inf"

    def test_risk(self, client, engine, headers):
        client.post("/trading/buy", json={"symbol": "AAPL", "shares": 10}, headers=headers)
        engine.oracle.update_price("AAPL", 160.0)
        client.get("/trading/risk", headers=headers)
        engine.oracle.update_price("AAPL", 155.0)

        data = client.get("/trading/risk", headers=headers).json()
        assert data["recommendations"]["AAPL"]["action"] == "sell"
        assert data["recommendations"]["AAPL"]["trigger"] == "trailing_stop"
        assert data["assessment"]["risk_level"] in ("low", "medium", "high")
        assert data["parameters"]["trailing_stop_percent"] == 0.03


class TestBatchEndpoints:
    """Batch submission and processing"""

    def test_batch_flow(self, client, headers):
        orders = [
            {"symbol": "AAPL", "side": "buy", "quantity": 10},
            {"symbol": "TSLA", "side": "sell", "quantity": 1},
        ]
        response = client.post("/trading/batch", json={"orders": orders}, headers=headers)
        assert response.status_code == 200
        assert response.json()["queue_size"] == 2

        result = client.post("/trading/batch/process", headers=headers).json()
        assert result["processed"] == 2
        assert result["succeeded"] == 1
        assert result["failed"] == 1
        assert result["details"][1]["error"]["kind"] == "insufficient_position"

        assert client.get("/trading/batch", headers=headers).json()["queue_size"] == 0

    def test_invalid_batch_is_rejected_whole(self, client, headers):
        orders = [
            {"symbol": "AAPL", "side": "buy", "quantity": 10},
            {"symbol": "AAPL", "side": "buy", "quantity": -10},
        ]
        response = client.post("/trading/batch", json={"orders": orders}, headers=headers)
        assert response.status_code == 422
        assert response.json()["kind"] == "validation_error"
        assert client.get("/trading/batch", headers=headers).json()["queue_size"] == 0

    def test_cancel_when_idle(self, client, headers):
        assert client.post("/trading/batch/cancel", headers=headers).json() == {"cancel_requested": False}


class TestBacktestAndHealth:

    def test_backtest_run(self, client, engine):
        data = [
            {"timestamp": "2025-01-01", "symbol": "AAPL", "price": 95.0, "moving_average": 100.0},
            {"timestamp": "2025-01-02", "symbol": "AAPL", "price": 106.0, "moving_average": 100.0},
        ]
        response = client.post("/backtest/run", json={"strategy": "mean_reversion", "data": data})
        assert response.status_code == 200
        result = response.json()
        assert len(result["orders"]) == 2
        assert result["performance"]["winning_trades"] == 1
        assert "BACKTEST" in result["report"]

        # Live accounts are untouched
        assert engine.account_count == 0

    def test_backtest_unknown_strategy(self, client):
        data = [{"timestamp": "2025-01-01", "price": 1.0}]
        response = client.post("/backtest/run", json={"strategy": "nope", "data": data})
        assert response.status_code == 422

    def test_backtest_invalid_ma_period(self, client):
        data = [{"timestamp": "2025-01-01", "price": 1.0}]
        response = client.post("/backtest/run", json={"strategy": "mean_reversion", "data": data,
                                                        "config": {"ma_period": "abc"}})
        assert response.status_code == 422
        assert response.json()["kind"] == "validation_error"

    def test_strategies(self, client):
        assert "momentum" in client.get("/backtest/strategies").json()["strategies"]

    def test_health(self, client):
        response = client.get("/health/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["engine_status"]["store"] == "InMemoryStore"
