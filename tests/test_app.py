"""Tests for the status endpoints and error rendering."""
from fastapi.testclient import TestClient

from database import create_db_engine
from main import AVAILABLE_ENDPOINTS, create_app
from schemas import ErrorResponse
from services.product_repository import ProductRepository
from storage import ConnectionState, StorageGateway

from conftest import ADMIN_USERNAME


class TestStatusEndpoints:

    def test_index_reports_durable_store(self, client):
        response = client.get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Las Valkyrie API is running!"
        assert body["version"] == "2.0.0"
        assert body["storage"] == "durable"
        assert body["database"]["status"] == "connected"
        assert "timestamp" in body

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["uptime"] >= 0


class TestErrorRendering:

    def test_unknown_route_lists_endpoints(self, client):
        response = client.get("/api/unknown")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Endpoint not found"
        assert body["availableEndpoints"] == AVAILABLE_ENDPOINTS

    def test_unsupported_method_is_an_unmatched_route(self, client):
        response = client.patch("/api/products")

        assert response.status_code == 404
        assert response.json()["error"] == "Endpoint not found"

    def test_malformed_json_body(self, client):
        response = client.post(
            "/api/products",
            content="{not json",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["error"] == "Validation Error"

    def test_unexpected_error_is_generic(self, app, monkeypatch):
        def explode(self):
            raise RuntimeError("connection string postgres://secret")

        monkeypatch.setattr(ProductRepository, "list", explode)

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/api/products")

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
        }

    def test_durable_failure_mid_call_is_generic(self, admin_password_hash, notifier):
        # Disposing an in-memory engine drops every table
        gateway = StorageGateway(create_db_engine("sqlite://"), ADMIN_USERNAME, admin_password_hash)
        app = create_app(gateway=gateway, notifier=notifier, rate_limit_enabled=False, healthcheck_interval=0)

        with TestClient(app, raise_server_exceptions=False) as client:
            gateway.engine.dispose()
            gateway._set_state(ConnectionState.CONNECTED)
            response = client.post("/api/products", json={
                "name": "AK-47", "category": "senjata", "price": 15000, "stock": 10
            })

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Database Error"
        assert body["message"] == "An unexpected error occurred"
        assert len(gateway.products) == 0
        assert gateway.is_backend_available()

    def test_validation_body_matches_documented_error_model(self, client):
        response = client.post("/api/products", json={"name": "AK-47"})

        body = response.json()
        assert body["missing"] == ["category", "price", "stock"]
        assert set(body) <= set(ErrorResponse.model_fields)
        documented = client.get("/openapi.json").json()["components"]["schemas"]["ErrorResponse"]
        assert "missing" in documented["properties"]

    def test_cors_preflight(self, client):
        response = client.options("/api/products", headers={
            "Origin": "http://localhost:3000",
            "Access-Control-Request-Method": "POST",
        })

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
