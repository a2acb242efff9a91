"""Dependency injection for repositories and services."""
from fastapi import Request

from services.admin_service import AdminService
from services.notifier import OrderNotifier
from services.order_repository import OrderRepository
from services.product_repository import ProductRepository
from storage import StorageGateway


def get_gateway(request: Request) -> StorageGateway:
    """Get the storage gateway from app state."""
    return request.app.state.gateway


def get_notifier(request: Request) -> OrderNotifier:
    """Get the order notifier from app state."""
    return request.app.state.notifier


def get_product_repository(request: Request) -> ProductRepository:
    """Get product repository instance."""
    return ProductRepository(get_gateway(request))


def get_order_repository(request: Request) -> OrderRepository:
    """Get order repository instance."""
    return OrderRepository(get_gateway(request), get_notifier(request))


def get_admin_service(request: Request) -> AdminService:
    """Get admin service instance."""
    return AdminService(get_gateway(request))
