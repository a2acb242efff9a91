"""Orders API router."""
from fastapi import APIRouter, BackgroundTasks, Depends, Path
from opentelemetry import trace

from dependencies import get_order_repository
from schemas import ErrorResponse, OrderListResponse, OrderPayload, OrderResponse, OrderStatusPayload
from services.order_repository import OrderRepository

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.get("", response_model=OrderListResponse)
def list_orders(orders: OrderRepository = Depends(get_order_repository)):
    """List orders, newest first."""
    items = orders.list()
    return OrderListResponse(count=len(items), data=items)


@router.post(
    "",
    response_model=OrderResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)
def create_order(
    payload: OrderPayload,
    background_tasks: BackgroundTasks,
    orders: OrderRepository = Depends(get_order_repository)
):
    """
    Submit an order.

    The total is computed from the line items; stock of referenced products
    is decremented with the order. The Discord notification is sent after
    the response.
    """
    order = orders.create(payload, background_tasks)

    span = trace.get_current_span()
    span.set_attribute("order.id", order.id)
    span.set_attribute("order.total_price", order.total_price)

    return OrderResponse(message="Order created successfully", data=order)


@router.put(
    "/{order_id}",
    response_model=OrderResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}}
)
def update_order_status(
    payload: OrderStatusPayload,
    order_id: str = Path(..., description="Order ID"),
    orders: OrderRepository = Depends(get_order_repository)
):
    """Replace an order's status."""
    order = orders.update_status(order_id, payload.status)
    return OrderResponse(message="Order status updated successfully", data=order)
