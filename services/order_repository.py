"""Order repository."""
import logging
import math
from collections import OrderedDict
from typing import Dict, List, Optional

from fastapi import BackgroundTasks
from opentelemetry import trace
from sqlalchemy import select, update

from errors import InsufficientStockError, NotFoundError, ValidationError
from models import QUANTITY_MAX, Order, Product, as_utc, utcnow
from monitoring import (
    orders_created_counter,
    order_amount_histogram,
    insufficient_stock_counter,
    fallback_operations_counter
)
from schemas import LineItem, LineItemPayload, OrderPayload, OrderRecord, ProductRecord
from services.notifier import OrderNotifier
from services.product_repository import product_to_record
from storage import StorageGateway, parse_key

logger = logging.getLogger(__name__)

DEFAULT_STATUS = "pending"


def compute_total(items: List[LineItem]) -> float:
    """Authoritative order total: sum of quantity x price over line items."""
    return round(sum(item.subtotal for item in items), 2)


def _to_record(order: Order) -> OrderRecord:
    return OrderRecord(
        id=str(order.id),
        customer_name=order.customer_name,
        discord_id=order.discord_id or "",
        additional_info=order.additional_info or "",
        items=[LineItem.model_validate(item) for item in order.items],
        total_price=order.total_price,
        status=order.status,
        created_at=as_utc(order.created_at),
        updated_at=as_utc(order.updated_at),
    )


def requested_quantities(items: List[LineItemPayload]) -> Dict[str, int]:
    """Total quantity per referenced product id, in first-seen order."""
    requested: Dict[str, int] = OrderedDict()
    for item in items:
        if item.product_id:
            requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
    return requested


def _snapshot(product: ProductRecord, quantity: int) -> LineItem:
    return LineItem(
        product_id=product.id,
        name=product.name,
        category=product.category,
        price=product.price,
        quantity=quantity,
    )


class OrderRepository:
    """Create, list and status updates over orders."""

    def __init__(self, gateway: StorageGateway, notifier: Optional[OrderNotifier] = None):
        """
        Initialize order repository.

        Args:
            gateway: Storage gateway
            notifier: Order notifier scheduled after each created order
        """
        self.gateway = gateway
        self.notifier = notifier
        self.tracer = trace.get_tracer(__name__)

    def validate(self, payload: OrderPayload) -> List[LineItemPayload]:
        """
        Check the order body.

        Returns:
            The line items, each with a positive quantity and either a product
            reference or a name/price snapshot

        Raises:
            ValidationError: If the customer name or items are missing or malformed
        """
        missing = []
        if not (payload.customer_name or "").strip():
            missing.append("customerName")
        if not payload.items:
            missing.append("items")
        if missing:
            raise ValidationError("Missing required fields", required=["customerName", "items"], missing=missing)

        messages = []
        for position, item in enumerate(payload.items, start=1):
            if item.quantity is None or item.quantity <= 0:
                messages.append(f"Item {position}: quantity must be a positive integer")
            elif item.quantity > QUANTITY_MAX:
                messages.append(f"Item {position}: quantity cannot exceed {QUANTITY_MAX}")
            if item.product_id:
                continue
            if not (item.name or "").strip():
                messages.append(f"Item {position}: name is required without productId")
            if item.price is None:
                messages.append(f"Item {position}: price is required without productId")
            elif not math.isfinite(item.price) or item.price < 0:
                messages.append(f"Item {position}: price cannot be negative")
        if messages:
            raise ValidationError("Invalid order items", messages=messages)
        return payload.items

    def list(self) -> List[OrderRecord]:
        """All orders, newest first."""
        if self.gateway.is_backend_available():
            with self.gateway.session() as db:
                stmt = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
                return [_to_record(order) for order in db.execute(stmt).scalars()]

        fallback_operations_counter.add(1, {"collection": "orders", "operation": "list"})
        return self.gateway.orders.all()[::-1]

    def create(self, payload: OrderPayload, background_tasks: Optional[BackgroundTasks] = None) -> OrderRecord:
        """
        Persist an order and decrement stock as one atomic unit.

        Line items referencing a product take their name, price and category
        from that product. The total is always computed here; a client total
        is ignored. When ``background_tasks`` is given the notifier runs after
        the response has been sent.

        Raises:
            ValidationError: If the body is missing fields or malformed
            NotFoundError: If a referenced product does not exist
            InsufficientStockError: If a quantity exceeds current stock
        """
        items = self.validate(payload)

        if self.gateway.is_backend_available():
            backend = "durable"
            record = self._create_durable(payload, items)
        else:
            backend = "fallback"
            fallback_operations_counter.add(1, {"collection": "orders", "operation": "create"})
            record = self._create_fallback(payload, items)

        orders_created_counter.add(1, {"backend": backend})
        order_amount_histogram.record(record.total_price, {"backend": backend})
        logger.info("Order created", extra={
            "order_id": record.id,
            "customer_name": record.customer_name,
            "item_count": len(record.items),
            "total_price": record.total_price,
            "backend": backend
        })

        if self.notifier is not None and background_tasks is not None:
            background_tasks.add_task(self.notifier.notify, record)
        return record

    def _create_durable(self, payload: OrderPayload, items: List[LineItemPayload]) -> OrderRecord:
        with self.tracer.start_as_current_span("db.transaction.create_order") as db_span:
            db_span.set_attribute("db.operation", "INSERT")
            db_span.set_attribute("db.table", "orders")

            with self.gateway.session() as db:
                requested: Dict[int, int] = {}
                for product_id, quantity in requested_quantities(items).items():
                    key = parse_key(product_id)
                    if key is None:
                        raise NotFoundError(f"Product not found: {product_id}")
                    requested[key] = requested.get(key, 0) + quantity

                # Ascending key order so concurrent orders lock product rows in the same sequence
                current: Dict[int, ProductRecord] = {}
                for key in sorted(requested):
                    quantity = requested[key]
                    decremented = 0
                    if quantity <= QUANTITY_MAX:
                        decremented = db.execute(
                            update(Product)
                            .where(Product.id == key, Product.stock >= quantity)
                            .values(stock=Product.stock - quantity, updated_at=utcnow())
                        ).rowcount
                    product = db.get(Product, key, populate_existing=True)
                    if product is None:
                        raise NotFoundError(f"Product not found: {key}")
                    if decremented == 0:
                        self._reject_stock(product.name, quantity, product.stock)
                    current[key] = product_to_record(product)

                line_items = [
                    _snapshot(current[parse_key(item.product_id)], item.quantity) if item.product_id
                    else self._client_snapshot(item)
                    for item in items
                ]

                now = utcnow()
                order = Order(
                    customer_name=payload.customer_name.strip(),
                    discord_id=(payload.discord_id or "").strip(),
                    additional_info=(payload.additional_info or "").strip(),
                    items=[line.model_dump() for line in line_items],
                    total_price=compute_total(line_items),
                    status=DEFAULT_STATUS,
                    created_at=now,
                    updated_at=now,
                )
                db.add(order)
                db.flush()
                db_span.set_attribute("order.id", order.id)
                return _to_record(order)

    def _create_fallback(self, payload: OrderPayload, items: List[LineItemPayload]) -> OrderRecord:
        products = self.gateway.products
        orders = self.gateway.orders

        # Lock order: products, then orders
        with products.lock, orders.lock:
            requested = requested_quantities(items)

            current: Dict[str, ProductRecord] = {}
            for product_id, quantity in requested.items():
                product = products.find(product_id)
                if product is None:
                    raise NotFoundError(f"Product not found: {product_id}")
                if product.stock < quantity:
                    self._reject_stock(product.name, quantity, product.stock)
                current[product_id] = product

            line_items = [
                _snapshot(current[item.product_id], item.quantity) if item.product_id
                else self._client_snapshot(item)
                for item in items
            ]

            now = utcnow()
            for product_id, quantity in requested.items():
                product = current[product_id]
                products.replace(product_id, product.model_copy(update={
                    "stock": product.stock - quantity,
                    "updated_at": now
                }))

            return orders.insert(OrderRecord(
                id=self.gateway.next_id(),
                customer_name=payload.customer_name.strip(),
                discord_id=(payload.discord_id or "").strip(),
                additional_info=(payload.additional_info or "").strip(),
                items=line_items,
                total_price=compute_total(line_items),
                status=DEFAULT_STATUS,
                created_at=now,
                updated_at=now,
            ))

    @staticmethod
    def _client_snapshot(item: LineItemPayload) -> LineItem:
        return LineItem(
            name=item.name.strip(),
            category=(item.category or "").strip() or None,
            price=float(item.price),
            quantity=item.quantity,
        )

    @staticmethod
    def _reject_stock(product_name: str, requested: int, available: int) -> None:
        insufficient_stock_counter.add(1)
        logger.warning("Order rejected for insufficient stock", extra={
            "product_name": product_name,
            "requested": requested,
            "available": available
        })
        raise InsufficientStockError(
            f"Insufficient stock for {product_name}",
            product=product_name,
            requested=requested,
            available=available
        )

    def update_status(self, order_id: str, status: Optional[str]) -> OrderRecord:
        """
        Replace an order's status. Any non-empty value is accepted.

        Raises:
            ValidationError: If status is missing
            NotFoundError: If the id does not resolve
        """
        status = (status or "").strip()
        if not status:
            raise ValidationError("Missing required fields", required=["status"], missing=["status"])
        now = utcnow()

        if self.gateway.is_backend_available():
            backend = "durable"
            with self.gateway.session() as db:
                key = parse_key(order_id)
                order = db.get(Order, key) if key is not None else None
                if order is None:
                    raise NotFoundError("Order not found")
                order.status = status
                order.updated_at = now
                db.flush()
                record = _to_record(order)
        else:
            backend = "fallback"
            fallback_operations_counter.add(1, {"collection": "orders", "operation": "update_status"})
            with self.gateway.orders.lock:
                existing = self.gateway.orders.find(order_id)
                if existing is None:
                    raise NotFoundError("Order not found")
                record = existing.model_copy(update={"status": status, "updated_at": now})
                self.gateway.orders.replace(order_id, record)

        logger.info("Order status updated", extra={
            "order_id": record.id,
            "status": status,
            "backend": backend
        })
        return record
