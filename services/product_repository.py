"""Product catalog repository."""
import logging
import math
from typing import Any, Dict, Iterable, List

from opentelemetry import trace
from sqlalchemy import select

from config import PRODUCT_CATEGORIES, PRODUCT_LIST_ORDER
from errors import NotFoundError, ValidationError
from models import NAME_MAX_LENGTH, QUANTITY_MAX, Product, as_utc, utcnow
from monitoring import product_mutations_counter, fallback_operations_counter
from schemas import ProductPayload, ProductRecord
from storage import StorageGateway, parse_key

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ["name", "category", "price", "stock"]

CATEGORY_ICONS = {
    "senjata": "🔫",
    "amunisi": "🎯",
    "armor": "🦺",
    "attachment": "⚙️",
    "ganja": "🌿",
    "meth": "💊",
    "alat_rampok": "🔧",
}
DEFAULT_ICON = "📦"
# Drug categories pick the icon of the drug named in the product, if any
DRUG_CATEGORIES = ("ganja", "meth")
DRUG_NAME_ICONS = (("ganja", "🌿"), ("meth", "💊"))


def default_image(category: str, name: str = "") -> str:
    """Icon for a product created without an image."""
    if category in DRUG_CATEGORIES:
        lowered = name.lower()
        for keyword, icon in DRUG_NAME_ICONS:
            if keyword in lowered:
                return icon
    return CATEGORY_ICONS.get(category, DEFAULT_ICON)


def product_to_record(product: Product) -> ProductRecord:
    return ProductRecord(
        id=str(product.id),
        name=product.name,
        category=product.category,
        price=product.price,
        stock=product.stock,
        description=product.description or "",
        image=product.image or DEFAULT_ICON,
        created_at=as_utc(product.created_at),
        updated_at=as_utc(product.updated_at),
    )


class ProductRepository:
    """CRUD over products against whichever backend the gateway selects."""

    def __init__(
        self,
        gateway: StorageGateway,
        categories: Iterable[str] = PRODUCT_CATEGORIES,
        list_order: str = PRODUCT_LIST_ORDER
    ):
        """
        Initialize product repository.

        Args:
            gateway: Storage gateway
            categories: Allowed product categories
            list_order: "newest" (descending creation time) or "name"
        """
        self.gateway = gateway
        self.categories = tuple(categories)
        self.list_order = list_order
        self.tracer = trace.get_tracer(__name__)

    def validate(self, payload: ProductPayload) -> Dict[str, Any]:
        """
        Check required fields and invariants, returning cleaned fields.

        Raises:
            ValidationError: If a required field is missing or a value is invalid
        """
        name = (payload.name or "").strip()
        category = (payload.category or "").strip()

        missing = []
        if not name:
            missing.append("name")
        if not category:
            missing.append("category")
        if payload.price is None:
            missing.append("price")
        if payload.stock is None:
            missing.append("stock")
        if missing:
            raise ValidationError("Missing required fields", required=REQUIRED_FIELDS, missing=missing)

        messages = []
        if len(name) > NAME_MAX_LENGTH:
            messages.append(f"Name cannot exceed {NAME_MAX_LENGTH} characters")
        if category not in self.categories:
            messages.append(f"Category must be one of: {', '.join(self.categories)}")
        if not math.isfinite(payload.price):
            messages.append("Price must be a number")
        elif payload.price < 0:
            messages.append("Price cannot be negative")
        if payload.stock < 0:
            messages.append("Stock cannot be negative")
        elif payload.stock > QUANTITY_MAX:
            messages.append(f"Stock cannot exceed {QUANTITY_MAX}")
        if messages:
            raise ValidationError("Invalid product fields", messages=messages)

        fields: Dict[str, Any] = {
            "name": name,
            "category": category,
            "price": float(payload.price),
            "stock": int(payload.stock),
        }
        if payload.description is not None:
            fields["description"] = payload.description.strip()
        if payload.image is not None and payload.image.strip():
            fields["image"] = payload.image.strip()
        return fields

    def list(self) -> List[ProductRecord]:
        """All products, ordered per ``list_order``."""
        if self.gateway.is_backend_available():
            with self.gateway.session() as db:
                stmt = select(Product)
                if self.list_order == "name":
                    stmt = stmt.order_by(Product.name.asc(), Product.id.asc())
                else:
                    stmt = stmt.order_by(Product.created_at.desc(), Product.id.desc())
                return [product_to_record(product) for product in db.execute(stmt).scalars()]

        fallback_operations_counter.add(1, {"collection": "products", "operation": "list"})
        records = self.gateway.products.all()
        if self.list_order == "name":
            return sorted(records, key=lambda record: record.name)
        return records[::-1]

    def get(self, product_id: str) -> ProductRecord:
        """
        Fetch one product.

        Raises:
            NotFoundError: If the id does not resolve
        """
        if self.gateway.is_backend_available():
            with self.gateway.session() as db:
                product = self._load(db, product_id)
                return product_to_record(product)

        fallback_operations_counter.add(1, {"collection": "products", "operation": "get"})
        record = self.gateway.products.find(product_id)
        if record is None:
            raise NotFoundError("Product not found")
        return record

    def create(self, payload: ProductPayload) -> ProductRecord:
        """
        Validate and persist a new product.

        Returns:
            The persisted record with id and timestamps

        Raises:
            ValidationError: If fields are missing or invalid
        """
        fields = self.validate(payload)
        fields.setdefault("description", "")
        fields.setdefault("image", default_image(fields["category"], fields["name"]))
        now = utcnow()

        if self.gateway.is_backend_available():
            backend = "durable"
            with self.tracer.start_as_current_span("db.insert.product") as db_span:
                db_span.set_attribute("db.operation", "INSERT")
                db_span.set_attribute("db.table", "products")
                with self.gateway.session() as db:
                    product = Product(**fields, created_at=now, updated_at=now)
                    db.add(product)
                    db.flush()
                    record = product_to_record(product)
        else:
            backend = "fallback"
            fallback_operations_counter.add(1, {"collection": "products", "operation": "create"})
            record = self.gateway.products.insert(
                ProductRecord(id=self.gateway.next_id(), created_at=now, updated_at=now, **fields)
            )

        product_mutations_counter.add(1, {"operation": "create", "backend": backend})
        logger.info("Product created", extra={
            "product_id": record.id,
            "category": record.category,
            "backend": backend
        })
        return record

    def update(self, product_id: str, payload: ProductPayload) -> ProductRecord:
        """
        Replace a product's fields. All required fields must be present.

        Raises:
            ValidationError: If fields are missing or invalid
            NotFoundError: If the id does not resolve
        """
        fields = self.validate(payload)
        now = utcnow()

        if self.gateway.is_backend_available():
            backend = "durable"
            with self.gateway.session() as db:
                product = self._load(db, product_id)
                for key, value in fields.items():
                    setattr(product, key, value)
                product.updated_at = now
                db.flush()
                record = product_to_record(product)
        else:
            backend = "fallback"
            fallback_operations_counter.add(1, {"collection": "products", "operation": "update"})
            with self.gateway.products.lock:
                existing = self.gateway.products.find(product_id)
                if existing is None:
                    raise NotFoundError("Product not found")
                record = existing.model_copy(update={**fields, "updated_at": now})
                self.gateway.products.replace(product_id, record)

        product_mutations_counter.add(1, {"operation": "update", "backend": backend})
        logger.info("Product updated", extra={"product_id": record.id, "backend": backend})
        return record

    def delete(self, product_id: str) -> ProductRecord:
        """
        Remove a product.

        Returns:
            The deleted record

        Raises:
            NotFoundError: If the id does not resolve
        """
        if self.gateway.is_backend_available():
            backend = "durable"
            with self.gateway.session() as db:
                product = self._load(db, product_id)
                record = product_to_record(product)
                db.delete(product)
        else:
            backend = "fallback"
            fallback_operations_counter.add(1, {"collection": "products", "operation": "delete"})
            record = self.gateway.products.remove(product_id)
            if record is None:
                raise NotFoundError("Product not found")

        product_mutations_counter.add(1, {"operation": "delete", "backend": backend})
        logger.info("Product deleted", extra={"product_id": record.id, "backend": backend})
        return record

    @staticmethod
    def _load(db, product_id: str) -> Product:
        key = parse_key(product_id)
        product = db.get(Product, key) if key is not None else None
        if product is None:
            raise NotFoundError("Product not found")
        return product
