"""Products API router."""
from fastapi import APIRouter, Depends, Path
from opentelemetry import trace

from dependencies import get_product_repository
from schemas import ErrorResponse, ProductListResponse, ProductPayload, ProductResponse
from services.product_repository import ProductRepository

router = APIRouter(prefix="/api/products", tags=["products"])

NOT_FOUND = {404: {"model": ErrorResponse}}
INVALID = {400: {"model": ErrorResponse}}


@router.get("", response_model=ProductListResponse)
def list_products(products: ProductRepository = Depends(get_product_repository)):
    """List the catalog, newest first unless configured otherwise."""
    items = products.list()
    trace.get_current_span().set_attribute("product.count", len(items))
    return ProductListResponse(count=len(items), data=items)


@router.get("/{product_id}", response_model=ProductResponse, responses=NOT_FOUND)
def get_product(
    product_id: str = Path(..., description="Product ID"),
    products: ProductRepository = Depends(get_product_repository)
):
    """Get a single product."""
    return ProductResponse(data=products.get(product_id))


@router.post("", response_model=ProductResponse, status_code=201, responses=INVALID)
def create_product(
    payload: ProductPayload,
    products: ProductRepository = Depends(get_product_repository)
):
    """Create a product. name, category, price and stock are required."""
    product = products.create(payload)
    trace.get_current_span().set_attribute("product.id", product.id)
    return ProductResponse(message="Product created successfully", data=product)


@router.put("/{product_id}", response_model=ProductResponse, responses={**NOT_FOUND, **INVALID})
def update_product(
    payload: ProductPayload,
    product_id: str = Path(..., description="Product ID"),
    products: ProductRepository = Depends(get_product_repository)
):
    """Update a product. The same fields as create are required."""
    product = products.update(product_id, payload)
    return ProductResponse(message="Product updated successfully", data=product)


@router.delete("/{product_id}", response_model=ProductResponse, responses=NOT_FOUND)
def delete_product(
    product_id: str = Path(..., description="Product ID"),
    products: ProductRepository = Depends(get_product_repository)
):
    """Delete a product."""
    product = products.delete(product_id)
    return ProductResponse(message="Product deleted successfully", data=product)
