"""FastAPI REST API for the cart and order lifecycle."""

from decimal import Decimal
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .errors import (
    CartflowError,
    ConflictError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ProductUnavailableError,
    ValidationError,
)
from .logs import configure_logging, get_logger
from .models import (
    ActivityLogEntry,
    Address,
    Cart,
    Customer,
    Order,
    ReorderLine,
    ShippingRate,
)
from .order_factory import CustomerIdentity, PosItem
from .roles import Actor, Role, parse_role
from .service import Storefront

configure_logging()
log = get_logger("api")


# --- Pydantic Schemas ---


class AddressSchema(BaseModel):
    line1: str = ""
    line2: Optional[str] = None
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""

    def to_address(self) -> Address:
        return Address(
            line1=self.line1,
            line2=self.line2,
            city=self.city,
            state=self.state,
            postal_code=self.postal_code,
            country=self.country,
        )


class CartItemSchema(BaseModel):
    product_id: str
    quantity: int
    unit_price_snapshot: Decimal
    available_stock: Optional[int] = None
    exceeds_stock: bool = False


class CartSchema(BaseModel):
    owner_key: str
    items: list[CartItemSchema]
    estimated_subtotal: Decimal
    updated_at: str


class AddCartItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(default=1, description="Units to add (must be positive)")


class SetQuantityRequest(BaseModel):
    quantity: int = Field(..., description="New quantity; 0 removes the line")


class MergeCartRequest(BaseModel):
    guest_token: str = Field(..., description="Token of the guest cart to fold in")


class OrderLineSchema(BaseModel):
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


class StatusChangeSchema(BaseModel):
    status: str
    changed_at: str
    changed_by: str


class OrderSchema(BaseModel):
    id: str
    order_number: str
    customer_ref: str
    items: list[OrderLineSchema]
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    status: str
    shipping_address: AddressSchema
    billing_address: AddressSchema
    payment_method_label: str
    placed_by: str
    source: str
    notes: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    status_history: list[StatusChangeSchema]
    created_at: str
    updated_at: str


class OrderListResponse(BaseModel):
    orders: list[OrderSchema]
    count: int


class CreateOrderRequest(BaseModel):
    """Checkout of the caller's cart."""

    shipping_address: AddressSchema
    billing_address: Optional[AddressSchema] = None
    payment_method_label: Optional[str] = Field(None, description="Recorded label only, e.g. 'cash'")
    tax: Decimal = Decimal("0")
    notes: Optional[str] = None


class PosItemSchema(BaseModel):
    product_id: str
    quantity: int


class CreatePosOrderRequest(BaseModel):
    """Staff-entered order for a customer identified by email or phone."""

    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_name: Optional[str] = None
    items: list[PosItemSchema]
    shipping_address: AddressSchema
    billing_address: Optional[AddressSchema] = None
    payment_method_label: Optional[str] = None
    tax: Decimal = Decimal("0")
    shipping: Optional[Decimal] = Field(None, description="Overrides the postal-code rate")
    notes: Optional[str] = None


class TransitionRequest(BaseModel):
    status: str
    notes: Optional[str] = None
    expected_status: Optional[str] = Field(
        None, description="Current status the caller saw; mismatch yields 409"
    )


class NoteRequest(BaseModel):
    note: str


class ActivityEntrySchema(BaseModel):
    id: str
    order_id: str
    sequence: int
    action: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    performed_by: str
    notes: Optional[str] = None
    metadata: Optional[dict] = None
    timestamp: str


class ActivityListResponse(BaseModel):
    entries: list[ActivityEntrySchema]
    count: int


class ReorderLineSchema(BaseModel):
    product_id: str
    name: str
    requested: int
    restored: int
    reason: str


class ReorderResponse(BaseModel):
    cart: CartSchema
    source_order_id: str
    restored: list[str]
    skipped: list[ReorderLineSchema]
    clamped: list[ReorderLineSchema]
    partial: bool


class CustomerSchema(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    default_address: Optional[AddressSchema] = None
    created_at: str


class CustomerLookupResponse(BaseModel):
    customer: Optional[CustomerSchema]


class ResolveCustomerRequest(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None


class CustomerListResponse(BaseModel):
    customers: list[CustomerSchema]
    count: int


class ShippingQuoteResponse(BaseModel):
    postal_code: str
    charge: Decimal


class ShippingCheckRequest(BaseModel):
    postal_code: str
    email: Optional[str] = None


class ShippingCheckResponse(BaseModel):
    postal_code: str
    serviceable: bool
    charge: Decimal


class ShippingRateSchema(BaseModel):
    postal_code: str
    charge: Decimal
    active: bool
    description: Optional[str] = None
    created_at: str
    updated_at: str


class ShippingRateRequest(BaseModel):
    charge: Decimal
    active: bool = True
    description: Optional[str] = None


class ShippingRateListResponse(BaseModel):
    rates: list[ShippingRateSchema]
    count: int


class UnserviceableRequestSchema(BaseModel):
    postal_code: str
    requested_by: Optional[str] = None
    email: Optional[str] = None
    status: str
    created_at: str
    resolved_at: Optional[str] = None


# --- Helper Functions ---

_storefront: Storefront | None = None


def get_storefront() -> Storefront:
    """Get the global Storefront."""
    global _storefront
    if _storefront is None:
        _storefront = Storefront()
    return _storefront


def get_actor(request: Request) -> Actor:
    """
    Build the acting identity from headers set by the upstream auth layer.

    X-User-Id (+ optional X-User-Role) identifies a signed-in user;
    otherwise X-Guest-Token identifies an anonymous shopper.
    """
    user_id = request.headers.get("X-User-Id")
    if user_id:
        return Actor.user(user_id, parse_role(request.headers.get("X-User-Role") or Role.CUSTOMER))
    guest_token = request.headers.get("X-Guest-Token")
    if guest_token:
        return Actor.guest(guest_token)
    raise HTTPException(status_code=401, detail="X-User-Id or X-Guest-Token header required")


def cart_to_schema(cart: Cart, availability: dict[str, int] | None = None) -> CartSchema:
    availability = availability or {}
    items = []
    for item in cart.items:
        available = availability.get(item.product_id)
        items.append(
            CartItemSchema(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_snapshot=item.unit_price_snapshot,
                available_stock=available,
                exceeds_stock=available is not None and item.quantity > available,
            )
        )
    return CartSchema(
        owner_key=cart.owner_key,
        items=items,
        estimated_subtotal=cart.snapshot_subtotal(),
        updated_at=cart.updated_at,
    )


def order_to_schema(order: Order) -> OrderSchema:
    return OrderSchema(**order.to_dict())


def entry_to_schema(entry: ActivityLogEntry) -> ActivityEntrySchema:
    return ActivityEntrySchema(**entry.to_dict())


def customer_to_schema(customer: Customer) -> CustomerSchema:
    return CustomerSchema(**customer.to_dict())


def rate_to_schema(rate: ShippingRate) -> ShippingRateSchema:
    return ShippingRateSchema(**rate.to_dict())


def reorder_line_to_schema(line: ReorderLine) -> ReorderLineSchema:
    return ReorderLineSchema(
        product_id=line.product_id,
        name=line.name,
        requested=line.requested,
        restored=line.restored,
        reason=line.reason,
    )


# --- App ---


app = FastAPI(
    title="cartflow API",
    description="Cart, checkout, POS and order-status workflow for the storefront",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handler ---


# Map exception types to HTTP status codes (subclasses inherit their base's code)
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    InvalidTransitionError: 409,
    ConflictError: 409,
    ProductUnavailableError: 422,
    InsufficientStockError: 422,
}


def status_code_for(exc: CartflowError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


@app.exception_handler(CartflowError)
async def cartflow_error_handler(request: Request, exc: CartflowError) -> JSONResponse:
    """Map CartflowError subclasses to appropriate HTTP responses."""
    status_code = status_code_for(exc)
    log.info(
        "request_rejected",
        path=request.url.path,
        status_code=status_code,
        error_type=type(exc).__name__,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__, **exc.details()},
    )


# --- Endpoints ---


@app.get("/api/health")
def health_check():
    """Health check endpoint."""
    storefront = get_storefront()
    return {
        "status": "ok",
        "version": __version__,
        "data_dir": str(storefront.config_dir),
    }


# --- Cart Endpoints ---


@app.get("/api/cart", response_model=CartSchema)
def get_cart(request: Request):
    """Current cart with advisory stock per line."""
    cart, availability = get_storefront().cart_availability(get_actor(request))
    return cart_to_schema(cart, availability)


@app.post("/api/cart/items", response_model=CartSchema)
def add_cart_item(request: Request, body: AddCartItemRequest):
    storefront = get_storefront()
    cart = storefront.add_to_cart(get_actor(request), body.product_id, body.quantity)
    return cart_to_schema(cart, storefront.carts.availability(cart))


@app.put("/api/cart/items/{product_id}", response_model=CartSchema)
def set_cart_item_quantity(request: Request, product_id: str, body: SetQuantityRequest):
    storefront = get_storefront()
    cart = storefront.set_cart_quantity(get_actor(request), product_id, body.quantity)
    return cart_to_schema(cart, storefront.carts.availability(cart))


@app.delete("/api/cart/items/{product_id}", response_model=CartSchema)
def remove_cart_item(request: Request, product_id: str):
    storefront = get_storefront()
    cart = storefront.remove_from_cart(get_actor(request), product_id)
    return cart_to_schema(cart, storefront.carts.availability(cart))


@app.delete("/api/cart", response_model=CartSchema)
def clear_cart(request: Request):
    return cart_to_schema(get_storefront().clear_cart(get_actor(request)))


@app.post("/api/cart/merge", response_model=CartSchema)
def merge_cart(request: Request, body: MergeCartRequest):
    """Fold a guest cart into the signed-in user's cart."""
    storefront = get_storefront()
    cart = storefront.merge_guest_cart(get_actor(request), body.guest_token)
    return cart_to_schema(cart, storefront.carts.availability(cart))


# --- Order Endpoints ---


@app.post("/api/orders", response_model=OrderSchema, status_code=201)
def create_order(request: Request, body: CreateOrderRequest):
    """Check out the caller's cart."""
    order = get_storefront().create_order(
        get_actor(request),
        shipping_address=body.shipping_address.to_address(),
        billing_address=body.billing_address.to_address() if body.billing_address else None,
        payment_method_label=body.payment_method_label,
        tax=body.tax,
        notes=body.notes,
    )
    return order_to_schema(order)


@app.post("/api/orders/pos", response_model=OrderSchema, status_code=201)
def create_pos_order(request: Request, body: CreatePosOrderRequest):
    """Staff-entered order; the customer is matched or created inline."""
    order = get_storefront().create_pos_order(
        get_actor(request),
        customer=CustomerIdentity(
            email=body.customer_email,
            phone=body.customer_phone,
            name=body.customer_name,
        ),
        items=[PosItem(product_id=i.product_id, quantity=i.quantity) for i in body.items],
        shipping_address=body.shipping_address.to_address(),
        billing_address=body.billing_address.to_address() if body.billing_address else None,
        payment_method_label=body.payment_method_label,
        tax=body.tax,
        shipping=body.shipping,
        notes=body.notes,
    )
    return order_to_schema(order)


@app.get("/api/orders", response_model=OrderListResponse)
def list_orders(
    request: Request,
    status: Optional[str] = Query(default=None),
    customer_ref: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
):
    orders = get_storefront().list_orders(
        get_actor(request), status=status, customer_ref=customer_ref, limit=limit
    )
    return OrderListResponse(orders=[order_to_schema(o) for o in orders], count=len(orders))


@app.get("/api/orders/by-number/{order_number}", response_model=OrderSchema)
def get_order_by_number(request: Request, order_number: str):
    return order_to_schema(get_storefront().get_order_by_number(get_actor(request), order_number))


@app.get("/api/orders/{order_id}", response_model=OrderSchema)
def get_order(request: Request, order_id: str):
    return order_to_schema(get_storefront().get_order(get_actor(request), order_id))


@app.post("/api/orders/{order_id}/status", response_model=OrderSchema)
def transition_order(request: Request, order_id: str, body: TransitionRequest):
    order = get_storefront().transition_order(
        get_actor(request),
        order_id,
        body.status,
        notes=body.notes,
        expected_status=body.expected_status,
    )
    return order_to_schema(order)


@app.post("/api/orders/{order_id}/notes", response_model=OrderSchema)
def add_order_note(request: Request, order_id: str, body: NoteRequest):
    return order_to_schema(get_storefront().add_order_note(get_actor(request), order_id, body.note))


@app.get("/api/orders/{order_id}/activity", response_model=ActivityListResponse)
def get_order_activity(request: Request, order_id: str):
    """Activity log for an order, oldest first."""
    entries = get_storefront().order_activity(get_actor(request), order_id)
    return ActivityListResponse(entries=[entry_to_schema(e) for e in entries], count=len(entries))


@app.post("/api/orders/{order_id}/reorder", response_model=ReorderResponse)
def reorder(request: Request, order_id: str):
    """Copy a past order's lines into the caller's cart (best effort)."""
    storefront = get_storefront()
    result = storefront.reorder(get_actor(request), order_id)
    return ReorderResponse(
        cart=cart_to_schema(result.cart, storefront.carts.availability(result.cart)),
        source_order_id=result.source_order_id,
        restored=result.restored,
        skipped=[reorder_line_to_schema(line) for line in result.skipped],
        clamped=[reorder_line_to_schema(line) for line in result.clamped],
        partial=result.partial,
    )


# --- Customer Endpoints ---


@app.get("/api/customers/resolve", response_model=CustomerLookupResponse)
def resolve_customer(
    request: Request,
    email: Optional[str] = Query(default=None),
    phone: Optional[str] = Query(default=None),
):
    customer = get_storefront().resolve_customer(get_actor(request), email=email, phone=phone)
    return CustomerLookupResponse(customer=customer_to_schema(customer) if customer else None)


@app.post("/api/customers/resolve", response_model=CustomerSchema)
def resolve_or_create_customer(request: Request, body: ResolveCustomerRequest):
    customer = get_storefront().resolve_or_create_customer(
        get_actor(request), email=body.email, phone=body.phone, name=body.name
    )
    return customer_to_schema(customer)


@app.get("/api/customers/search", response_model=CustomerListResponse)
def search_customers(
    request: Request,
    q: str = Query(..., min_length=1),
    limit: int = Query(default=10, ge=1, le=50),
):
    customers = get_storefront().search_customers(get_actor(request), q, limit=limit)
    return CustomerListResponse(
        customers=[customer_to_schema(c) for c in customers], count=len(customers)
    )


# --- Shipping Endpoints ---


@app.get("/api/shipping/quote", response_model=ShippingQuoteResponse)
def quote_shipping(postal_code: str = Query(...)):
    """Charge for a postal code; 0 when none is configured."""
    charge = get_storefront().quote_shipping(postal_code)
    return ShippingQuoteResponse(postal_code=postal_code.strip(), charge=charge)


@app.post("/api/shipping/check", response_model=ShippingCheckResponse)
def check_postal_code(request: Request, body: ShippingCheckRequest):
    result = get_storefront().check_postal_code(get_actor(request), body.postal_code, email=body.email)
    return ShippingCheckResponse(
        postal_code=result.postal_code, serviceable=result.serviceable, charge=result.charge
    )


@app.get("/api/shipping/rates", response_model=ShippingRateListResponse)
def list_shipping_rates(request: Request):
    rates = get_storefront().list_shipping_rates(get_actor(request))
    return ShippingRateListResponse(rates=[rate_to_schema(r) for r in rates], count=len(rates))


@app.put("/api/shipping/rates/{postal_code}", response_model=ShippingRateSchema)
def set_shipping_rate(request: Request, postal_code: str, body: ShippingRateRequest):
    rate = get_storefront().set_shipping_rate(
        get_actor(request),
        postal_code,
        body.charge,
        active=body.active,
        description=body.description,
    )
    return rate_to_schema(rate)


@app.delete("/api/shipping/rates/{postal_code}", response_model=ShippingRateSchema)
def remove_shipping_rate(request: Request, postal_code: str):
    return rate_to_schema(get_storefront().remove_shipping_rate(get_actor(request), postal_code))


@app.get("/api/shipping/unserviceable", response_model=list[UnserviceableRequestSchema])
def list_unserviceable_requests(request: Request):
    requests = get_storefront().unserviceable_requests(get_actor(request))
    return [UnserviceableRequestSchema(**r.to_dict()) for r in requests]
