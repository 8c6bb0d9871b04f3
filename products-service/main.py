import os
import re
import sys
import hmac
import json
import time
import uuid
from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from loguru import logger
from dotenv import load_dotenv
from typing import Dict, Optional
from pydantic import ValidationError as PydanticValidationError
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from errors import AppError, NotFoundError, UnauthorizedError, ValidationError
from models import Product, seed_products
from schemas import (
    BODY_ERROR,
    FIELD_ERRORS,
    ProductCreate,
    ProductData,
    ProductListData,
    ProductListResponse,
    ProductResponse,
    StatsData,
    StatsResponse,
)
from store import InMemoryProductStore, ProductStore

# Chargement des variables d'environnement
load_dotenv()

SERVICE_NAME = "products-service"
DEFAULT_API_KEY = "secret-key"
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10

# Config logging: JSON dans un fichier + console lisible
logger.remove()
logger.add(
    sink=sys.stderr,
    format="[{time:YYYY-MM-DDTHH:mm:ss.SSSZ}] {level} | {message}",
    level=os.getenv("LOG_LEVEL", "INFO"),
)
logger.add(
    sink=os.getenv("LOG_FILE", "logs.json"),
    format="{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {message} | {extra}",
    level=os.getenv("LOG_LEVEL", "INFO"),
    serialize=True,
    rotation="1 day",
)

# Prometheus metrics
REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "method", "endpoint", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["service", "method", "endpoint"]
)
ERROR_COUNT = Counter(
    "http_errors_total",
    "Total HTTP errors",
    ["service", "endpoint", "error_type"]
)

app = FastAPI(title="Products Service")
app.state.store = InMemoryProductStore(seed_products())


# Middleware pour logger les requests avec correlation ID
@app.middleware("http")
async def log_requests(request: Request, call_next):
    trace_id = request.headers.get("X-Trace-ID", str(uuid.uuid4()))
    start_time = time.time()

    with logger.contextualize(trace_id=trace_id, service=SERVICE_NAME):
        logger.bind(method=request.method, url=str(request.url)).info(
            "Request: {} {}", request.method, request.url.path
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            # Réponse 500 construite ici pour garder métriques et trace-id
            response = await unexpected_error_handler(request, exc)

        latency = time.time() - start_time
        # Template de route plutôt que le chemin brut (ids)
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        REQUEST_COUNT.labels(
            service=SERVICE_NAME,
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()
        REQUEST_LATENCY.labels(
            service=SERVICE_NAME,
            method=request.method,
            endpoint=endpoint
        ).observe(latency)

        logger.bind(status=response.status_code, latency=latency).info(
            "Response status: {}", response.status_code
        )

        response.headers["X-Trace-ID"] = trace_id
        return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    logger.warning("{} {} failed: {} {}", request.method, request.url.path, exc.status_code, exc.message)
    ERROR_COUNT.labels(service=SERVICE_NAME, endpoint=request.url.path, error_type=exc.error_type).inc()
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "fail", "message": exc.message},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    ERROR_COUNT.labels(service=SERVICE_NAME, endpoint=request.url.path, error_type=f"http_{exc.status_code}").inc()
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "fail", "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error("Unhandled error on {} {}", request.method, request.url.path)
    ERROR_COUNT.labels(service=SERVICE_NAME, endpoint=request.url.path, error_type="internal").inc()
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal Server Error"},
    )


def get_store(request: Request) -> ProductStore:
    return request.app.state.store


def get_api_key() -> str:
    # Relu à chaque requête
    return os.getenv("API_KEY") or DEFAULT_API_KEY


async def require_api_key(
    x_api_key: Optional[str] = Header(None),
    expected: str = Depends(get_api_key),
):
    """Gate for write endpoints: header ``x-api-key`` must match ``API_KEY``."""
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), expected.encode()):
        raise UnauthorizedError()


def _describe_errors(exc: PydanticValidationError) -> str:
    fields = set()
    for error in exc.errors():
        loc = error.get("loc") or ()
        field = loc[0] if loc else None
        fields.add(field)
    messages = [message for field, message in FIELD_ERRORS.items() if field in fields]
    return "; ".join(messages) or BODY_ERROR


def _is_json(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


async def product_payload(request: Request) -> ProductCreate:
    """
    Validate a create/update body and collect every invalid field.

    An empty body, or one not sent as JSON, counts as ``{}`` so the client
    gets the full list of required fields instead of a parse error.
    """
    raw = await request.body()
    if raw.strip() and _is_json(request.headers.get("content-type", "")):
        try:
            body = json.loads(raw)
        except ValueError:
            raise ValidationError(BODY_ERROR)
    else:
        body = {}
    if not isinstance(body, dict):
        raise ValidationError(BODY_ERROR)
    try:
        return ProductCreate.model_validate(body)
    except PydanticValidationError as exc:
        raise ValidationError(_describe_errors(exc)) from exc


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_positive_int(value: Optional[str], default: int) -> int:
    """Lenient integer parsing: ``"2abc"`` is 2, junk or 0 gives ``default``; never below 1."""
    match = _LEADING_INT.match(value) if value else None
    number = int(match.group(1)) if match else 0
    return max(1, number or default)


def _get_or_404(store: ProductStore, product_id: str) -> Product:
    product = store.get(product_id)
    if product is None:
        logger.warning("Product {} not found", product_id)
        raise NotFoundError("Product not found")
    return product


@app.get("/", response_class=PlainTextResponse)
async def root():
    return "Hello World - Product API. Use /api/products"


@app.get("/metrics")
async def metrics():
    """Endpoint /metrics compatible Prometheus"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy", "service": SERVICE_NAME}


@app.get("/api/products", response_model=ProductListResponse)
async def list_products(
    category: Optional[str] = None,
    q: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    store: ProductStore = Depends(get_store),
):
    results = store.list()

    if category:
        cat = category.lower()
        results = [p for p in results if p.category.lower() == cat]
    if q:
        term = q.lower()
        results = [
            p for p in results
            if term in p.name.lower() or term in (p.description or "").lower()
        ]

    page_number = parse_positive_int(page, DEFAULT_PAGE)
    page_size = parse_positive_int(limit, DEFAULT_LIMIT)
    start = (page_number - 1) * page_size
    paged = results[start:start + page_size]

    logger.info("Listing {} of {} products (page {})", len(paged), len(results), page_number)
    return ProductListResponse(
        results=len(paged),
        page=page_number,
        total=len(results),
        data=ProductListData(products=paged),
    )


# Route statique déclarée avant /{product_id}
@app.get("/api/products/stats", response_model=StatsResponse)
async def product_stats(store: ProductStore = Depends(get_store)):
    products = store.list()
    counts: Dict[str, int] = {}
    for product in products:
        counts[product.category] = counts.get(product.category, 0) + 1
    return StatsResponse(data=StatsData(count_by_category=counts, total=len(products)))


@app.get("/api/products/{product_id}", response_model=ProductResponse)
async def get_product(product_id: str, store: ProductStore = Depends(get_store)):
    logger.info("Fetching product {}", product_id)
    product = _get_or_404(store, product_id)
    return ProductResponse(data=ProductData(product=product))


@app.post(
    "/api/products",
    response_model=ProductResponse,
    status_code=201,
    dependencies=[Depends(require_api_key)],
)
async def create_product(
    payload: ProductCreate = Depends(product_payload),
    store: ProductStore = Depends(get_store),
):
    logger.info("Creating product: {}", payload.name)
    product = store.insert(payload.to_product(str(uuid.uuid4())))
    logger.info("Product created with ID {}", product.id)
    return ProductResponse(data=ProductData(product=product))


@app.put(
    "/api/products/{product_id}",
    response_model=ProductResponse,
    dependencies=[Depends(require_api_key)],
)
async def update_product(
    product_id: str,
    payload: ProductCreate = Depends(product_payload),
    store: ProductStore = Depends(get_store),
):
    logger.info("Updating product {}", product_id)
    product = store.update(product_id, payload.to_product(product_id))
    if product is None:
        logger.warning("Product {} not found", product_id)
        raise NotFoundError("Product not found")
    return ProductResponse(data=ProductData(product=product))


@app.delete(
    "/api/products/{product_id}",
    response_model=ProductResponse,
    dependencies=[Depends(require_api_key)],
)
async def delete_product(product_id: str, store: ProductStore = Depends(get_store)):
    logger.info("Deleting product {}", product_id)
    product = store.delete(product_id)
    if product is None:
        logger.warning("Product {} not found", product_id)
        raise NotFoundError("Product not found")
    return ProductResponse(data=ProductData(product=product))


if __name__ == "__main__":
    port = int(os.getenv("PORT", 3000))
    logger.info(f"Starting Products Service on port {port}")
    import uvicorn
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=port)
