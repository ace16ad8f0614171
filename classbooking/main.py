import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from classbooking.config import CORS_ORIGINS
from classbooking.database import close_client, get_client
from classbooking.errors import BookingError, InvalidInput
from classbooking.log import configure_logging
from classbooking.orders import OrderService
from classbooking.schemas import LessonUpdate, OrderRequest, SearchQuery, object_id
from classbooking.store import InventoryStore, MongoInventoryStore

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    close_client()


app = FastAPI(title="Class Booking API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
        return response
    finally:
        logger.info(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=status,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in err["loc"] if p != "body") for err in exc.errors()]
    error = InvalidInput("Request body is malformed", fields=[f for f in fields if f])
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def get_store() -> InventoryStore:
    return MongoInventoryStore(get_client())


def get_order_service(store: InventoryStore = Depends(get_store)) -> OrderService:
    return OrderService(store)


@app.get("/test")
async def test_database(store: InventoryStore = Depends(get_store)):
    """Check that the database is reachable"""
    info = await store.health()
    return {"backend": "running", "connection_status": "Connected", **info}


@app.get("/lessons")
async def list_lessons(store: InventoryStore = Depends(get_store)):
    return await store.find_all()


@app.get("/search")
async def search_lessons(
    q: Optional[str] = None,
    sortBy: Optional[str] = None,
    order: Optional[str] = None,
    store: InventoryStore = Depends(get_store),
):
    return await store.search(SearchQuery.parse(q, sortBy, order))


@app.post("/orders", status_code=201)
async def place_order(
    payload: OrderRequest, service: OrderService = Depends(get_order_service)
):
    order_id = await service.submit_order(payload.name, payload.phone, payload.cart)
    return {"message": "Order placed successfully", "orderId": order_id}


@app.get("/orders/{order_id}")
async def get_order(order_id: str, service: OrderService = Depends(get_order_service)):
    return await service.get_order(order_id)


@app.put("/lessons/{lesson_id}")
async def update_lesson(
    lesson_id: str, payload: LessonUpdate, store: InventoryStore = Depends(get_store)
):
    oid = object_id(lesson_id)
    changes = payload.changes()
    if not changes:
        raise InvalidInput("No lesson fields to update")
    matched, modified = await store.update_lesson_fields(oid, changes)
    return {"matchedCount": matched, "modifiedCount": modified}
