from fastapi import Request

from imagebed.order_store import OrderStore
from imagebed.ratelimit import RateLimiter
from imagebed.storage import ObjectStore


# Dependency Injection for services built in create_app()
def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_order_store(request: Request) -> OrderStore:
    return request.app.state.order_store


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter
