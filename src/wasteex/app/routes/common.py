"""Shared route helpers: domain error translation and client metadata."""

from fastapi import HTTPException, Request

from wasteex.domain.errors import MarketplaceError


def to_http(error: MarketplaceError) -> HTTPException:
    """Map a domain error onto an HTTPException with a {code, message} detail."""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
