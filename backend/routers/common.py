"""Shared router helpers: service lookup and domain error mapping."""
from __future__ import annotations

from contextlib import contextmanager

from fastapi import HTTPException, Request

from backend.errors import ForbiddenError, NotFoundError


def get_services(request: Request):
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Chat services not initialized")
    return services


@contextmanager
def domain_errors():
    """Translate domain errors raised inside the block into HTTP errors."""
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ForbiddenError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
