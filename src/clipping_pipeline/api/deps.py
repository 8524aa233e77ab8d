from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, Request

from clipping_pipeline.config import get_settings
from clipping_pipeline.runtime import Pipeline


def get_pipeline(request: Request) -> Pipeline:
    p = getattr(request.app.state, "pipeline", None)
    if p is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return p


def require_token(authorization: str | None = Header(default=None)) -> None:
    """
    Bearer token check; disabled when API_TOKEN is unset.
    """
    expected = get_settings().api_token_value()
    if not expected:
        return
    scheme, _, token = str(authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
