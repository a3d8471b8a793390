"""
FastAPI routes for Spotify authorization and token access.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from tokenkeeper.clients import CredentialStoreError
from tokenkeeper.clients.spotify_auth import (
    InvalidAccountIdError,
    OAuthStateError,
    OAuthTokenExchangeError,
    validate_account_id,
)
from tokenkeeper.dependencies import (
    get_app_settings,
    get_authorization_flow,
    get_token_lifecycle_manager,
)
from tokenkeeper.schemas import (
    AccessTokenResponse,
    AuthorizationStatusResponse,
    CallbackResult,
    ConsentUrlResponse,
    OAuthCallbackPayload,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "").lower()


def _require_account_id(account_id: str) -> str:
    try:
        return validate_account_id(account_id)
    except InvalidAccountIdError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc


def _raise_for_exchange_error(exc: OAuthTokenExchangeError) -> NoReturn:
    if exc.transient:
        raise HTTPException(
            status_code=HTTPStatus.BAD_GATEWAY,
            detail={"reason": "retry", "message": "Spotify is unavailable; try again shortly."},
        ) from exc
    raise HTTPException(
        status_code=HTTPStatus.UNAUTHORIZED,
        detail={"reason": "reauthorize", "message": "Spotify authorization must be renewed."},
    ) from exc


def _raise_store_unavailable(exc: CredentialStoreError) -> NoReturn:
    raise HTTPException(
        status_code=HTTPStatus.SERVICE_UNAVAILABLE,
        detail="Credential storage is unavailable.",
    ) from exc


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/auth/spotify/authorize", status_code=HTTPStatus.OK)
async def start_spotify_oauth_flow(
    request: Request,
    flow: Annotated[Any, Depends(get_authorization_flow)],
    account_id: str = Query(..., description="Account initiating Spotify authorization."),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Spotify consent screen.",
    ),
) -> Response:
    """Return the consent URL for an account, or redirect browsers to it."""
    account_id = _require_account_id(account_id)
    state = flow.build_state(account_id)
    authorization_url = flow.build_consent_url(account_id)

    if redirect or _wants_html(request):
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)

    return JSONResponse(
        content=ConsentUrlResponse(authorization_url=authorization_url, state=state).model_dump()
    )


@router.post("/auth/spotify/callback", status_code=HTTPStatus.OK)
async def handle_spotify_oauth_callback(
    payload: OAuthCallbackPayload,
    flow: Annotated[Any, Depends(get_authorization_flow)],
) -> CallbackResult:
    """Complete the OAuth exchange and store the issued tokens."""
    try:
        account_id = flow.resolve_state(payload.state)
    except OAuthStateError as exc:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail=str(exc)) from exc

    try:
        await flow.complete_authorization(account_id=account_id, code=payload.code)
    except OAuthTokenExchangeError as exc:
        if exc.transient:
            _raise_for_exchange_error(exc)
        # Codes are single use; the only way forward is a new consent round.
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Failed to exchange authorization code.",
        ) from exc
    except CredentialStoreError as exc:
        _raise_store_unavailable(exc)

    return CallbackResult(account_id=account_id)


@router.get("/auth/spotify/callback", status_code=HTTPStatus.OK)
async def handle_spotify_oauth_callback_get(
    request: Request,
    flow: Annotated[Any, Depends(get_authorization_flow)],
    settings: Annotated[Any, Depends(get_app_settings)],
    state: str = Query(..., description="OAuth state token."),
    code: str | None = Query(default=None, description="Authorization code returned by Spotify."),
    error: str | None = Query(default=None, description="Error reported by Spotify."),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    """Browser-facing variant of the callback used as the registered redirect URI."""
    if error:
        logger.info("Spotify consent was not granted: %s", error)
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail=f"Spotify authorization was not granted ({error}).",
        )
    if not code:
        raise HTTPException(
            status_code=HTTPStatus.BAD_REQUEST,
            detail="Missing authorization code.",
        )

    payload = OAuthCallbackPayload(state=state, code=code)
    result = await handle_spotify_oauth_callback(payload=payload, flow=flow)

    redirect_target = settings.frontend_base_url
    if redirect_target and (redirect or _wants_html(request)):
        return RedirectResponse(url=str(redirect_target), status_code=HTTPStatus.TEMPORARY_REDIRECT)

    return JSONResponse(content=result.model_dump())


@router.get("/auth/spotify/token", response_model=AccessTokenResponse)
async def get_spotify_access_token(
    lifecycle: Annotated[Any, Depends(get_token_lifecycle_manager)],
    account_id: str = Query(..., description="Account whose access token is requested."),
) -> AccessTokenResponse:
    """Return a usable access token, refreshing it first when it has expired."""
    account_id = _require_account_id(account_id)
    try:
        record = await lifecycle.get_valid_record(account_id=account_id)
    except OAuthTokenExchangeError as exc:
        _raise_for_exchange_error(exc)
    except CredentialStoreError as exc:
        _raise_store_unavailable(exc)

    if record is None:
        return AccessTokenResponse(status="not_connected")
    return AccessTokenResponse(
        status="connected",
        access_token=record.access_token,
        expires_at=record.expires_at,
    )


@router.get("/auth/spotify/status", response_model=AuthorizationStatusResponse)
async def get_spotify_authorization_status(
    flow: Annotated[Any, Depends(get_authorization_flow)],
    account_id: str = Query(..., description="Account to inspect."),
) -> AuthorizationStatusResponse:
    account_id = _require_account_id(account_id)
    try:
        status = flow.authorization_status(account_id=account_id)
    except CredentialStoreError as exc:
        _raise_store_unavailable(exc)
    return AuthorizationStatusResponse(account_id=account_id, status=status.value)


@router.delete("/auth/spotify", status_code=HTTPStatus.NO_CONTENT)
async def revoke_spotify_authorization(
    flow: Annotated[Any, Depends(get_authorization_flow)],
    account_id: str = Query(..., description="Account whose authorization is removed."),
) -> Response:
    """Delete the stored authorization. Succeeds when none exists."""
    account_id = _require_account_id(account_id)
    try:
        await flow.revoke(account_id=account_id)
    except CredentialStoreError as exc:
        _raise_store_unavailable(exc)
    return Response(status_code=HTTPStatus.NO_CONTENT)


__all__ = ["router"]
