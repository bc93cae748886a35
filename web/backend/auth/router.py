#!/usr/bin/env python3
"""
OAuth Twitch - broadcaster authorization routes
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from web.backend.dependencies import Services, get_services, limiter

logger = logging.getLogger(__name__)
router = APIRouter()


def _frontend_redirect(services: Services, **params) -> RedirectResponse:
    return RedirectResponse(url=f"{services.settings.frontend_url}/?{urlencode(params)}", status_code=302)


@router.get("/twitch")
@limiter.limit("10/minute")
async def login_twitch(request: Request, services: Services = Depends(get_services)):
    """Redirect the broadcaster to the Twitch consent page."""
    state = services.oauth_states.issue()
    auth_url = services.credentials.authorization_url(state)
    logger.info(f"🔐 OAuth redirect to Twitch (state={state[:8]}...)")
    logger.info(f"🔗 Redirect URI used: {services.credentials.redirect_uri}")
    return RedirectResponse(url=auth_url, status_code=302)


async def handle_oauth_callback(
    services: Services,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
) -> RedirectResponse:
    if error:
        logger.error(f"❌ OAuth error: {error} - {error_description}")
        return _frontend_redirect(services, error=error)

    if not services.oauth_states.consume(state):
        logger.error("❌ Invalid or expired OAuth state")
        return _frontend_redirect(services, error="invalid_state")

    if not code:
        logger.error("❌ No code provided in callback from Twitch")
        return _frontend_redirect(services, error="no_code")

    if not await services.credentials.exchange_code(code):
        return _frontend_redirect(services, error="token_exchange_failed")

    missing = services.credentials.missing_scopes()
    if missing:
        logger.warning(f"⚠️ Missing required scopes: {missing}")

    # Welcome may have arrived before we had a token
    if not services.session.connect():
        await services.session.ensure_subscribed()

    return _frontend_redirect(services, auth="success")


@router.get("/callback")
@router.get("/twitch/callback")
@limiter.limit("10/minute")
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """Twitch redirects here with ?code=...&state=..."""
    return await handle_oauth_callback(services, code, state, error, error_description)


@router.get("/reauth")
@limiter.limit("10/minute")
async def reauth(request: Request, services: Services = Depends(get_services)):
    """Forget the current credential and start a fresh authorization."""
    logger.info("Re-auth request received")
    await services.credentials.clear()
    return RedirectResponse(url=services.credentials.authorization_url(services.oauth_states.issue()), status_code=302)


@router.get("/status")
async def auth_status(services: Services = Depends(get_services)):
    info = services.credentials.token_info()
    return {
        "authenticated": not info.needs_reauth,
        "needsReAuth": info.needs_reauth,
        "userLogin": info.user_login or None,
        "expiresIn": info.expires_in,
        "missingScopes": info.missing_scopes,
        "eventsub": services.session.state.value,
        "authUrl": services.auth_url,
    }
