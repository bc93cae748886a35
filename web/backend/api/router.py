#!/usr/bin/env python3
"""
API Routes - race registration, betting, subscribers, dev test console
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

from twitchapi.auth_manager import mask_token
from web.backend.dependencies import Services, get_services, limiter

logger = logging.getLogger(__name__)
router = APIRouter()


# ============================================================
# PYDANTIC MODELS
# ============================================================

class WinnerPayload(BaseModel):
    winningRatName: Optional[str] = None
    winningRatId: Optional[str] = None

    @field_validator("winningRatName")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v else v


class ChatMessagePayload(BaseModel):
    username: str = "test_user"
    message: str = "!register"


class ParticipantPayload(BaseModel):
    username: str = "test_user"


def reauth_required(services: Services) -> JSONResponse:
    return JSONResponse(status_code=401, content={
        "error": "Twitch Access Token not available. Please re-authorize.",
        "needsReAuth": True,
        "authUrl": services.auth_url,
    })


# ============================================================
# RACE REGISTRATION
# ============================================================

@router.post("/registration/open")
async def open_registration(services: Services = Depends(get_services)):
    logger.info("Opening race registration")
    await services.registry.open_registration()
    return {"message": "Race registration is now open."}


@router.post("/registration/close")
async def close_registration(services: Services = Depends(get_services)):
    logger.info("Closing race registration")
    count = await services.registry.close_registration()
    return {"message": "Race registration is now closed.", "participantCount": count}


@router.get("/participants")
async def participants(services: Services = Depends(get_services)):
    return services.registry.snapshot().to_dict()


@router.post("/race/winner")
async def race_winner(payload: Optional[WinnerPayload] = None, services: Services = Depends(get_services)):
    name = payload.winningRatName if payload else None
    if not name:
        return JSONResponse(status_code=400, content={"error": "winningRatName is required."})

    found, names = await services.registry.declare_winner(name)
    winning_bets = await services.betting.settle(name)
    return {
        "message": f"Winner {name} processed.",
        "winnerFound": found,
        "participants": names,
        "winningBets": [b.to_dict() for b in winning_bets],
    }


# ============================================================
# BETTING
# ============================================================

@router.post("/betting/open")
async def open_betting(services: Services = Depends(get_services)):
    reward_id = services.settings.twitch_reward_id
    if not reward_id:
        return JSONResponse(status_code=400, content={"error": "No betting reward configured (TWITCH_CHANNEL_POINT_REWARD_ID)."})

    await services.betting.open_betting()
    enabled = await services.api.enable_custom_reward(reward_id)
    return {"message": "Betting is now open.", "rewardEnabled": enabled}


@router.post("/betting/close")
async def close_betting(services: Services = Depends(get_services)):
    count = await services.betting.close_betting()
    disabled = False
    reward_id = services.settings.twitch_reward_id
    if reward_id:
        disabled = await services.api.disable_custom_reward(reward_id)
    return {"message": "Betting is now closed.", "betCount": count, "rewardDisabled": disabled}


@router.get("/bets")
async def bets(services: Services = Depends(get_services)):
    return services.betting.snapshot().to_dict()


# ============================================================
# SUBSCRIBERS
# ============================================================

@router.get("/subscribers")
async def subscribers(services: Services = Depends(get_services)):
    result = await services.api.get_subscribers()
    if result is None:
        return reauth_required(services)
    return result


# ============================================================
# DEV TEST CONSOLE
# ============================================================

@router.post("/test/chat-message")
@limiter.limit("60/minute")
async def test_chat_message(
    request: Request,
    payload: Optional[ChatMessagePayload] = None,
    services: Services = Depends(get_services),
):
    payload = payload or ChatMessagePayload()
    logger.info(f"Test: processing mock chat message from {payload.username}: {payload.message!r}")
    await services.router.simulate_chat_message(payload.username, payload.message)
    state = services.registry.snapshot()
    return {
        "success": True,
        "message": f"Simulated chat message: {payload.username}: {payload.message}",
        "raceOpen": state.is_open,
        "participantCount": len(state.participants),
    }


@router.post("/test/add-participant")
@limiter.limit("60/minute")
async def test_add_participant(
    request: Request,
    payload: Optional[ParticipantPayload] = None,
    services: Services = Depends(get_services),
):
    payload = payload or ParticipantPayload()
    added, reason = await services.registry.add_participant(payload.username)
    state = services.registry.snapshot()
    names = state.names

    if reason == "closed":
        return JSONResponse(status_code=400, content={
            "success": False,
            "message": "Registration is closed. Open it first with /api/registration/open",
        })
    return {
        "success": added,
        "message": f"{payload.username} registered for the race" if added else f"{payload.username} is already registered",
        "participantCount": len(names),
        "participants": names,
    }


@router.post("/test/reauth")
@limiter.limit("10/minute")
async def test_reauth(request: Request, services: Services = Depends(get_services)):
    await services.credentials.clear()
    return {
        "success": True,
        "message": "Tokens cleared. You must re-authenticate with new scopes.",
        "authUrl": services.auth_url,
    }


@router.get("/test/auth-status")
@limiter.limit("30/minute")
async def test_auth_status(request: Request, services: Services = Depends(get_services)):
    settings = services.settings
    token = await services.credentials.valid_credential()
    info = services.credentials.token_info()
    return {
        "needsAuth": info.needs_reauth,
        "clientInfo": {
            "clientId": mask_token(settings.twitch_client_id),
            "redirectUri": settings.twitch_redirect_uri,
        },
        "scopes": services.credentials.scopes,
        "serverBaseUrl": settings.server_base_url,
        "tokenStatus": {
            "hasAccessToken": bool(token),
            "tokenString": mask_token(token),
            "expiresIn": info.expires_in,
            "userLogin": info.user_login or None,
            "missingScopes": info.missing_scopes,
        },
        "eventsub": {
            "state": services.session.state.value,
            "sessionId": services.session.session_id,
            "pendingSubscriptions": [i.event_type for i in services.session.pending_intents],
        },
    }


@router.get("/test/redirect-uri")
async def test_redirect_uri(services: Services = Depends(get_services)):
    settings = services.settings
    return {
        "appRedirectUri": settings.twitch_redirect_uri,
        "appBaseUrl": settings.server_base_url,
        "authCallbackPath": "/auth/callback",
        "broadcasterId": settings.twitch_broadcaster_id,
        "authUrl": services.credentials.authorization_url("test-state"),
    }
