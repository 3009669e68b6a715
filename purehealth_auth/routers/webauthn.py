"""
WebAuthn Router

Endpoints for passkey ceremonies and passkey management:
- Registration: temporary (new user) and existing-user, options + verify
- Authentication: options + verify (returns session tokens)
- Management: list, set primary, delete

Failed ceremonies are written to the activity log after the request's
transaction is rolled back, so the audit entry survives the failure.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from purehealth_auth.config import get_settings
from purehealth_auth.core.auth import CurrentActiveUser, UserPrincipal, token_claims
from purehealth_auth.core.database import DbSession
from purehealth_auth.core.exceptions import (
    AuthenticationFailed,
    PasskeyError,
    PossibleCloneDetected,
)
from purehealth_auth.core.relying_party import RelyingParty, get_relying_party
from purehealth_auth.core.security import create_access_token, create_refresh_token
from purehealth_auth.models.contracts.user import UserPublic
from purehealth_auth.models.contracts.webauthn import (
    AuthenticationOptionsRequest,
    AuthenticationOptionsResponse,
    AuthenticationVerifyRequest,
    CredentialDeleteResponse,
    CredentialListResponse,
    CredentialPublic,
    RegistrationOptionsRequest,
    RegistrationOptionsResponse,
    RegistrationProfile,
    RegistrationVerifyRequest,
    RegistrationVerifyResponse,
    SessionResponse,
    TempRegistrationOptionsResponse,
    TempRegistrationVerifyRequest,
)
from purehealth_auth.models.enums import ActivityAction
from purehealth_auth.models.orm.user import User
from purehealth_auth.services.audit_service import get_audit_service
from purehealth_auth.services.challenge_ledger import ChallengeLedger
from purehealth_auth.services.passkey_service import PasskeyService
from purehealth_auth.services.temp_registration import TemporaryRegistrationBuffer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webauthn", tags=["webauthn"])


def get_passkey_service(request: Request, db: DbSession) -> PasskeyService:
    """Build the ceremony engine over the application's ephemeral store."""
    settings = get_settings()
    store = request.app.state.ephemeral_store
    ttl = settings.webauthn_challenge_ttl_seconds
    return PasskeyService(
        db,
        ChallengeLedger(store, ttl_seconds=ttl),
        TemporaryRegistrationBuffer(store, ttl_seconds=ttl),
        settings=settings,
    )


PasskeyServiceDep = Annotated[PasskeyService, Depends(get_passkey_service)]
RelyingPartyDep = Annotated[RelyingParty, Depends(get_relying_party)]


# =============================================================================
# Registration Endpoints
# =============================================================================


@router.post(
    "/registration/temp-options",
    response_model=TempRegistrationOptionsResponse,
    summary="Start registration for a new user",
    description="Buffer the submitted profile and return registration options. "
    "The user is only created once the passkey is verified.",
)
async def get_temp_registration_options(
    profile: RegistrationProfile,
    service: PasskeyServiceDep,
    rp: RelyingPartyDep,
) -> TempRegistrationOptionsResponse:
    temp_registration_id, options = await service.generate_temp_registration_options(
        profile, relying_party=rp
    )
    return TempRegistrationOptionsResponse(
        temp_registration_id=temp_registration_id,
        options=options,
    )


@router.post(
    "/registration/options",
    response_model=RegistrationOptionsResponse,
    summary="Get passkey registration options",
    description="Generate WebAuthn registration options for adding a passkey to "
    "the signed-in user's account.",
)
async def get_registration_options(
    request: RegistrationOptionsRequest,
    user: CurrentActiveUser,
    service: PasskeyServiceDep,
    rp: RelyingPartyDep,
) -> RegistrationOptionsResponse:
    _require_self(user, request.user_id)
    options = await service.generate_registration_options(
        request.user_id, is_primary=request.is_primary, relying_party=rp
    )
    return RegistrationOptionsResponse(options=options)


@router.post(
    "/registration/verify-temp",
    response_model=SessionResponse,
    summary="Complete registration for a new user",
    description="Verify the first passkey, create the user and sign them in.",
)
async def verify_temp_registration(
    request: TempRegistrationVerifyRequest,
    http_request: Request,
    response: Response,
    db: DbSession,
    service: PasskeyServiceDep,
    rp: RelyingPartyDep,
) -> SessionResponse:
    audit = get_audit_service(db)
    try:
        user, passkey = await service.verify_temp_registration(
            request.temp_registration_id,
            request.response,
            profile=request.profile,
            relying_party=rp,
        )
    except PasskeyError as e:
        logger.warning(f"Temporary registration {request.temp_registration_id} rejected: {e.error}")
        await db.rollback()
        audit.log(
            ActivityAction.PASSKEY_REGISTER_FAILED,
            "passkey",
            details=f"{e.error}: {e.message}",
            ip_address=_client_ip(http_request),
        )
        await db.commit()
        raise

    audit.log(
        ActivityAction.USER_CREATE,
        "user",
        user.id,
        user=user,
        details=f"Registered {user.role.value} {user.email}",
        ip_address=_client_ip(http_request),
    )
    audit.log(
        ActivityAction.PASSKEY_REGISTER,
        "passkey",
        passkey.id,
        user=user,
        details="Primary passkey registered",
        ip_address=_client_ip(http_request),
    )
    await db.commit()

    return _issue_session(user, response)


@router.post(
    "/registration/verify",
    response_model=RegistrationVerifyResponse,
    summary="Verify passkey registration",
    description="Verify the registration response for an existing user's new passkey.",
)
async def verify_registration(
    request: RegistrationVerifyRequest,
    http_request: Request,
    user: CurrentActiveUser,
    db: DbSession,
    service: PasskeyServiceDep,
    rp: RelyingPartyDep,
) -> RegistrationVerifyResponse:
    _require_self(user, request.user_id)
    audit = get_audit_service(db)
    try:
        passkey = await service.verify_registration(
            request.user_id,
            request.response,
            is_primary=request.is_primary,
            relying_party=rp,
        )
    except PasskeyError as e:
        logger.warning(f"Passkey registration for user {request.user_id} rejected: {e.error}")
        await db.rollback()
        audit.log(
            ActivityAction.PASSKEY_REGISTER_FAILED,
            "passkey",
            user_id=request.user_id,
            details=f"{e.error}: {e.message}",
            ip_address=_client_ip(http_request),
        )
        await db.commit()
        raise

    audit.log(
        ActivityAction.PASSKEY_REGISTER,
        "passkey",
        passkey.id,
        user_id=request.user_id,
        details=f"{'Primary' if passkey.is_primary else 'Backup'} passkey registered",
        ip_address=_client_ip(http_request),
    )
    await db.commit()

    return RegistrationVerifyResponse(
        verified=True,
        credential_id=passkey.id,
        is_primary=passkey.is_primary,
        message="Passkey registered successfully",
    )


# =============================================================================
# Authentication Endpoints
# =============================================================================


@router.post(
    "/authentication/options",
    response_model=AuthenticationOptionsResponse,
    summary="Get passkey authentication options",
    description="Generate WebAuthn authentication options for the account with this email.",
)
async def get_authentication_options(
    request: AuthenticationOptionsRequest,
    service: PasskeyServiceDep,
    rp: RelyingPartyDep,
) -> AuthenticationOptionsResponse:
    user_id, options = await service.generate_authentication_options(
        request.email, relying_party=rp
    )
    return AuthenticationOptionsResponse(user_id=user_id, options=options)


@router.post(
    "/authentication/verify",
    response_model=SessionResponse,
    summary="Verify passkey authentication",
    description="Verify the authentication response and return session tokens. "
    "Every failure is reported as the same 401.",
)
async def verify_authentication(
    request: AuthenticationVerifyRequest,
    http_request: Request,
    response: Response,
    db: DbSession,
    service: PasskeyServiceDep,
    rp: RelyingPartyDep,
) -> SessionResponse:
    audit = get_audit_service(db)
    try:
        user = await service.verify_authentication(
            request.user_id, request.response, relying_party=rp
        )
    except PasskeyError as e:
        logger.warning(f"Passkey authentication for user {request.user_id} rejected: {e.error}")
        await db.rollback()
        audit.log(
            ActivityAction.CLONE_DETECTED
            if isinstance(e, PossibleCloneDetected)
            else ActivityAction.LOGIN_FAILED,
            "user",
            request.user_id,
            user_id=request.user_id,
            details=f"{e.error}: {e.message}",
            ip_address=_client_ip(http_request),
        )
        await db.commit()
        raise AuthenticationFailed() from e

    audit.log(
        ActivityAction.LOGIN,
        "user",
        user.id,
        user=user,
        details="Passkey login",
        ip_address=_client_ip(http_request),
    )
    await db.commit()

    return _issue_session(user, response)


# =============================================================================
# Management Endpoints
# =============================================================================


@router.get(
    "/credentials",
    response_model=CredentialListResponse,
    summary="List the signed-in user's passkeys",
)
async def list_credentials(
    user: CurrentActiveUser,
    service: PasskeyServiceDep,
) -> CredentialListResponse:
    passkeys = await service.list_credentials(user.user_id)
    return CredentialListResponse(
        credentials=[CredentialPublic.model_validate(p) for p in passkeys],
        count=len(passkeys),
    )


@router.put(
    "/credentials/{credential_id}/primary",
    response_model=CredentialPublic,
    summary="Make a passkey the primary one",
)
async def set_primary_credential(
    credential_id: UUID,
    http_request: Request,
    user: CurrentActiveUser,
    db: DbSession,
    service: PasskeyServiceDep,
) -> CredentialPublic:
    passkey = await service.set_primary_credential(user.user_id, credential_id)

    get_audit_service(db).log(
        ActivityAction.PASSKEY_SET_PRIMARY,
        "passkey",
        passkey.id,
        user_id=user.user_id,
        details=f"Set {passkey.name} as primary",
        ip_address=_client_ip(http_request),
    )
    await db.commit()

    return CredentialPublic.model_validate(passkey)


@router.delete(
    "/credentials/{credential_id}",
    response_model=CredentialDeleteResponse,
    summary="Delete a passkey",
    description="Delete one of the signed-in user's passkeys. The last passkey "
    "on an account cannot be deleted.",
)
async def delete_credential(
    credential_id: UUID,
    http_request: Request,
    user: CurrentActiveUser,
    db: DbSession,
    service: PasskeyServiceDep,
) -> CredentialDeleteResponse:
    passkey = await service.delete_credential(user.user_id, credential_id)

    get_audit_service(db).log(
        ActivityAction.PASSKEY_DELETE,
        "passkey",
        credential_id,
        user_id=user.user_id,
        details=f"Deleted {passkey.name}",
        ip_address=_client_ip(http_request),
    )
    await db.commit()

    logger.info(f"Passkey {credential_id} deleted for user {user.user_id}")
    return CredentialDeleteResponse(deleted=True, credential_id=credential_id)


# =============================================================================
# Helper Functions
# =============================================================================


def _require_self(user: UserPrincipal, user_id: UUID) -> None:
    if user.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot manage passkeys of another user",
        )


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def set_auth_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    """Set HttpOnly session cookies for browser clients."""
    settings = get_settings()
    secure = settings.is_production

    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=settings.access_token_expire_minutes * 60,
        path="/",
    )
    response.set_cookie(
        key="refresh_token",
        value=refresh_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
        path="/",
    )


def _issue_session(user: User, response: Response) -> SessionResponse:
    claims = token_claims(user)
    access_token = create_access_token(claims)
    refresh_token, _ = create_refresh_token({"sub": claims["sub"]})
    set_auth_cookies(response, access_token, refresh_token)

    return SessionResponse(
        verified=True,
        user=UserPublic.model_validate(user),
        access_token=access_token,
        refresh_token=refresh_token,
    )
