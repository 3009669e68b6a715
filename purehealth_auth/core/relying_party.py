"""
Relying Party resolution.

The RP ID sent to the authenticator must equal the hostname the browser is
on, otherwise the ceremony fails closed in the browser. The hostname is taken
from the request (Origin, then X-Forwarded-Host, then Host) and used only if
it is one of the configured allowed RP IDs; anything else falls back to the
configured default.
"""

import logging
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from fastapi import Request

from purehealth_auth.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelyingParty:
    id: str
    name: str
    origins: list[str] = field(default_factory=list)


def default_relying_party(settings: Settings | None = None) -> RelyingParty:
    settings = settings or get_settings()
    return RelyingParty(
        id=settings.webauthn_rp_id,
        name=settings.webauthn_rp_name,
        origins=settings.webauthn_origins,
    )


def _split_host(value: str) -> tuple[str | None, str]:
    """Return (scheme or None, netloc) for an Origin URL or a bare Host value."""
    if "://" in value:
        parts = urlsplit(value)
        return parts.scheme, parts.netloc
    return None, value


def _hostname(netloc: str) -> str:
    host = netloc.rsplit("@", 1)[-1]
    if host.startswith("["):
        return host[1 : host.index("]")].lower()
    return host.split(":", 1)[0].lower()


def resolve_relying_party(
    *,
    origin: str | None,
    forwarded_host: str | None,
    host: str | None,
    scheme: str,
    settings: Settings | None = None,
) -> RelyingParty:
    """
    Pick the RP ID and expected origins for one request.

    Args:
        origin: Value of the Origin header, if any
        forwarded_host: Value of X-Forwarded-Host, if any
        host: Value of the Host header, if any
        scheme: Request scheme, used when the hostname came from a Host header
    """
    settings = settings or get_settings()
    rp = default_relying_party(settings)

    for candidate in (origin, forwarded_host, host):
        if not candidate or candidate == "null":
            continue
        candidate_scheme, netloc = _split_host(candidate.split(",", 1)[0].strip())
        hostname = _hostname(netloc)
        if hostname not in settings.webauthn_rp_ids:
            logger.debug(f"Ignoring request hostname {hostname!r}: not an allowed RP ID")
            continue

        observed_origin = f"{candidate_scheme or scheme}://{netloc}"
        origins = list(rp.origins)
        if observed_origin not in origins:
            origins.append(observed_origin)
        return RelyingParty(id=hostname, name=rp.name, origins=origins)

    return rp


def get_relying_party(request: Request) -> RelyingParty:
    """FastAPI dependency: the relying party as seen by this request."""
    return resolve_relying_party(
        origin=request.headers.get("origin"),
        forwarded_host=request.headers.get("x-forwarded-host"),
        host=request.headers.get("host"),
        scheme=request.headers.get("x-forwarded-proto", request.url.scheme),
    )
