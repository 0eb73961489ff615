"""
Forum Edge — Content Security Policy & Security Headers
=========================================================

What:  Per-request CSP nonce + policy string, and the fixed defense-in-depth
       header sets for HTML pages, API responses, and static assets.
Why:   Inline scripts are only allowed when they carry the nonce of the
       response that delivered them; everything else is blocked.
How:   Pure functions. The only non-deterministic input is the nonce, which
       comes from the OS CSPRNG on every call.
Who:   The edge gate calls generate_csp_header() once per request and
       get_security_headers() with its result.

Nonce Rules:
    - Fresh for every request, never memoized or cached.
    - Leaves the server only in the CSP header, the x-nonce header,
      and the nonce attributes of the HTML the same request renders.

Development Mode:
    Hot reload tooling evaluates code and injects inline scripts without a
    nonce, so development relaxes script-src. The production branch never
    contains 'unsafe-eval' or 'unsafe-inline'.
"""

import base64
import os
from typing import Dict, List, Mapping, NamedTuple, Optional, Tuple, Union
from urllib.parse import urlparse

from forum_edge.exceptions import NonceGenerationError

NONCE_BYTES = 16
NONCE_HEADER = "x-nonce"

DirectiveValue = Union[List[str], bool]

SUPABASE_WILDCARD = "https://*.supabase.co"

REQUIRED_SECURITY_HEADERS = (
    "Content-Security-Policy",
    "X-Frame-Options",
    "X-Content-Type-Options",
    "Strict-Transport-Security",
)


class SecurityPolicy(NamedTuple):
    nonce: str
    csp_header: str


def generate_nonce() -> str:
    """
    128 bits from the OS randomness source, base64 encoded.

    Raises:
        NonceGenerationError: The platform has no usable randomness source.
    """
    try:
        raw = os.urandom(NONCE_BYTES)
    except NotImplementedError as exc:
        raise NonceGenerationError(context={"reason": str(exc)}) from exc
    return base64.b64encode(raw).decode("ascii")


def _supabase_origins(supabase_url: Optional[str]) -> Tuple[List[str], List[str]]:
    """(https origins, wss origins) for the configured project."""
    host = urlparse(supabase_url).hostname if supabase_url else None
    if not host:
        return [SUPABASE_WILDCARD], []
    return [f"https://{host}", SUPABASE_WILDCARD], [f"wss://{host}"]


def get_csp_directives(
    nonce: str,
    is_development: bool = False,
    supabase_url: Optional[str] = None,
) -> Dict[str, DirectiveValue]:
    """
    Ordered CSP directives for one response.

    Production script-src relies on the nonce plus 'strict-dynamic' so
    scripts loaded by a trusted (nonced) script are trusted as well.
    """
    https_origins, wss_origins = _supabase_origins(supabase_url)
    nonce_source = f"'nonce-{nonce}'"

    if is_development:
        return {
            "default-src": ["'self'"],
            "script-src": ["'self'", "'unsafe-eval'", "'unsafe-inline'"],
            "style-src": ["'self'", "'unsafe-inline'"],
            "img-src": ["'self'", "blob:", "data:", "https:"],
            "font-src": ["'self'", "data:"],
            "connect-src": ["'self'", *https_origins, *wss_origins, "ws://localhost:*"],
            "media-src": ["'self'", "blob:", "https:"],
            "object-src": ["'none'"],
            "frame-src": ["'self'"],
            "base-uri": ["'self'"],
            "form-action": ["'self'"],
            "frame-ancestors": ["'none'"],
        }

    return {
        "default-src": ["'self'"],
        "script-src": [
            "'self'",
            nonce_source,
            "'strict-dynamic'",
            "https://vercel.live",
            "https://va.vercel-scripts.com",
        ],
        "style-src": ["'self'", nonce_source, "https://fonts.googleapis.com"],
        "img-src": ["'self'", "blob:", "data:", "https:"],
        "font-src": ["'self'", "data:", "https://fonts.gstatic.com"],
        "connect-src": [
            "'self'",
            *https_origins,
            "https://vercel.live",
            "https://va.vercel-scripts.com",
            *wss_origins,
        ],
        "media-src": ["'self'", "blob:", SUPABASE_WILDCARD],
        "object-src": ["'none'"],
        "frame-src": ["'self'"],
        "base-uri": ["'self'"],
        "form-action": ["'self'"],
        "frame-ancestors": ["'none'"],
        "upgrade-insecure-requests": True,
    }


def csp_directives_to_string(directives: Mapping[str, DirectiveValue]) -> str:
    parts = []
    for name, value in directives.items():
        if isinstance(value, bool):
            if value:
                parts.append(name)
        elif value:
            parts.append(f"{name} {' '.join(value)}")
    return "; ".join(parts)


def add_csp_reporting(csp: str, report_uri: Optional[str] = None) -> str:
    if not report_uri:
        return csp
    return f"{csp}; report-uri {report_uri}"


def generate_csp_header(
    is_development: bool = False,
    *,
    supabase_url: Optional[str] = None,
    report_uri: Optional[str] = None,
) -> SecurityPolicy:
    """
    Create the nonce and the matching CSP string for one request.

    Every call draws a new nonce; callers that need the same nonce in
    several places must reuse the returned SecurityPolicy.
    """
    nonce = generate_nonce()
    directives = get_csp_directives(nonce, is_development, supabase_url)
    csp_header = add_csp_reporting(csp_directives_to_string(directives), report_uri)
    return SecurityPolicy(nonce=nonce, csp_header=csp_header)


def get_security_headers(csp_header: str) -> Dict[str, str]:
    """
    Headers for HTML responses. Deterministic for a given CSP string.

    Cross-Origin-Resource-Policy is cross-origin and COEP is deliberately
    absent: media is served from the Supabase storage origin.
    """
    return {
        "Content-Security-Policy": csp_header,
        "X-DNS-Prefetch-Control": "on",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": ", ".join([
            "camera=()",
            "microphone=()",
            "geolocation=()",
            "interest-cohort=()",
            "payment=()",
            "usb=()",
        ]),
        "Cross-Origin-Opener-Policy": "same-origin-allow-popups",
        "Cross-Origin-Resource-Policy": "cross-origin",
    }


def get_api_security_headers(allowed_origin: str) -> Dict[str, str]:
    """Headers for JSON endpoints: no CSP, CORS scoped to one origin."""
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "Access-Control-Allow-Origin": allowed_origin,
        "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Access-Control-Max-Age": "86400",
    }


def get_static_asset_headers() -> Dict[str, str]:
    # Static files are content-hashed, so they can be cached forever
    return {
        "Cache-Control": "public, max-age=31536000, immutable",
        "X-Content-Type-Options": "nosniff",
    }


def validate_security_headers(headers: Mapping[str, str]) -> Tuple[bool, List[str]]:
    """
    Check a response's headers for the ones every HTML page must carry.

    Args:
        headers: Any case-insensitive mapping (Starlette or httpx Headers).

    Returns:
        (valid, missing header names)
    """
    missing = [name for name in REQUIRED_SECURITY_HEADERS if name not in headers]
    return not missing, missing
