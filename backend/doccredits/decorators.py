# Overview: Request decorators for API routes; principal resolution and identity reconciliation.

from functools import wraps
from flask import request, jsonify, g, current_app

from .services import identity_service, credit_service
from .services.identity_service import AuthPrincipal


def header_principal_provider(req) -> AuthPrincipal | None:
    """
    Default AuthPrincipalProvider.

    Reads the principal forwarded by the upstream auth proxy. The proxy is
    trusted to strip these headers from client requests.
    """
    external_id = (req.headers.get("X-Auth-User-Id") or "").strip()
    if not external_id:
        return None
    return AuthPrincipal(
        external_id=external_id,
        first_name=req.headers.get("X-Auth-First-Name"),
        last_name=req.headers.get("X-Auth-Last-Name"),
        email=req.headers.get("X-Auth-Email"),
        image_url=req.headers.get("X-Auth-Image-Url"),
    )


def header_entitlement_provider(req, principal: AuthPrincipal) -> set[str]:
    """Default PlanEntitlementProvider: comma-separated X-Auth-Plans header."""
    raw = req.headers.get("X-Auth-Plans") or ""
    return {p.strip() for p in raw.split(",") if p.strip()}


def _principal_provider():
    return current_app.config.get("PRINCIPAL_PROVIDER") or header_principal_provider


def _entitlement_provider():
    return current_app.config.get("ENTITLEMENT_PROVIDER") or header_entitlement_provider


def require_user(f):
    """
    Require an authenticated principal and establish the user context.

    Sets the following Flask g attributes:
    - g.principal: The AuthPrincipal from the provider
    - g.current_user: The reconciled (and, for patients, allocated) User
    - g.allocation: The AllocationResult for this request

    Returns 401 without a principal and 503 when the identity cannot be
    established. Allocation failures are not request failures: the stale
    balance is served and allocation is attempted again next request.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        principal = _principal_provider()(request)
        if principal is None:
            return jsonify({"error": "Authentication required"}), 401

        identity = identity_service.reconcile_identity(principal)
        if identity is None:
            return jsonify({"error": "Could not establish identity, try again later"}), 503

        active_plans = _entitlement_provider()(request, principal)
        allocation = credit_service.allocate_for_entitlements(
            identity.user,
            lambda tier: tier in active_plans,
            latest_purchase=identity.latest_purchase,
        )

        g.principal = principal
        g.current_user = allocation.user or identity.user
        g.allocation = allocation

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require the reconciled user to hold one of the given roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, 'current_user'):
                return jsonify({"error": "Authentication required"}), 401
            if g.current_user.role not in roles:
                return jsonify({
                    "error": "Role not permitted",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator
