"""FastAPI dependencies for authentication and runtime access."""

from collections.abc import Mapping
from dataclasses import dataclass

from fastapi import Depends, Header, Request

from orchestrator.errors import Forbidden, ResearchError, Unauthorized
from orchestrator.query_orchestrator import QueryOrchestrator
from orchestrator.usage_reports import UsageReporter
from server.runtime import ResearchRuntime
from utils.logger import get_logger

logger = get_logger(__name__)

ROLES = ("researcher", "manager", "admin")
DEFAULT_ROLE = "researcher"
SENSITIVE_HEADERS = {"x-api-key", "authorization", "cookie"}


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str = DEFAULT_ROLE


def parse_api_keys(raw: str) -> dict[str, Principal]:
    """
    Parse ``key:user_id:role`` triples separated by commas.

    A bare ``key`` authenticates as a researcher whose user id is the key itself.
    Entries with an unknown role are skipped.
    """
    principals: dict[str, Principal] = {}
    for entry in raw.split(","):
        parts = [p.strip() for p in entry.strip().split(":")]
        if not parts[0]:
            continue
        key = parts[0]
        user_id = parts[1] if len(parts) > 1 and parts[1] else key
        role = parts[2].lower() if len(parts) > 2 and parts[2] else DEFAULT_ROLE
        if role not in ROLES:
            logger.warning(f"Ignoring API key for user '{user_id}' with unknown role '{role}'")
            continue
        principals[key] = Principal(user_id=user_id, role=role)
    return principals


def redact_sensitive_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        key: "[REDACTED]" if key.lower() in SENSITIVE_HEADERS and value else value
        for key, value in headers.items()
    }


def get_runtime(request: Request) -> ResearchRuntime:
    return request.app.state.runtime


async def get_principal(
    request: Request,
    x_api_key: str | None = Header(None),
    runtime: ResearchRuntime = Depends(get_runtime),
) -> Principal:
    """Validate API key from X-API-Key header and resolve it to a user and role."""
    request_id = getattr(request.state, "request_id", "unknown")
    redacted_headers = redact_sensitive_headers(dict(request.headers))
    principals = parse_api_keys(runtime.config.API_KEYS)

    if not principals:
        logger.error(
            "API authentication not configured",
            extra={"extra_fields": {"request_id": request_id, "headers": redacted_headers}},
        )
        raise ResearchError("API authentication not configured")

    principal = principals.get(x_api_key or "")
    if principal is None:
        logger.warning(
            "API authentication failed",
            extra={"extra_fields": {"request_id": request_id, "headers": redacted_headers}},
        )
        raise Unauthorized("Invalid or missing API key")

    return principal


def require_roles(*roles: str):
    """Dependency factory: only principals holding one of ``roles`` pass."""

    async def dependency(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in roles:
            raise Forbidden(
                f"Role '{principal.role}' may not access this resource",
                details={"required": list(roles)},
            )
        return principal

    return dependency


def get_orchestrator(runtime: ResearchRuntime = Depends(get_runtime)) -> QueryOrchestrator:
    return runtime.orchestrator


def get_reporter(runtime: ResearchRuntime = Depends(get_runtime)) -> UsageReporter:
    return runtime.reporter
