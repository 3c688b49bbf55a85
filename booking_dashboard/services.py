from .errors import ValidationError
from .models import DEFAULT_SERVICES

BLOCKED_SERVICE = "Blocked Slot"
BLOCKED_NAME = "BLOCKED"


def parse_services(raw) -> list[str]:
    """Turn a comma separated string (or a list) into a clean service list."""
    if isinstance(raw, str):
        raw = raw.split(",")
    services = [str(s).strip() for s in raw or [] if str(s).strip()]
    return services or list(DEFAULT_SERVICES)


def resolve_service(offered, requested) -> str:
    requested = (requested or "").strip()
    if not requested:
        raise ValidationError("Service is required")
    for service in offered:
        if service.lower() == requested.lower():
            return service
    raise ValidationError(f"Unknown service: {requested}")
