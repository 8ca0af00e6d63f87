from typing import Optional

from fastapi import Header, Request

from screener.core.config import settings
from screener.core.exceptions import ValidationError
from screener.services.screening import ScreeningCoordinator


def get_coordinator(request: Request) -> ScreeningCoordinator:
    """The coordinator built at startup; tests override this dependency."""
    return request.app.state.screening.coordinator


def get_employer_id(
    employer_id: Optional[str] = Header(default=None, alias=settings.employer_id_header),
) -> str:
    # Authentication happens upstream; the gateway forwards the employer id
    if not employer_id or not employer_id.strip():
        raise ValidationError(f"{settings.employer_id_header} header is required")
    return employer_id.strip()
