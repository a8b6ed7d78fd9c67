from __future__ import annotations

import snapledger.models  # noqa: F401
from snapledger.core.config import settings
from snapledger.core.db import SessionLocal, engine
from snapledger.core.logging import get_logger, log_event
from snapledger.core.models import Base
from snapledger.modules.identity.service import ensure_admin

logger = get_logger(__name__)


def bootstrap() -> None:
    if settings.environment == "dev" and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)

    if not settings.init_admin_email or not settings.init_admin_password:
        return

    # Comma-separated list of admin emails
    admin_emails = [e.strip() for e in settings.init_admin_email.split(",") if e.strip()]

    with SessionLocal() as session:
        for email in admin_emails:
            user = ensure_admin(session, email=email, password=settings.init_admin_password)
            log_event(logger, "bootstrap.admin.ensured", user_id=str(user.id))
