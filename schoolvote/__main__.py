import logging
import os

import uvicorn

from .api import create_app
from .auth import issue_session_token
from .config import load_settings
from .logging_config import configure_logging
from .models import AccessLevel
from .services import build_services

logger = logging.getLogger("schoolvote")


def main() -> None:
    settings = load_settings()
    configure_logging(settings)
    services = build_services(settings)

    # First run: create the root account so somebody can sign in.
    if not services.admins.get_all_admins():
        username = os.getenv("SCHOOLVOTE_ROOT_USERNAME", "root")
        result = services.admins.create_admin(AccessLevel.ROOT, username, "Root Admin", AccessLevel.ROOT)
        if result.success and not settings.is_production:
            token = issue_session_token(result.admin.id, AccessLevel.ROOT, settings.jwt_secret, settings.session_hours)
            logger.warning("Created root admin %r; development session token: %s", result.admin.username, token)

    uvicorn.run(create_app(services, settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
