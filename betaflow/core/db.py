# betaflow/core/db.py
from betaflow.core.config import settings

TORTOISE_ORM = {
    "connections": {
        "default": settings.DATABASE_URL,
    },
    "apps": {
        "models": {
            "models": ["betaflow.models.db"],
            "default_connection": "default",
        }
    },
    "use_tz": False,
    "timezone": "UTC",
}
