"""
Office Access Service API
Development entry point
"""

import os
import uvicorn

from office_access.core.config import settings


if __name__ == "__main__":
    is_dev = settings.ENVIRONMENT != "production"
    port = int(os.getenv("PORT", str(settings.port)))
    uvicorn.run(
        # Use import string so reload/workers work correctly (and avoid warnings).
        "office_access.main:app",
        host=settings.host,
        port=port,
        reload=is_dev,
        log_level=settings.LOG_LEVEL.lower()
    )
