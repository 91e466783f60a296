"""Run the Onboard Access API server."""

import uvicorn

from packages.api.config import Settings

if __name__ == "__main__":
    settings = Settings()
    uvicorn.run(
        "packages.api:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
