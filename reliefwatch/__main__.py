"""
Run the monitor with uvicorn:

    python -m reliefwatch

HOST, PORT and RELOAD come from settings; reload only applies in development.
"""

import uvicorn

from reliefwatch.core.config import settings


def main() -> None:
    uvicorn.run(
        "reliefwatch.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD and settings.is_development,
        log_config=None,  # setup_logging owns the handlers
    )


if __name__ == "__main__":
    main()
