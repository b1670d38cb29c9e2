"""
FormDesk server. `python main.py` serves the API with uvicorn;
ASGI servers can import `main:app` directly.
"""

import uvicorn

from formdesk.core.config import get_settings
from formdesk.factory import create_app

app = create_app()


def run():
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        reload=settings.env == "development",
    )


if __name__ == "__main__":
    run()
