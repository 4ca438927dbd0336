"""Run the gateway: ``python -m chatbridge.gateway``."""

import uvicorn

from config.settings import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "chatbridge.gateway.main:app",
        host=settings.gateway_host,
        port=settings.gateway_port,
        log_level=settings.log_level,
    )
