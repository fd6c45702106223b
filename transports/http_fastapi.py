"""HTTP transport serving the function with uvicorn."""

from __future__ import annotations

import uvicorn

from fnruntime.main import create_app
from fnruntime.settings import get_settings

app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        app,
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":  # pragma: no cover - manual run helper
    main()
