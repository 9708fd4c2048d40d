from __future__ import annotations

import sys

import uvicorn

from .app import create_app
from .settings import ConfigError, load_settings


def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"hrp: {e}", file=sys.stderr)
        return 2

    app = create_app(settings)
    uvicorn.run(app, host=settings.listen_host, port=settings.proxy_port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
