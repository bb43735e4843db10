from __future__ import annotations

import os

import uvicorn

from herald.apps.api.main import create_app


def main() -> None:
    # Serve the admin API; services are wired from env-driven settings during startup.
    app = create_app()
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("HERALD_API_PORT", "8000")))


if __name__ == "__main__":
    main()
