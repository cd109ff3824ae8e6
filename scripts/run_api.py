from __future__ import annotations

import argparse

import uvicorn

from venuedesk.apps.api.main import create_app
from venuedesk.core.config import get_settings


def main() -> None:
    # Build the app explicitly so the database is owned by this process's lifespan.
    parser = argparse.ArgumentParser(description="Run the VenueDesk API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()
    app = create_app(get_settings())
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
