"""Entry point for the release listener."""

import asyncio
import contextlib
import sys

from pydantic import ValidationError

from release_listener.config import get_settings
from release_listener.logging import get_logger, setup_logging
from release_listener.server import run_server


def main() -> None:
    """Load settings and start the listener."""
    try:
        settings = get_settings()
    except ValidationError as exc:
        get_logger("release_listener").error(
            "invalid_configuration",
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]}
                for err in exc.errors()
            ],
        )
        sys.exit(1)

    setup_logging(settings)
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run_server(settings))


if __name__ == "__main__":
    main()
