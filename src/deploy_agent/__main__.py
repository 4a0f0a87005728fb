"""CLI entrypoint: deploy-agent [CONFIG_DIR]."""

from __future__ import annotations

import argparse

from deploy_agent.core.config import Settings


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="deploy-agent",
        description="Serve the update trigger for a single compose deployment",
    )
    parser.add_argument(
        "config_dir",
        nargs="?",
        help="Directory holding source_location, source_server, source_password "
        "and orchestrator_password (default: $CONFIG_DIR or ./config)",
    )
    parser.add_argument("--host", help="Listen address (default: $HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Listen port (default: $PORT or 1337)")
    args = parser.parse_args(argv)

    overrides = {
        key: value
        for key, value in (("config_dir", args.config_dir), ("host", args.host), ("port", args.port))
        if value is not None
    }
    settings = Settings(**overrides)

    from deploy_agent.main import run

    run(settings)


if __name__ == "__main__":
    main()
