"""
CLI entry point for the Skema daemon.

Run:  python -m web [--port 9999] [--dir /path/to/project] [--provider claude] [--mode mcp]
"""

import argparse
import logging
import os
import socket

from config import AVAILABLE_MODES, PROVIDER_NAMES, DaemonConfig, app_config


def _port_in_use(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return True
    return False


def main():
    import uvicorn

    defaults = DaemonConfig()
    parser = argparse.ArgumentParser(description="Skema daemon")
    parser.add_argument("--port", type=int, default=defaults.port, help=f"Server port (default: {defaults.port})")
    parser.add_argument("--host", default=defaults.host, help=f"Server host (default: {defaults.host})")
    parser.add_argument("--dir", default=defaults.working_directory, help="Project directory the agent works in")
    parser.add_argument("--provider", choices=PROVIDER_NAMES, default=defaults.default_provider,
                        help="Coding-agent CLI to start with")
    parser.add_argument("--mode", choices=AVAILABLE_MODES, default=defaults.default_mode,
                        help="direct-cli runs the agent here; mcp queues annotations for an external agent")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, app_config.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    working_directory = os.path.abspath(os.path.expanduser(args.dir))
    if not os.path.isdir(working_directory):
        print(f"\n  Error: directory not found: {working_directory}\n")
        raise SystemExit(1)

    if _port_in_use(args.host, args.port):
        print(f"\n  Error: port {args.port} is already in use.")
        print(f"  Another daemon may be running; stop it or pass --port.\n")
        raise SystemExit(1)

    config = DaemonConfig(
        port=args.port,
        host=args.host,
        working_directory=working_directory,
        default_provider=args.provider,
        default_mode=args.mode,
    )

    from web import create_app
    app = create_app(config)
    state = app.state.daemon
    print(f"\n  {app_config.title} v{app_config.version}")
    print(f"  {config.url}")
    print(f"  Working directory: {config.working_directory}")
    print(f"  Mode: {state.settings.mode}  Provider: {state.settings.provider}\n")

    uvicorn.run(app, host=config.host, port=config.port,
                log_level="debug" if app_config.debug_mode else "warning")
