"""
CLI entry point for the CodeRide Live web server.

Run:  coderide-live [--port 8765] [--host 127.0.0.1]
"""

import argparse
import logging

from config import app_config, flow_config, get_credentials_info


def _configure_logging(level_name: str):
    # uvicorn's log_level only affects its own loggers
    level = getattr(logging, level_name.upper(), logging.INFO)
    for name in ("web", "flow", "live", "accounts", "provider_service"):
        log = logging.getLogger(name)
        log.setLevel(level)
        if not log.handlers:
            h = logging.StreamHandler()
            h.setLevel(level)
            h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [web] %(message)s"))
            log.addHandler(h)


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="CodeRide Live — activity pipeline server")
    parser.add_argument("--port", type=int, default=8765, help="Server port (default: 8765)")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--log-level", default=app_config.log_level, help="Log level (default: LOG_LEVEL or INFO)")
    args = parser.parse_args()

    _configure_logging("DEBUG" if app_config.debug_mode else args.log_level)

    print(f"\n  {app_config.title}")
    print(f"  http://{args.host}:{args.port}")
    print(f"  {get_credentials_info()}")
    print(f"  Watchdog: first event {flow_config.first_event_timeout:g}s, inactivity {flow_config.inactivity_timeout:g}s\n")

    from web import app
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


if __name__ == "__main__":
    main()
