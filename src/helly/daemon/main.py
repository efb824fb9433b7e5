"""Daemon entrypoint: build the runtime and serve the webhook app."""

from __future__ import annotations

import argparse

from src.helly.runtime.service import get_runtime_service


def run_daemon(*, host: str = "0.0.0.0", port: int = 8000, log_level: str = "info") -> int:
    runtime = get_runtime_service()
    runtime.start(source="daemon")

    try:
        import uvicorn
    except Exception as exc:  # pragma: no cover - dependency error guard
        runtime.stop(source="daemon")
        raise RuntimeError("uvicorn is required to serve the webhook app") from exc

    try:
        uvicorn.run("app.main:app", host=host, port=port, log_level=log_level, reload=False)
    finally:
        runtime.stop(source="daemon")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the Helly Telegram webhook server.")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host.")
    parser.add_argument("--port", type=int, default=8000, help="Bind port.")
    parser.add_argument("--log-level", default="info", help="uvicorn log level.")
    args = parser.parse_args(argv)
    return run_daemon(host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    raise SystemExit(main())
