import argparse
import logging

import uvicorn


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Worksite Attendance check-in service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0", help="Host interface")
    serve.add_argument("--port", type=int, default=8000, help="Port")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    subparsers.add_parser("init-db", help="Create tables and the bootstrap admin user")
    return parser


def main() -> int:
    args = build_parser().parse_args()

    if args.command == "serve":
        uvicorn.run("worksite_attendance.main:app", host=args.host, port=args.port, reload=args.reload, log_level="info")
        return 0

    if args.command == "init-db":
        from worksite_attendance.main import bootstrap_defaults

        bootstrap_defaults()
        logging.getLogger("worksite.backend").info("Database initialised.")
        return 0

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
