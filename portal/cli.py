"""Portal command line.

Usage:
    portal serve --port 8000
    portal init-db
    portal jobs process-notifications
    portal jobs billing-reminders
"""

import argparse
import asyncio
import json
import logging

from portal.db import close_db, init_db

JOBS = ["process-notifications", "billing-reminders", "overdue-reminders", "task-reminders"]


async def _run_job(name: str, force: bool = False):
    from portal.notifications import reminders
    from portal.notifications.processor import NotificationProcessor

    await init_db()
    try:
        if name == "process-notifications":
            return await NotificationProcessor().process_pending(force=force)
        if name == "billing-reminders":
            return await reminders.send_billing_reminders()
        if name == "overdue-reminders":
            return await reminders.send_overdue_reminders()
        if name == "task-reminders":
            return await reminders.send_overdue_task_reminders()
        raise ValueError(f"Unknown job: {name}")
    finally:
        await close_db()


async def _init_db():
    await init_db()
    await close_db()


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="portal",
        description="Portal backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  portal serve --host 0.0.0.0 --port 8000
  portal init-db
  portal jobs process-notifications --force
  portal jobs task-reminders
"""
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    subparsers.add_parser("init-db", help="Create database tables")

    jobs = subparsers.add_parser("jobs", help="Run a scheduled job once")
    jobs.add_argument("job", choices=JOBS)
    jobs.add_argument("--force", action="store_true", help="Ignore quiet hours")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    if args.command == "serve":
        import uvicorn
        uvicorn.run("portal.main:app", host=args.host, port=args.port, reload=args.reload)

    elif args.command == "init-db":
        asyncio.run(_init_db())
        print("✅ Database ready")

    elif args.command == "jobs":
        result = asyncio.run(_run_job(args.job, force=args.force))
        print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
