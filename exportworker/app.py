import argparse
import json
import threading
from datetime import date
from pathlib import Path

from . import __version__
from .config import Settings
from .consumer import JobCommandConsumer
from .env import load_env
from .errors import ExportWorkerError
from .jobs import restore_users
from .logger import get_logger
from .models import BatchStatus, JobExecution, JobParameterNames
from .notifier import parse_output_files
from .publishers import SqliteJobUpdatePublisher, get_sqs_client
from .worker import ExportWorker


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {value!r}")


def build_settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    if getattr(args, "okapi_url", None):
        settings.okapi_url = args.okapi_url
    if getattr(args, "tenant", None):
        settings.okapi_tenant = args.tenant
    if getattr(args, "work_dir", None):
        settings.work_dir = Path(args.work_dir)
    if getattr(args, "db", None):
        settings.db_path = Path(args.db)
    return settings


def print_execution(execution: JobExecution) -> None:
    print(f"Job: {execution.job_id}")
    print(f"Status: {execution.status.value}")
    if execution.exit_status.exit_description:
        print(f"Exit: {execution.exit_status.exit_description}")
    for step in execution.step_executions:
        print(f"  {step.step_name}: {step.status.value} read={step.read_count} written={step.write_count} skipped={step.skip_count}")
    for ref in parse_output_files(execution.execution_context.get(JobParameterNames.OUTPUT_FILES_IN_STORAGE)):
        print(f"  file: {ref}")
    errors = execution.all_failure_exceptions()
    if errors:
        print("Errors:")
        for e in errors:
            print(f" - {e}")


def _run(args: argparse.Namespace, launch) -> None:
    worker = ExportWorker(build_settings(args))
    try:
        execution = launch(worker)
        print_execution(execution)
    except ExportWorkerError as e:
        raise SystemExit(str(e))
    finally:
        worker.close()
        get_logger().log_metrics_summary()
    if execution.status == BatchStatus.FAILED:
        raise SystemExit(1)


def cmd_circulation_log(args: argparse.Namespace) -> None:
    _run(args, lambda w: w.export_circulation_log(
        query=args.query, offset=args.offset, limit=args.limit, job_id=args.job_id, wait=True,
    ))


def cmd_authority_stats(args: argparse.Namespace) -> None:
    if args.from_date > args.to_date:
        raise SystemExit("--from must not be after --to")
    _run(args, lambda w: w.export_authority_stats(args.from_date, args.to_date, job_id=args.job_id, wait=True))


def cmd_bursar(args: argparse.Namespace) -> None:
    _run(args, lambda w: w.export_bursar_fees_fines(query=args.query, job_id=args.job_id, wait=True))


def cmd_bulk_update(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    original = Path(args.original) if args.original else None

    worker = ExportWorker(build_settings(args))
    try:
        execution = worker.bulk_update_users(input_path, original_file=original, job_id=args.job_id)
        print(f"Updating users from {input_path} (job {execution.job_id}). Ctrl-C stops and rolls back.")
        try:
            execution = worker.wait(execution)
        except KeyboardInterrupt:
            print(worker.stop_and_rollback(execution.job_id))
        print_execution(execution)
    except ExportWorkerError as e:
        raise SystemExit(str(e))
    finally:
        worker.close()
        get_logger().log_metrics_summary()


def cmd_rollback(args: argparse.Namespace) -> None:
    """Restore a saved snapshot after the worker that took it is gone."""
    worker = ExportWorker(build_settings(args))
    try:
        snapshot_ref = str(worker.snapshots.load(args.snapshot))
        restored = restore_users(worker.users, worker.snapshots, args.job_id, snapshot_ref)
    except FileNotFoundError as e:
        raise SystemExit(str(e))
    except ExportWorkerError as e:
        raise SystemExit(f"Rollback failed: {e}")
    finally:
        worker.close()
    print(f"Restored {restored} users from {args.snapshot}")


def cmd_consume(args: argparse.Namespace) -> None:
    settings = build_settings(args)
    queue_url = args.queue_url or settings.sqs_queue_url
    if not queue_url:
        raise SystemExit("No command queue. Pass --queue-url or set SQS_QUEUE_URL.")
    worker = ExportWorker(settings)
    consumer = JobCommandConsumer(worker, get_sqs_client(settings.aws_region), queue_url, wait_seconds=args.wait)
    stop = threading.Event()
    try:
        consumer.run(stop)
    except KeyboardInterrupt:
        print("Stopping consumer, waiting for running jobs...")
        stop.set()
    finally:
        worker.close()
        get_logger().log_metrics_summary()


def cmd_updates(args: argparse.Namespace) -> None:
    settings = build_settings(args)
    if not settings.db_path.exists():
        print(f"Database not found: {settings.db_path}")
        return
    publisher = SqliteJobUpdatePublisher(settings.db_path)
    try:
        updates = publisher.list_updates(job_id=args.job_id)
    finally:
        publisher.close()
    if not updates:
        print("No job updates.")
        return
    for update in updates:
        if args.json:
            print(json.dumps(update, ensure_ascii=False))
            continue
        exit_status = update.get("exitStatus") or {}
        print(f"{update.get('updatedDate')} {update['id']} {update.get('batchStatus')} {exit_status.get('exitCode', '')}")
        for f in update.get("files") or []:
            print(f"  file: {f}")
        if update.get("errorDetails"):
            print(f"  errors: {update['errorDetails']}")


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--okapi-url", help="Okapi gateway URL (or set OKAPI_URL)")
    p.add_argument("--tenant", help="Tenant id (or set OKAPI_TENANT)")
    p.add_argument("--work-dir", help="Shared work directory (or set EXPORT_WORK_DIR)")
    p.add_argument("--db", help="SQLite job updates database (or set EXPORT_DB_PATH)")


def main():
    # Load .env if present (OKAPI_URL, OKAPI_TOKEN, SQS_QUEUE_URL, etc.)
    load_env()
    parser = argparse.ArgumentParser(prog="export-worker", description="Batch export/update worker")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    circ = subparsers.add_parser("circulation-log", help="Export circulation audit log records to CSV")
    circ.add_argument("--query", help="CQL filter (default: all records)")
    circ.add_argument("--offset", type=int, default=0, help="First record to export (default: 0)")
    circ.add_argument("--limit", type=int, help="Maximum records to export")
    circ.add_argument("--job-id", help="Job id (default: random UUID)")
    _add_common(circ)
    circ.set_defaults(func=cmd_circulation_log)

    auth = subparsers.add_parser("authority-stats", help="Export authority heading update statistics to CSV")
    auth.add_argument("--from", dest="from_date", type=_parse_date, required=True, help="Start date YYYY-MM-DD")
    auth.add_argument("--to", dest="to_date", type=_parse_date, required=True, help="End date YYYY-MM-DD")
    auth.add_argument("--job-id", help="Job id (default: random UUID)")
    _add_common(auth)
    auth.set_defaults(func=cmd_authority_stats)

    burs = subparsers.add_parser("bursar", help="Export patron charges and refunds to CSV")
    burs.add_argument("--query", help="CQL filter for accounts (default: open accounts)")
    burs.add_argument("--job-id", help="Job id (default: random UUID)")
    _add_common(burs)
    burs.set_defaults(func=cmd_bursar)

    upd = subparsers.add_parser("bulk-update", help="Update users from a JSON-lines file, with rollback on Ctrl-C")
    upd.add_argument("--input", required=True, help="JSON-lines file with edited user records")
    upd.add_argument("--original", help="Original records to use as the rollback snapshot (default: fetched)")
    upd.add_argument("--job-id", help="Job id (default: random UUID)")
    _add_common(upd)
    upd.set_defaults(func=cmd_bulk_update)

    rb = subparsers.add_parser("rollback", help="Write a saved user snapshot back")
    rb.add_argument("--job-id", required=True, help="Job the snapshot belongs to")
    rb.add_argument("--snapshot", required=True, help="Snapshot file path")
    _add_common(rb)
    rb.set_defaults(func=cmd_rollback)

    con = subparsers.add_parser("consume", help="Run jobs from an SQS command queue until interrupted")
    con.add_argument("--queue-url", help="Command queue URL (or set SQS_QUEUE_URL)")
    con.add_argument("--wait", type=int, default=20, help="Long-poll seconds per receive (default: 20)")
    _add_common(con)
    con.set_defaults(func=cmd_consume)

    ups = subparsers.add_parser("updates", help="List job status updates from the SQLite sink")
    ups.add_argument("--job-id", help="Only updates for this job")
    ups.add_argument("--json", action="store_true", help="Print raw JSON payloads")
    _add_common(ups)
    ups.set_defaults(func=cmd_updates)

    args = parser.parse_args()

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        get_logger().logger.setLevel(Settings.from_env().log_level)
        args.func(args)
        return

    parser.print_help()


if __name__ == "__main__":
    main()
