"""Console entry points: enter-maintenance and exit-maintenance."""

import argparse
import logging
import sys
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from mailmaint import crud
from mailmaint.clients.base import ControlPlaneClient
from mailmaint.clients.exchange_shell import ExchangeShellClient
from mailmaint.core.config import settings
from mailmaint.database import SessionLocal, init_db
from mailmaint.plans import enter_maintenance, exit_maintenance
from mailmaint.schemas import ActivationPolicy, Outcome, ProgressEvent, RunStatus, StepStatus
from mailmaint.sequencer import MaintenanceSequencer

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STEP_FAILED = 1
EXIT_RESOLUTION_FAILED = 2
EXIT_CANCELLED = 130

_MARKERS = {
    StepStatus.STARTED: "....",
    StepStatus.SUCCEEDED: " OK ",
    StepStatus.FAILED: "FAIL",
    StepStatus.SKIPPED: "SKIP",
    StepStatus.WAITING: "WAIT",
}


def print_event(event: ProgressEvent):
    line = f"[{_MARKERS[event.status]}] {event.step}"
    if event.detail:
        line += f": {event.detail}"
    print(line, flush=True)


def exit_code_for(outcome: Outcome) -> int:
    if outcome.status == RunStatus.COMPLETED:
        return EXIT_OK
    if outcome.status == RunStatus.CANCELLED:
        return EXIT_CANCELLED
    if outcome.error_kind == "ResolutionError":
        return EXIT_RESOLUTION_FAILED
    return EXIT_STEP_FAILED


def _add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--poll-interval", type=float, default=None,
                        help=f"seconds between database mount checks (default {settings.POLL_INTERVAL_SECONDS:g})")
    parser.add_argument("--max-attempts", type=int, default=None,
                        help="give up after this many mount checks (default: wait forever)")
    parser.add_argument("--no-record", action="store_true",
                        help="do not read or write the saved activation policy")
    parser.add_argument("-v", "--verbose", action="store_true", help="log control-plane commands")


def _configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _build_sequencer(args, client: ControlPlaneClient) -> MaintenanceSequencer:
    kwargs = {"listeners": [print_event]}
    if args.poll_interval is not None:
        kwargs["poll_interval"] = args.poll_interval
    if args.max_attempts:
        kwargs["max_attempts"] = args.max_attempts
    return MaintenanceSequencer(client, **kwargs)


def _print_summary(outcome: Outcome):
    if outcome.succeeded:
        print(f"{outcome.plan.value} completed for {outcome.identity}")
    else:
        print(f"{outcome.plan.value} {outcome.status.value} for {outcome.identity} "
              f"at '{outcome.failed_step}' ({outcome.error_kind}): {outcome.error}", file=sys.stderr)
        if outcome.status == RunStatus.FAILED and outcome.error_kind != "ResolutionError":
            print("Steps already completed were not rolled back.", file=sys.stderr)


def enter_main(argv: Optional[List[str]] = None, client_factory: Callable[[], ControlPlaneClient] = ExchangeShellClient) -> int:
    parser = argparse.ArgumentParser(
        prog="enter-maintenance",
        description="Drain a mailbox server and take it offline for maintenance.",
    )
    parser.add_argument("identity", help="server to put into maintenance")
    parser.add_argument("partner", nargs="?", default=None,
                        help="server that receives the queued transport messages")
    _add_common_arguments(parser)
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    sequencer = _build_sequencer(args, client_factory())
    try:
        outcome = enter_maintenance(sequencer, args.identity, partner=args.partner)
    except KeyboardInterrupt:
        print("Interrupted; the server may be partially in maintenance.", file=sys.stderr)
        return EXIT_CANCELLED

    if outcome.record:
        print(f"Previous database auto-activation policy for {outcome.identity}: "
              f"{outcome.record.activation_policy.value}")
        print(f"Restore it with: exit-maintenance {outcome.identity} --policy {outcome.record.activation_policy.value}")
        if not args.no_record:
            try:
                init_db()
                db = SessionLocal()
                try:
                    crud.save_maintenance_record(db, outcome.record)
                finally:
                    db.close()
            except SQLAlchemyError as e:
                logger.error(f"Could not save maintenance record for {outcome.identity}: {e}")
                print("The previous policy was NOT saved; note it before running exit-maintenance.", file=sys.stderr)

    _print_summary(outcome)
    return exit_code_for(outcome)


def exit_main(argv: Optional[List[str]] = None, client_factory: Callable[[], ControlPlaneClient] = ExchangeShellClient) -> int:
    parser = argparse.ArgumentParser(
        prog="exit-maintenance",
        description="Bring a mailbox server back from maintenance.",
    )
    parser.add_argument("identity", help="server to take out of maintenance")
    parser.add_argument("--policy", type=ActivationPolicy.parse, default=None,
                        help="database auto-activation policy to restore (default Unrestricted)")
    parser.add_argument("--restore-recorded", action="store_true",
                        help="restore the policy saved by enter-maintenance")
    _add_common_arguments(parser)
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    policy = args.policy
    if policy is None and args.restore_recorded and not args.no_record:
        try:
            init_db()
            db = SessionLocal()
            try:
                record = crud.get_maintenance_record(db, args.identity)
            finally:
                db.close()
        except SQLAlchemyError as e:
            logger.error(f"Could not read maintenance record for {args.identity}: {e}")
            print("Saved activation policy is unavailable; pass --policy.", file=sys.stderr)
            return EXIT_STEP_FAILED
        if record is None:
            print(f"No saved activation policy for {args.identity}; pass --policy.", file=sys.stderr)
            return EXIT_STEP_FAILED
        policy = record.activation_policy
        print(f"Restoring saved activation policy {policy.value}")

    sequencer = _build_sequencer(args, client_factory())
    try:
        outcome = exit_maintenance(sequencer, args.identity, policy=policy)
    except KeyboardInterrupt:
        print("Interrupted; the server may be partially out of maintenance.", file=sys.stderr)
        return EXIT_CANCELLED

    if outcome.succeeded and not args.no_record:
        try:
            init_db()
            db = SessionLocal()
            try:
                crud.delete_maintenance_record(db, args.identity)
            finally:
                db.close()
        except SQLAlchemyError as e:
            logger.error(f"Could not delete maintenance record for {args.identity}: {e}")
            print(f"The saved policy for {args.identity} was not removed.", file=sys.stderr)

    _print_summary(outcome)
    return exit_code_for(outcome)


def enter():
    sys.exit(enter_main())


def exit_():
    sys.exit(exit_main())
