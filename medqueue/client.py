#!/usr/bin/env python3
"""MedQueue command-line client

Runs a doctor dashboard or a patient queue session against the queue backend and
prints user-visible notices as they arrive.

Usage:
    medqueue-client doctors
    medqueue-client book --name "Ada" --doctor D1
    medqueue-client doctor --doctor-id D1
    medqueue-client patient --patient-id P1 --doctor-id D1 [--position 3] [--wait 45]
"""
import sys
import asyncio
import logging
import argparse

from .app import QueueClientApp
from .core.errors import QueueClientError
from .core.message_system import Notification
from .core.models import BookingResult
from .utils.config_loader import ConfigManager
from .utils.logging_utils import setup_logging

logger = logging.getLogger(__name__)


def print_notification(notification: Notification) -> None:
    print(f"{notification.formatted_timestamp} [{notification.level.value}] "
          f"{notification.title}: {notification.content}")


async def _wait_forever() -> None:
    await asyncio.Event().wait()


async def run_doctors(app: QueueClientApp, args) -> int:
    for doctor in await app.api.list_doctors():
        availability = "" if doctor.is_available is None else (
            " (available)" if doctor.is_available else " (unavailable)")
        print(f"{doctor.id}\t{doctor.name}\t{doctor.specialization}{availability}")
    return 0


async def run_doctor(app: QueueClientApp, args) -> int:
    await app.start()
    session = app.doctor_session(args.doctor_id)
    await session.start()
    try:
        await _wait_forever()
    finally:
        await session.stop()
    return 0


async def _follow_patient(app: QueueClientApp, session) -> int:
    await app.start()
    await session.start()
    print(f"Position {session.position}, estimated wait {session.wait_time} min")
    try:
        await _wait_forever()
    finally:
        await session.stop()
    return 0


async def run_book(app: QueueClientApp, args) -> int:
    session = await app.book(args.name, args.doctor)
    return await _follow_patient(app, session)


async def run_patient(app: QueueClientApp, args) -> int:
    booking = BookingResult(
        patient_id=args.patient_id,
        patient_name=args.name or "",
        doctor_id=args.doctor_id,
        position_in_queue=args.position or 0,
        estimated_wait_time=args.wait or 0,
    )
    return await _follow_patient(app, app.patient_session(booking))


COMMANDS = {
    "doctors": run_doctors,
    "book": run_book,
    "doctor": run_doctor,
    "patient": run_patient,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='MedQueue clinic queue client')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    parser.add_argument('--base-url', help='Override the backend base URL')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('doctors', help='List doctors')

    book = subparsers.add_parser('book', help='Book a consultation and follow the queue')
    book.add_argument('--name', required=True)
    book.add_argument('--doctor', required=True, help='Doctor id')

    doctor = subparsers.add_parser('doctor', help='Run a doctor dashboard session')
    doctor.add_argument('--doctor-id', required=True)

    patient = subparsers.add_parser('patient', help='Follow an existing booking')
    patient.add_argument('--patient-id', required=True)
    patient.add_argument('--doctor-id', required=True)
    patient.add_argument('--name')
    patient.add_argument('--position', type=int)
    patient.add_argument('--wait', type=int, help='Estimated wait in minutes')
    return parser


async def _run(args) -> int:
    overrides = {"server": {"base_url": args.base_url}} if args.base_url else None
    config = ConfigManager(overrides=overrides)
    setup_logging("DEBUG" if args.debug else config.get('logging', 'level', 'INFO'),
                  fmt=config.get('logging', 'format'))

    app = QueueClientApp(config)
    app.notifier.add_listener(print_notification)
    try:
        return await COMMANDS[args.command](app, args)
    finally:
        await app.stop()


def main(argv=None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user")
        return 0
    except (QueueClientError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
