"""
Command line interface

Loads a booking request JSON, runs the automation service and renders its
event stream. Exit code 0 means the booking reached Completed.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from rich.console import Console
from rich.table import Table

from .config import AppPaths, ConfigManager, load_settings
from .exceptions import RequestValidationError
from .models.booking import BookingRequest, CaptchaBackend
from .services.automation.automation_service import AutomationService
from .services.automation.events import LogEvent, StateChangeEvent, WorkflowEvent
from .services.automation.state_machine import BookingState
from .services.log_service import configure_logging
from .services.recovery_service import RecoveryStore
from .services.session_service import SessionStore

LEVEL_STYLES = {
    "DEBUG": "dim",
    "INFO": "white",
    "WARNING": "yellow",
    "ERROR": "bold red",
}


class CLIHandler:
    """CLI Handler Class"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.paths = AppPaths()
        self.config_manager = ConfigManager(self.paths)

    def create_argument_parser(self) -> argparse.ArgumentParser:
        """Create command line argument parser"""
        parser = argparse.ArgumentParser(
            description="Tatkal train ticket booking automation",
            prog="railbooker",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )

        parser.add_argument(
            "--request",
            type=str,
            help="Booking request JSON file (TRAIN_NO, PASSENGER_DETAILS, ...)"
        )

        parser.add_argument(
            "--settings",
            type=str,
            help="JSON file overriding automation timings and URLs"
        )

        parser.add_argument(
            "--data-dir",
            type=str,
            help="Directory for cookies, checkpoints, logs and screenshots (default: ~/.railbooker)"
        )

        headless = parser.add_mutually_exclusive_group()
        headless.add_argument("--headless", dest="headless", action="store_true", default=None,
                              help="Run the browser without a window")
        headless.add_argument("--headed", dest="headless", action="store_false",
                              help="Show the browser window")

        parser.add_argument(
            "--captcha",
            type=str.lower,
            choices=[backend.value.lower() for backend in CaptchaBackend],
            help="Override the CAPTCHA solver from the request (case-insensitive)"
        )

        parser.add_argument(
            "--show-checkpoint",
            action="store_true",
            help="Print the last recovery checkpoint and exit"
        )

        parser.add_argument(
            "--clear-session",
            action="store_true",
            help="Delete saved session cookies before running"
        )

        parser.add_argument(
            "--verbose",
            action="store_true",
            help="Enable verbose logging output"
        )

        return parser

    def validate_arguments(self, args: argparse.Namespace) -> Tuple[bool, Optional[str]]:
        """
        Validate command line arguments

        Returns:
            Tuple[bool, Optional[str]]: (is_valid, error_message)
        """
        if args.show_checkpoint or args.clear_session:
            if args.request and not Path(args.request).is_file():
                return False, f"Request file not found: {args.request}"
            return True, None

        if not args.request:
            return False, "--request is required"

        if not Path(args.request).is_file():
            return False, f"Request file not found: {args.request}"

        if args.settings and not Path(args.settings).is_file():
            return False, f"Settings file not found: {args.settings}"

        return True, None

    def load_request(self, args: argparse.Namespace) -> Tuple[Optional[BookingRequest], List[str]]:
        """Load the request file and apply command line overrides"""
        try:
            request = self.config_manager.load_request(args.request)
        except RequestValidationError as e:
            return None, e.errors
        except (OSError, ValueError) as e:
            return None, [f"Could not read {args.request}: {e}"]

        overrides = {}
        if args.headless is not None:
            overrides["headless"] = args.headless
        if args.captcha:
            overrides["captcha_backend"] = CaptchaBackend.from_wire(args.captcha)
        if overrides:
            request = request.with_overrides(**overrides)
        return request, request.validate()

    def show_checkpoint(self) -> bool:
        checkpoint = RecoveryStore(self.paths.checkpoint_file).load_checkpoint()
        if checkpoint is None:
            self.console.print("No recovery checkpoint found")
            return True

        table = Table(title="Last checkpoint")
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("State", checkpoint.current_state)
        table.add_row("Saved at", checkpoint.timestamp.isoformat())
        table.add_row("Attempts", str(checkpoint.attempt_count))
        table.add_row("Last error", checkpoint.last_error or "-")
        table.add_row("Request", json.dumps(checkpoint.request, indent=2))
        self.console.print(table)
        return True

    def print_event(self, event: WorkflowEvent):
        if isinstance(event, StateChangeEvent):
            self.console.print(
                f"[bold cyan]{event.previous.value} → {event.current.value}[/bold cyan]"
            )
        elif isinstance(event, LogEvent):
            style = LEVEL_STYLES.get(event.level, "white")
            timestamp = event.timestamp.astimezone().strftime("%H:%M:%S")
            self.console.print(f"[dim]{timestamp}[/dim] [{style}]{event.message}[/{style}]")

    async def _render_events(self, queue: asyncio.Queue):
        while True:
            self.print_event(await queue.get())

    async def run_booking(self, request: BookingRequest, service: AutomationService) -> bool:
        """
        Run a booking and stream its events to the console

        Returns:
            bool: True if the booking completed
        """
        queue = service.subscribe()
        renderer = asyncio.create_task(self._render_events(queue))

        try:
            result = await service.start(request)
            if not result.ok:
                self.console.print(f"[bold red]❌ {result.error}[/bold red]")
                return False

            final_state = await service.wait()
        except asyncio.CancelledError:
            service.stop()
            await service.shutdown()
            raise
        finally:
            renderer.cancel()
            await asyncio.gather(renderer, return_exceptions=True)
            while not queue.empty():
                self.print_event(queue.get_nowait())
            service.unsubscribe(queue)

        if final_state is BookingState.COMPLETED:
            self.console.print("[bold green]🎉 Booking workflow completed[/bold green]")
            return True

        self.console.print(f"[bold red]💥 Booking ended in state {final_state.value}[/bold red]")
        return False

    async def run(self, args: argparse.Namespace) -> bool:
        if args.data_dir:
            self.paths = AppPaths(args.data_dir)
            self.config_manager = ConfigManager(self.paths)

        configure_logging(args.verbose, self.paths.log_dir, self.console)

        if args.show_checkpoint:
            return self.show_checkpoint()

        if args.clear_session:
            SessionStore(self.paths.cookie_file).clear()
            self.console.print("Saved session cleared")
            if not args.request:
                return True

        request, errors = self.load_request(args)
        if errors:
            for error in errors:
                self.console.print(f"[red]❌ {error}[/red]")
            return False

        settings = load_settings(args.settings)
        service = AutomationService(settings=settings, paths=self.paths)

        self.console.rule("Tatkal booking")
        self.console.print(f"   Train: {request.train_no} ({request.train_coach})")
        self.console.print(f"   Route: {request.source_station} → {request.destination_station}")
        self.console.print(f"   Date: {request.travel_date}")
        self.console.print(f"   Passengers: {len(request.passengers)}")
        self.console.print(f"   CAPTCHA solver: {request.captcha_backend.value}")
        self.console.rule()

        return await self.run_booking(request, service)


def main():
    """CLI main entry point"""
    cli_handler = CLIHandler()
    parser = cli_handler.create_argument_parser()
    args = parser.parse_args()

    is_valid, error_msg = cli_handler.validate_arguments(args)
    if not is_valid:
        parser.error(error_msg)

    try:
        success = asyncio.run(cli_handler.run(args))
        sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        cli_handler.console.print("\n⚠️  Booking cancelled by user")
        sys.exit(1)
    except ValueError as e:
        cli_handler.console.print(f"💥 Invalid settings: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
