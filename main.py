#!/usr/bin/env python3
"""
LookAway - Main Entry Point

A break reminder that counts down work periods, tells you when to look
away from the screen, and waits for you to stop typing (and for any video
call to end) before starting a break.

Usage:
    python main.py                  # Run with the saved schedule
    python main.py --test           # Short cycles for trying it out
    python main.py --show-schedule  # Print the saved schedule and exit
"""

import argparse
import asyncio
import logging
import sys
import threading
from typing import Any, Callable, List, Optional

import config
from core.break_schedule import BreakSchedule, ScheduleState
from core.clock import SystemClock
from core.time_span import format_time
from core.work_cycle import Phase, WorkCycle
from monitors.camera_activity import CameraActivityMonitor
from monitors.camera_providers import get_default_device_provider
from monitors.inactivity import InactivityGate
from monitors.notifications import NotificationCenter, SuspendDetector
from monitors.system_sleep import SystemSleepMonitor, get_default_notification_source
from monitors.user_activity import UserActivityMonitor
from storage.schedule_store import ScheduleStore, build_work_cycles

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  s          skip the break (or the rest of the work period)
  d [secs]   delay the break (default {delay}s)
  p          pause / resume
  b          take a break now
  r          restart the schedule
  Enter      show status
  q          quit"""


def setup_logging(level: str) -> None:
    """Log to the console and to app.log in the user data directory."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    try:
        config.USER_DATA_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.LOG_FILE))
    except OSError as e:
        print(f"⚠️  Could not open log file {config.LOG_FILE}: {e}")

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=config.LOG_FORMAT,
        handlers=handlers,
    )


class LookAway:
    """
    Command line front end.

    The break schedule runs on an asyncio loop. Keyboard input and platform
    monitor events arrive on other threads and are handed to the loop with
    call_soon_threadsafe.
    """

    def __init__(self, test_mode: bool = False, store: Optional[ScheduleStore] = None):
        self.test_mode = test_mode
        self.store = store or ScheduleStore()
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.schedule: Optional[BreakSchedule] = None
        self.suspend_detector: Optional[SuspendDetector] = None
        self._suspend_task: Optional[asyncio.Task] = None
        self._done: Optional[asyncio.Event] = None
        self._was_waiting = False

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def load_cycles(self) -> List[WorkCycle]:
        """Work cycles from the saved schedule (or the short test cycle)."""
        if self.test_mode:
            return [WorkCycle(config.TEST_WORK_SECONDS, config.TEST_BREAK_SECONDS)]

        configs = self.store.load_schedule()
        if not self.store.data_file.exists():
            # Write the defaults out so they can be edited
            self.store.save_schedule(configs)
        return build_work_cycles(configs)

    def dispatch(self, callback: Callable[..., Any], *args: Any) -> None:
        """Run callback(*args) on the event loop thread."""
        loop = self.loop
        if loop is None or loop.is_closed():
            logger.debug("Event loop not running, dropping event")
            return
        loop.call_soon_threadsafe(callback, *args)

    def build_schedule(self) -> BreakSchedule:
        camera_monitor = CameraActivityMonitor(get_default_device_provider(dispatch=self.dispatch))
        gate = InactivityGate(UserActivityMonitor(), camera_monitor)

        source = get_default_notification_source(dispatch=self.dispatch)
        if isinstance(source, NotificationCenter):
            # No OS lock notifications here, fall back to spotting suspends
            self.suspend_detector = SuspendDetector(source)
        sleep_monitor = SystemSleepMonitor(source)

        schedule = BreakSchedule(
            self.load_cycles(),
            clock=SystemClock(),
            sleep_monitor=sleep_monitor,
            inactivity_gate=gate,
        )
        schedule.on_break_start = self._on_break_start
        schedule.on_break_end = self._on_break_end
        schedule.on_state_change = self._on_state_change
        return schedule

    # ------------------------------------------------------------------
    # Schedule callbacks
    # ------------------------------------------------------------------

    def _on_break_start(self, state: ScheduleState) -> None:
        print(f"\n👀 Time to look away! Break for {format_time(state.remaining_time)}")
        print(f"   's' to skip, 'd' to delay {config.DEFAULT_DELAY_SECONDS}s\n")

    def _on_break_end(self, state: ScheduleState) -> None:
        print("✅ Break over, back to work")

    def _on_state_change(self, state: ScheduleState) -> None:
        if state.is_waiting and not self._was_waiting:
            print("⏳ Break is due, waiting until you're idle and off camera...")
        self._was_waiting = state.is_waiting

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def status_line(self) -> str:
        state = self.schedule.state
        phase = "Break" if state.phase is Phase.BREAKING else "Work"
        if state.is_waiting:
            phase = "Break due"
        paused = " (paused)" if state.is_paused else ""
        return (
            f"{phase} {state.label}{paused} | cycle {state.index + 1}/{state.cycle_count} | "
            f"completed {state.completed}, delayed {state.delayed}, skipped {state.skipped}"
        )

    def handle_command(self, line: str) -> bool:
        """
        Apply one keyboard command. Runs on the event loop thread.

        Args:
            line: Raw input line.

        Returns:
            False if the command wasn't recognised.
        """
        parts = line.strip().split()
        command = parts[0].lower() if parts else ""
        schedule = self.schedule

        if command == "":
            print(self.status_line())
        elif command == "s":
            schedule.skip()
        elif command == "d":
            try:
                seconds = float(parts[1]) if len(parts) > 1 else config.DEFAULT_DELAY_SECONDS
                if schedule.is_blocking:
                    schedule.delay(seconds)
                    print(f"⏰ Break delayed by {seconds:g}s")
                else:
                    print("Not on a break, nothing to delay")
            except ValueError as e:
                print(f"❌ Invalid delay: {e}")
        elif command == "p":
            schedule.toggle_paused()
            print("⏸️  Paused" if schedule.is_paused else "▶️  Resumed")
        elif command == "b":
            schedule.start_break()
        elif command == "r":
            schedule.restart_schedule()
            print("🔄 Schedule restarted")
        elif command in ("h", "?", "help"):
            print(HELP_TEXT.format(delay=config.DEFAULT_DELAY_SECONDS))
        elif command == "q":
            self.quit()
        else:
            print(f"Unknown command '{command}' (h for help)")
            return False
        return True

    def quit(self) -> None:
        if self._done is not None:
            self._done.set()

    def _keyboard_listener(self) -> None:
        """Read commands from stdin and hand them to the event loop."""
        try:
            for line in sys.stdin:
                self.dispatch(self.handle_command, line)
        except (EOFError, OSError) as e:
            logger.debug(f"Keyboard listener stopped: {e}")

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def run_async(self) -> None:
        self.loop = asyncio.get_running_loop()
        self._done = asyncio.Event()
        self.schedule = self.build_schedule()

        if self.suspend_detector is not None:
            self._suspend_task = self.loop.create_task(self.suspend_detector.watch())

        self.schedule.start()
        print("\n" + "=" * 60)
        print("👁️  LookAway - time to rest your eyes")
        print("=" * 60)
        print(self.status_line())
        print(HELP_TEXT.format(delay=config.DEFAULT_DELAY_SECONDS) + "\n")

        try:
            await self._done.wait()
        finally:
            await self.schedule.stop()
            if self._suspend_task is not None:
                self._suspend_task.cancel()
                await asyncio.gather(self._suspend_task, return_exceptions=True)
            print("\n👋 Goodbye!")

    def run(self) -> None:
        """
        Run until 'q' or Ctrl+C.

        On macOS, screen lock notifications are only delivered to a running
        main run loop, so the main thread runs it and asyncio gets a thread.
        """
        keyboard_thread = threading.Thread(target=self._keyboard_listener, daemon=True)
        keyboard_thread.start()

        if sys.platform != "darwin":
            asyncio.run(self.run_async())
            return

        try:
            from PyObjCTools import AppHelper  # type: ignore[import-not-found]
        except ImportError:
            logger.warning("PyObjC not available - screen lock detection disabled")
            asyncio.run(self.run_async())
            return

        def run_loop_thread() -> None:
            try:
                asyncio.run(self.run_async())
            finally:
                AppHelper.callAfter(AppHelper.stopEventLoop)

        loop_thread = threading.Thread(target=run_loop_thread, daemon=True)
        loop_thread.start()
        try:
            AppHelper.runConsoleEventLoop(installInterrupt=True)
        finally:
            self.dispatch(self.quit)
            loop_thread.join(timeout=5.0)


def show_schedule(store: ScheduleStore) -> None:
    print(f"\nSchedule ({store.data_file}):")
    for position, cycle_config in enumerate(store.load_schedule(), start=1):
        print(f"  {position}. work {cycle_config.work_length}, break {cycle_config.break_length}")
    print()


def main():
    """Parse arguments and run LookAway."""
    parser = argparse.ArgumentParser(
        description="LookAway - Break reminder for your eyes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                  Run with the saved schedule
  python main.py --test           20 second work periods, 10 second breaks
  python main.py --show-schedule  Print the saved schedule
        """
    )
    parser.add_argument(
        "--test",
        action="store_true",
        help="Use a short schedule for trying things out",
    )
    parser.add_argument(
        "--show-schedule",
        action="store_true",
        help="Print the saved schedule and exit",
    )
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging verbosity (default: %(default)s)",
    )
    args = parser.parse_args()

    setup_logging(args.log_level)

    if args.show_schedule:
        show_schedule(ScheduleStore())
        return

    try:
        LookAway(test_mode=args.test).run()
    except KeyboardInterrupt:
        print("\n\n👋 Goodbye!")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"\nFatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
