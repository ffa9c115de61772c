"""
Command-line interface for io-snapshot.

This module provides CLI commands for instrumenting a project, recording
capture events through the background collector, restoring the original code
and replaying the recorded calls against it.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import requests

from . import configure_logging
from .config import ConfigManager, SnapshotConfig, validate_file_pattern, validate_port, validate_timeout
from .daemon import CollectorClient, get_saved_pid, is_process_running, remove_pid, save_pid, spawn_collector, stop_process
from .differ import DiffConfig
from .paths import SessionPaths
from .storage import SnapshotLog
from .transformer import Instrumenter
from .verifier import FunctionStatus, Verifier

logger = logging.getLogger(__name__)

DIVIDER = "━" * 20
STARTUP_TIMEOUT = 10.0


def divider(label: str = "") -> str:
    return f"{DIVIDER} {label} {DIVIDER}" if label else DIVIDER * 2


class SnapshotCLI:
    """Command-line interface for io-snapshot."""

    def __init__(self, project_root: Optional[Path] = None):
        self.project_root = Path(project_root or Path.cwd()).resolve()
        self.paths = SessionPaths(self.project_root)
        self.config_manager: Optional[ConfigManager] = None
        self.config = SnapshotConfig()

    def run(self, args: Optional[list[str]] = None) -> int:
        """Run the CLI with given arguments."""
        parser = self._create_parser()
        parsed_args = parser.parse_args(args)
        configure_logging()

        if not hasattr(parsed_args, "func"):
            parser.print_help()
            return 1

        try:
            self.config_manager = ConfigManager(parsed_args.config, project_root=self.project_root)
            self.config = self.config_manager.get_config()
            self._apply_output_flags(parsed_args)
            return parsed_args.func(parsed_args)
        except KeyboardInterrupt:
            logger.info("\nInterrupted by user")
            return 1
        except Exception as e:
            logger.error(f"Error: {e}")
            if self.config.verbose:
                import traceback

                traceback.print_exc()
            return 1

    def _apply_output_flags(self, args) -> None:
        if args.verbose:
            self.config.verbose = True
        if args.quiet:
            self.config.quiet = True

        if self.config.verbose:
            level = logging.DEBUG
        elif self.config.quiet:
            level = logging.WARNING
        else:
            level = logging.INFO
        configure_logging(level)

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create the argument parser."""
        parser = argparse.ArgumentParser(
            prog="io-snapshot",
            description="Capture and compare function behavior snapshots for zero-regression refactoring",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )

        parser.add_argument("--config", "-c", type=Path, help="Configuration file path")

        parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

        parser.add_argument("--quiet", "-q", action="store_true", help="Quiet output")

        subparsers = parser.add_subparsers(dest="command", help="Available commands")

        # Inject command
        inject_parser = subparsers.add_parser("inject", help="Inject the recorder into target files")
        inject_parser.add_argument("target", nargs="?", help="Glob pattern of files to instrument")
        inject_parser.add_argument(
            "--force", "-f", action="store_true", help="Force re-inject even if already injected"
        )
        inject_parser.set_defaults(func=self._inject_command)

        # Record command
        record_parser = subparsers.add_parser(
            "record", help="Inject, start the collector, and begin recording snapshots"
        )
        record_parser.add_argument("target", nargs="?", help="Glob pattern of files to instrument")
        record_parser.add_argument("--port", "-p", help="Port to run the collector on")
        record_parser.add_argument(
            "--timeout", "-t", help="Auto-shutdown after N minutes of inactivity"
        )
        record_parser.add_argument(
            "--force", "-f", action="store_true", help="Force re-inject even if already injected"
        )
        record_parser.set_defaults(func=self._record_command)

        # Stop command
        stop_parser = subparsers.add_parser(
            "stop", help="Stop recording, stop the collector, and restore original code"
        )
        stop_parser.add_argument("--port", "-p", help="Port where the collector is running")
        stop_parser.set_defaults(func=self._stop_command)

        # Test command
        test_parser = subparsers.add_parser(
            "test", help="Replay snapshots against current code to verify behavior"
        )
        test_parser.add_argument("target", nargs="?", help="Glob pattern of files to search")
        test_parser.add_argument("--summary", type=Path, help="Path to write a summary JSON file")
        test_parser.set_defaults(func=self._test_command)

        # Clean command
        clean_parser = subparsers.add_parser("clean", help="Restore original files and delete snapshots")
        clean_parser.add_argument("target", nargs="?", help="Glob pattern of files to restore")
        clean_parser.set_defaults(func=self._clean_command)

        # Status command
        status_parser = subparsers.add_parser("status", help="Show collector status")
        status_parser.add_argument("--port", "-p", help="Port where the collector is running")
        status_parser.set_defaults(func=self._status_command)

        # Config command
        config_parser = subparsers.add_parser("config", help="Configuration management")
        config_parser.add_argument(
            "--init", action="store_true", help="Initialize default configuration file"
        )
        config_parser.add_argument("--show", action="store_true", help="Show current configuration")
        config_parser.set_defaults(func=self._config_command)

        return parser

    def _snapshot_log(self) -> SnapshotLog:
        return SnapshotLog(self.project_root / self.config.snapshot_file)

    def _instrumenter(self) -> Instrumenter:
        return Instrumenter(self.project_root)

    def _target(self, args) -> str:
        if getattr(args, "target", None):
            return validate_file_pattern(args.target)
        return self.config.pattern

    def _port(self, args) -> int:
        if getattr(args, "port", None):
            return validate_port(args.port)
        return self.config.port

    def _inject_command(self, args) -> int:
        """Handle the inject command."""
        report = self._instrumenter().inject(self._target(args), force=args.force)
        if not report.results:
            return 1

        stats = report.get_summary_stats()
        logger.info(
            f"Injected {stats['injected']} of {stats['total']} files "
            f"({stats['unchanged']} unchanged, {stats['skipped']} skipped, {stats['failed']} failed)"
        )
        return 1 if report.failed else 0

    def _record_command(self, args) -> int:
        """Handle the record command."""
        port = self._port(args)
        timeout = validate_timeout(args.timeout) if args.timeout else self.config.timeout
        target = self._target(args)

        logger.info(divider("IMPORTANT"))
        logger.info("Run this command FIRST, THEN start your program!")
        logger.info(divider())
        logger.info("Workflow:")
        logger.info("  1. io-snapshot record  -> Inject recorder + start background collector")
        logger.info("  2. Run your program    -> The collector MUST be running")
        logger.info("  3. Exercise it         -> Capture real-world calls")
        logger.info("  4. io-snapshot stop    -> Stop recording and restore your original code")
        logger.info("  5. Modify your code    -> Perform your refactoring")
        logger.info("  6. io-snapshot test    -> Verify new code against captured snapshots")

        logger.info("Checking for existing session...")
        saved_pid = get_saved_pid(self.paths)
        if saved_pid:
            if is_process_running(saved_pid):
                logger.info(divider())
                logger.warning("io-snapshot is already running!")
                logger.warning(f"A collector is active (PID: {saved_pid})")
                logger.warning('Please run "io-snapshot stop" first before starting a new session.')
                logger.info(divider())
                return 1
            remove_pid(self.paths)

        snapshot_log = self._snapshot_log()
        snapshot_log.clear()
        logger.info("Cleared previous snapshot file for a fresh session.")

        logger.info("[Step 1] Injecting recorder into files...")
        report = self._instrumenter().inject(target, force=args.force)
        if not report.results:
            return 1

        logger.info("[Step 2] Starting collector...")
        process = spawn_collector(
            port=port,
            timeout=timeout,
            cors_origin=self.config.cors_origin,
            project_root=self.project_root,
            snapshot_file=self.config.snapshot_file,
        )
        save_pid(self.paths, process.pid)

        client = CollectorClient(port)
        if not client.wait_until_ready(timeout=STARTUP_TIMEOUT):
            logger.error(f"Collector did not come up on port {port}.")
            return 1
        logger.info(f"Collector started on port {port} (PID: {process.pid})")

        logger.info("[Step 3] Starting recording...")
        try:
            client.start_recording()
        except requests.RequestException as e:
            logger.error(f"Failed to start recording: {e}")
            return 1

        logger.info("Recording active.")
        logger.info(f"Snapshots will be saved to: {snapshot_log.path}")
        logger.info(divider())
        logger.info("NOW START YOUR PROGRAM")
        logger.info('Run "io-snapshot stop" when done to restore original code.')
        logger.info(divider())
        return 0

    def _stop_command(self, args) -> int:
        """Handle the stop command."""
        port = self._port(args)

        logger.info("[Step 1] Stopping recording...")
        try:
            CollectorClient(port).stop_recording()
            logger.info("Recording stopped.")
        except requests.RequestException as e:
            logger.warning(f"Collector not responding: {e}.")

        logger.info("[Step 2] Stopping collector...")
        saved_pid = get_saved_pid(self.paths)
        if saved_pid:
            if stop_process(saved_pid):
                logger.info(f"Collector (PID: {saved_pid}) stopped.")
            else:
                logger.warning("Collector not running, cleaning up PID file.")
            remove_pid(self.paths)

        logger.info("[Step 3] Restoring original code...")
        snapshot_log = self._snapshot_log()
        self._instrumenter().restore(None, keep_snapshots=True, snapshot_log=snapshot_log)

        if snapshot_log.exists():
            size = snapshot_log.path.stat().st_size
            logger.info(f"Snapshots preserved: {snapshot_log.path} ({size} bytes)")

        logger.info(divider())
        logger.info("Original code restored. Snapshots preserved for testing.")
        logger.info('Run "io-snapshot test" to verify your code changes.')
        logger.info(divider())
        return 0

    def _test_command(self, args) -> int:
        """Handle the test command."""
        target = validate_file_pattern(args.target) if args.target else None
        diff_config = DiffConfig(
            rtol=self.config.tolerance.get("rtol", 0.0),
            atol=self.config.tolerance.get("atol", 0.0),
        )
        verifier = Verifier(self.project_root, self._snapshot_log(), diff_config)
        report = verifier.verify(target)

        if report.error is None:
            logger.info("\nVerification complete:")
            logger.info(f"  Functions: {len(report.results)}")
            logger.info(f"  Passed: {report.count(FunctionStatus.PASSED)}")
            logger.info(f"  Failed: {report.count(FunctionStatus.FAILED)}")
            logger.info(f"  Not found: {report.count(FunctionStatus.NOT_FOUND)}")
            logger.info(f"  Skipped: {report.count(FunctionStatus.SKIPPED)}")

        if report.passed:
            logger.info(divider("SUCCESS"))
            logger.info("All verifications passed!")
        else:
            logger.info(divider("FAILURE"))
            logger.error("Some verifications failed.")

        if args.summary:
            try:
                with open(args.summary, "w", encoding="utf-8") as f:
                    json.dump(report.to_summary(), f, indent=2, default=str)
                logger.info(f"Summary written to {args.summary}")
            except Exception as e:
                logger.warning(f"Failed to write summary: {e}")

        return report.exit_code

    def _clean_command(self, args) -> int:
        """Handle the clean command."""
        target = validate_file_pattern(args.target) if args.target else None
        self._instrumenter().restore(target, keep_snapshots=False, snapshot_log=self._snapshot_log())
        return 0

    def _status_command(self, args) -> int:
        """Handle the status command."""
        port = self._port(args)
        saved_pid = get_saved_pid(self.paths)
        try:
            status = CollectorClient(port).status()
        except requests.RequestException:
            logger.info(f"Collector is not running on port {port}.")
            if saved_pid and not is_process_running(saved_pid):
                logger.warning(f"Stale PID file found (PID: {saved_pid}); run \"io-snapshot stop\".")
            return 1

        logger.info(f"Collector running on port {port}" + (f" (PID: {saved_pid})" if saved_pid else ""))
        logger.info(f"  Recording: {status.get('is_recording')}")
        logger.info(f"  Idle timeout: {status.get('timeout')} minutes")
        logger.info(f"  Uptime: {time.strftime('%H:%M:%S', time.gmtime(status.get('uptime', 0)))}")
        return 0

    def _config_command(self, args) -> int:
        """Handle the config command."""
        if args.init:
            self.config_manager.create_default_config()
            return 0

        if args.show:
            logger.info("Current configuration:")
            config_dict = self.config.to_dict()
            for key, value in config_dict.items():
                logger.info(f"  {key}: {value}")
            return 0

        logger.info("Use --init to create default config or --show to display current config")
        return 0


def main():
    """Main entry point for the CLI."""
    cli = SnapshotCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
