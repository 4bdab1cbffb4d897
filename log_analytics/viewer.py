import logging
import sys
import time
from typing import Callable, List, Optional

from log_analytics.config import DatabaseSettings, configure_logging
from log_analytics.models import ApiLogRow, SystemMetricRow
from log_analytics.store import SLOW_RESPONSE_THRESHOLD_MS, LogStore

SEARCH_ENDPOINTS = ["/users", "/products", "/health", "/orders"]
TAIL_DURATION_SECONDS = 60.0
TAIL_POLL_SECONDS = 1.0

MENU = """===== Log Analytics CLI =====
1. View recent API logs
2. View recent system metrics
3. Search API logs by endpoint
4. Search API logs by status code
5. View slow responses (>200ms)
6. View error logs
7. View real-time logs (tail)
8. Exit
============================"""

EXIT_CHOICE = "8"


def format_api_log(row: ApiLogRow) -> str:
    status = str(row.status) if row.status is not None else "-"
    response_time = f"{row.response_time:.2f}ms" if row.response_time is not None else "-"
    line = f"[{row.timestamp.isoformat()}] {row.method or '-'} {row.endpoint or '-'} ({status}) - {response_time}"
    if row.error:
        line += f"\n   ERROR: {row.error}"
    return line


def _pct(value: Optional[float]) -> str:
    return f"{value:.2f}%" if value is not None else "-"


def format_system_metric(row: SystemMetricRow) -> str:
    active = row.active_requests if row.active_requests is not None else "-"
    return (
        f"[{row.timestamp.isoformat()}] CPU: {_pct(row.cpu)} | Memory: {_pct(row.memory)} "
        f"| Disk: {_pct(row.disk_usage)} | Active Requests: {active}"
    )


class LogViewer:
    """Interactive, read-only menu over the log store."""

    def __init__(
        self,
        store: LogStore,
        input_func: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.input = input_func
        self.output = output
        self.sleep = sleep
        self.clock = clock

    def _print_rows(self, title: str, rows: List, formatter, empty: str = "No logs found") -> None:
        self.output(f"\n===== {title} =====")
        if not rows:
            self.output(empty)
        for row in rows:
            self.output(formatter(row))

    def view_recent_api_logs(self) -> None:
        logging.info("Fetching recent API logs...")
        self._print_rows("Recent API Logs", self.store.recent_api_logs(), format_api_log)

    def view_recent_system_metrics(self) -> None:
        logging.info("Fetching recent system metrics...")
        self._print_rows(
            "Recent System Metrics", self.store.recent_system_metrics(), format_system_metric,
            empty="No metrics found",
        )

    def search_by_endpoint(self) -> None:
        self.output("\nSelect an endpoint to search:")
        for index, endpoint in enumerate(SEARCH_ENDPOINTS, start=1):
            self.output(f"{index}. {endpoint}")
        answer = self.input("\nEnter the number of your choice: ").strip()
        if not answer.isdigit() or not 1 <= int(answer) <= len(SEARCH_ENDPOINTS):
            self.output("Invalid choice")
            return

        endpoint = SEARCH_ENDPOINTS[int(answer) - 1]
        logging.info(f"Searching logs for endpoint: {endpoint}")
        self._print_rows(f"Logs for endpoint: {endpoint}", self.store.api_logs_by_endpoint(endpoint), format_api_log)

    def search_by_status(self) -> None:
        answer = self.input("\nEnter status code (e.g., 200, 404, 500): ").strip()
        try:
            status = int(answer)
        except ValueError:
            self.output(f"Invalid status code: {answer!r}")
            return

        logging.info(f"Searching logs for status code: {status}")
        self._print_rows(f"Logs with status code: {status}", self.store.api_logs_by_status(status), format_api_log)

    def view_slow_responses(self) -> None:
        logging.info(f"Fetching slow responses (>{SLOW_RESPONSE_THRESHOLD_MS}ms)...")
        self._print_rows(
            f"Slow Responses (>{SLOW_RESPONSE_THRESHOLD_MS}ms)", self.store.slow_responses(), format_api_log,
            empty="No slow responses found",
        )

    def view_error_logs(self) -> None:
        logging.info("Fetching error logs...")
        self._print_rows("Error Logs", self.store.error_logs(), format_api_log, empty="No error logs found")

    def tail(self, duration: float = TAIL_DURATION_SECONDS, interval: float = TAIL_POLL_SECONDS) -> int:
        """Print api_logs rows as they arrive, for `duration` seconds. Returns how many were shown."""
        self.output("\n===== Real-time Logs (Ctrl+C to stop) =====")
        last_id = self.store.max_api_log_id()
        self.output(f"Monitoring for new logs (will stop after {duration:g} seconds)...")

        shown = 0
        deadline = self.clock() + duration
        try:
            while self.clock() < deadline:
                self.sleep(interval)
                try:
                    rows = self.store.api_logs_after(last_id)
                except Exception as e:
                    logging.error(f"Error polling for new logs: {e}")
                    continue
                for row in rows:
                    self.output(format_api_log(row))
                    last_id = max(last_id, row.id)
                    shown += 1
        except KeyboardInterrupt:
            pass
        self.output("\nStopped real-time log monitoring.")
        return shown

    def handle_choice(self, choice: str) -> bool:
        """Run one menu action. Returns False when the user asked to exit."""
        actions = {
            "1": self.view_recent_api_logs,
            "2": self.view_recent_system_metrics,
            "3": self.search_by_endpoint,
            "4": self.search_by_status,
            "5": self.view_slow_responses,
            "6": self.view_error_logs,
            "7": self.tail,
        }
        choice = choice.strip()
        if choice == EXIT_CHOICE:
            logging.info("Exiting application")
            return False

        action = actions.get(choice)
        if action is None:
            self.output("Invalid option selected")
            return True
        try:
            action()
        except Exception as e:
            logging.error(f"Query failed: {e}")
            self.output(f"Error: {e}")
        return True

    def run(self) -> None:
        try:
            while True:
                self.output(MENU)
                if not self.handle_choice(self.input("Select an option: ")):
                    return
                self.input("\nPress Enter to return to the main menu...")
        except (EOFError, KeyboardInterrupt):
            self.output("\nGracefully shutting down...")


def main() -> None:
    configure_logging()
    store = LogStore(DatabaseSettings.from_env(default_host="localhost").dsn, max_connections=2)
    logging.info("Starting Log Analytics CLI...")
    try:
        store.ping()
    except Exception as e:
        logging.error(f"Failed to connect to database: {e}")
        logging.info("Please check your database connection settings")
        store.close()
        sys.exit(1)

    logging.info("Successfully connected to the database")
    try:
        LogViewer(store).run()
    finally:
        store.close()


if __name__ == "__main__":
    main()
