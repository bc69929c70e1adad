"""Terminal dashboard: worker nodes, queued tasks and recent log lines."""

from __future__ import annotations

import argparse
import curses
import enum
import logging
import queue
import threading
from collections.abc import Sequence
from curses.textpad import rectangle
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from pika.exceptions import AMQPError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dtqs.config import Config
from dtqs.database import logs, setup_database, tasks, worker_nodes
from dtqs.messaging import create_rabbit_channel

QUEUE_NAME = "task_queue"
QUEUED_LIMIT = 5
LOG_LIMIT = 20
REFRESH_INTERVAL = 2.0
TICK_RATE = 0.5
NOT_AVAILABLE = "N/A"
FOOTER = "←/→: Switch Tabs | q: Quit"

log = logging.getLogger(__name__)


class DashboardTab(enum.Enum):
    """The dashboard's tabs, in display order."""

    OVERVIEW = "Overview"
    QUEUE = "Queue"
    LOGS = "Logs"

    @property
    def title(self) -> str:
        return self.value

    def next(self) -> "DashboardTab":
        """The tab to the right, wrapping around."""
        members = list(DashboardTab)
        return members[(members.index(self) + 1) % len(members)]

    def previous(self) -> "DashboardTab":
        """The tab to the left, wrapping around."""
        members = list(DashboardTab)
        return members[(members.index(self) - 1) % len(members)]


@dataclass
class TaskInfo:
    """A task as the dashboard shows it."""

    id: str
    task_type: str
    status: str
    progress: int


@dataclass
class WorkerNodeInfo:
    """A worker node and the task it is running, if any."""

    node_id: str
    status: str
    last_health_check: str
    current_task: TaskInfo | None = None


@dataclass
class LogLine:
    """One formatted log entry."""

    timestamp: str
    message: str


@dataclass
class DashboardState:
    """Everything the dashboard draws, plus the selected tab."""

    current_tab: DashboardTab = DashboardTab.OVERVIEW
    workers: list[WorkerNodeInfo] = field(default_factory=list)
    queued_tasks: list[TaskInfo] = field(default_factory=list)
    logs: list[LogLine] = field(default_factory=list)
    pending_count: int = 0

    def next_tab(self) -> None:
        self.current_tab = self.current_tab.next()

    def previous_tab(self) -> None:
        self.current_tab = self.current_tab.previous()


def _format_time(value: Any) -> str:
    if value is None:
        return NOT_AVAILABLE
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)


def _progress(value: int | None) -> int:
    # Progress is shown as an unsigned byte, wrapping like the stored value would.
    return (value or 0) & 0xFF


def fetch_db_state(engine: Engine) -> DashboardState:
    """Read workers, the next pending tasks and the latest log lines."""
    state = DashboardState()
    worker_query = (
        sa.select(
            worker_nodes.c.node_id,
            worker_nodes.c.status,
            worker_nodes.c.last_health_check,
            tasks.c.id.label("task_id"),
            tasks.c.task_type,
            tasks.c.status.label("task_status"),
            tasks.c.progress,
        )
        .select_from(
            worker_nodes.outerjoin(tasks, worker_nodes.c.current_task_id == tasks.c.id)
        )
        .order_by(worker_nodes.c.last_health_check.desc())
    )
    queued_query = (
        sa.select(tasks.c.id, tasks.c.task_type, tasks.c.status, tasks.c.progress)
        .where(tasks.c.status == "pending")
        .order_by(tasks.c.created_at)
        .limit(QUEUED_LIMIT)
    )
    log_query = (
        sa.select(logs.c.timestamp, logs.c.message)
        .order_by(logs.c.timestamp.desc())
        .limit(LOG_LIMIT)
    )

    with engine.connect() as conn:
        state.workers = [
            WorkerNodeInfo(
                node_id=row.node_id,
                status=row.status,
                last_health_check=_format_time(row.last_health_check),
                current_task=None
                if row.task_id is None
                else TaskInfo(
                    id=str(row.task_id),
                    task_type=row.task_type or NOT_AVAILABLE,
                    status=row.task_status or NOT_AVAILABLE,
                    progress=_progress(row.progress),
                ),
            )
            for row in conn.execute(worker_query)
        ]
        state.queued_tasks = [
            TaskInfo(
                id=str(row.id),
                task_type=row.task_type,
                status=row.status,
                progress=_progress(row.progress),
            )
            for row in conn.execute(queued_query)
        ]
        state.logs = [
            LogLine(timestamp=_format_time(row.timestamp), message=row.message)
            for row in conn.execute(log_query)
        ]
    return state


def fetch_queue_depth(channel: Any) -> int:
    """Number of messages waiting in the task queue, checked without creating it."""
    result = channel.queue_declare(queue=QUEUE_NAME, passive=True)
    return result.method.message_count


def overview_lines(state: DashboardState) -> tuple[list[str], list[str]]:
    """Lines of the overview tab: the worker pane and the active-task pane.

    Each worker takes four lines in the worker pane.
    """
    workers: list[str] = []
    active: list[str] = []
    for worker in state.workers:
        task = worker.current_task
        if task is None:
            task_text = "No current task"
        else:
            task_text = f"Task: {task.id} ({task.progress}%, {task.status})"
            active.append(f"{worker.node_id}: {task.task_type} ({task.progress}%)")
        workers.extend(
            [
                f"ID: {worker.node_id}",
                f"Status: {worker.status}",
                task_text,
                f"Last HC: {worker.last_health_check}",
            ]
        )
    return workers, active or ["No active tasks"]


def queue_lines(state: DashboardState) -> list[str]:
    """Lines of the queue tab; the first line is the pane title."""
    title = f"Next 5 Tasks in Queue (Pending in RabbitMQ: {state.pending_count})"
    return [title] + [
        f"{task.id} Type: {task.task_type} | Status: {task.status} | Progress: {task.progress}%"
        for task in state.queued_tasks
    ]


def log_lines(state: DashboardState) -> list[str]:
    """Lines of the log tab, newest first."""
    return [f"{entry.timestamp} - {entry.message}" for entry in state.logs]


def _poll(engine: Engine, channel: Any, updates: queue.Queue, stop: threading.Event) -> None:
    while not stop.is_set():
        try:
            state = fetch_db_state(engine)
        except SQLAlchemyError as exc:
            log.debug("Dashboard database refresh failed: %r", exc)
            state = DashboardState()
        try:
            state.pending_count = fetch_queue_depth(channel)
        except AMQPError as exc:
            log.debug("Dashboard queue refresh failed: %r", exc)
            state.pending_count = 0
        updates.put(state)
        stop.wait(REFRESH_INTERVAL)


def _put(win: Any, y: int, x: int, text: str, attr: int, width: int) -> None:
    if width <= 0:
        return
    try:
        win.addnstr(y, x, text, width, attr)
    except curses.error:
        pass


def _panel(win: Any, y: int, x: int, height: int, width: int, title: str) -> None:
    try:
        rectangle(win, y, x, y + height - 1, x + width - 1)
    except curses.error:
        pass
    if title:
        _put(win, y, x + 1, title, 0, width - 2)


def _draw(stdscr: Any, state: DashboardState, colors: dict[str, int]) -> None:
    stdscr.erase()
    rows, cols = stdscr.getmaxyx()
    top, left = 1, 1
    height, width = rows - 2, cols - 2
    if height < 7 or width < 12:
        _put(stdscr, 0, 0, "Terminal too small", 0, cols - 1)
        stdscr.refresh()
        return

    _panel(stdscr, top, left, 3, width, "Dashboard Tabs")
    x = left + 1
    for index, tab in enumerate(DashboardTab):
        if index:
            _put(stdscr, top + 1, x, " | ", 0, left + width - 1 - x)
            x += 3
        attr = colors["cyan"] | curses.A_BOLD if tab is state.current_tab else colors["yellow"]
        _put(stdscr, top + 1, x, tab.title, attr, left + width - 1 - x)
        x += len(tab.title)

    body_top = top + 3
    body_height = height - 6
    inner = body_height - 2

    if state.current_tab is DashboardTab.OVERVIEW:
        worker_text, active_text = overview_lines(state)
        left_width = width // 2
        right_width = width - left_width
        _panel(stdscr, body_top, left, body_height, left_width, "Worker Nodes")
        for row, line in enumerate(worker_text[:inner]):
            attr = curses.A_BOLD if row % 4 == 0 else 0
            _put(stdscr, body_top + 1 + row, left + 1, line, attr, left_width - 2)
        right = left + left_width
        _panel(stdscr, body_top, right, body_height, right_width, "Active Tasks")
        for row, line in enumerate(active_text[:inner]):
            _put(stdscr, body_top + 1 + row, right + 1, line, 0, right_width - 2)
    elif state.current_tab is DashboardTab.QUEUE:
        title, *items = queue_lines(state)
        _panel(stdscr, body_top, left, body_height, width, title)
        for row, line in enumerate(items[:inner]):
            task_id, _, rest = line.partition(" ")
            y = body_top + 1 + row
            _put(stdscr, y, left + 1, task_id + " ", colors["yellow"] | curses.A_BOLD, width - 2)
            offset = len(task_id) + 1
            _put(stdscr, y, left + 1 + offset, rest, 0, width - 2 - offset)
    else:
        _panel(stdscr, body_top, left, body_height, width, "Worker Node Logs / Health Checks")
        for row, line in enumerate(log_lines(state)[:inner]):
            stamp, sep, message = line.partition(" - ")
            y = body_top + 1 + row
            _put(stdscr, y, left + 1, stamp, colors["green"], width - 2)
            _put(stdscr, y, left + 1 + len(stamp), sep + message, 0, width - 2 - len(stamp))

    footer_top = body_top + body_height
    _panel(stdscr, footer_top, left, 3, width, "")
    _put(stdscr, footer_top + 1, left + 1, FOOTER, colors["white"], width - 2)
    stdscr.refresh()


def _init_colors() -> dict[str, int]:
    names = {"yellow": curses.COLOR_YELLOW, "cyan": curses.COLOR_CYAN,
             "green": curses.COLOR_GREEN, "white": curses.COLOR_WHITE}
    if not curses.has_colors():
        return dict.fromkeys(names, 0)
    curses.start_color()
    colors = {}
    for pair, (name, color) in enumerate(names.items(), start=1):
        curses.init_pair(pair, color, curses.COLOR_BLACK)
        colors[name] = curses.color_pair(pair)
    return colors


def _run(stdscr: Any, engine: Engine, channel: Any) -> None:
    try:
        curses.curs_set(0)
    except curses.error:
        pass
    stdscr.keypad(True)
    stdscr.timeout(int(TICK_RATE * 1000))
    colors = _init_colors()

    updates: queue.Queue = queue.Queue()
    stop = threading.Event()
    poller = threading.Thread(target=_poll, args=(engine, channel, updates, stop), daemon=True)
    poller.start()

    state = DashboardState()
    try:
        while True:
            while True:
                try:
                    fresh = updates.get_nowait()
                except queue.Empty:
                    break
                state = replace(fresh, current_tab=state.current_tab)
            _draw(stdscr, state, colors)
            key = stdscr.getch()
            if key == ord("q"):
                break
            if key == curses.KEY_RIGHT:
                state.next_tab()
            elif key == curses.KEY_LEFT:
                state.previous_tab()
    finally:
        stop.set()


def main(argv: Sequence[str] | None = None) -> int:
    """Show the live dashboard until 'q' is pressed."""
    parser = argparse.ArgumentParser(
        description="Live task queue dashboard. Reads DATABASE_URL and RABBITMQ_URL."
    )
    parser.parse_args(argv)

    config = Config.from_env()
    engine = setup_database(config.database_url)
    channel = create_rabbit_channel(config.rabbitmq_url)
    curses.wrapper(_run, engine, channel)
    return 0