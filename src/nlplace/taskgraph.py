"""Dependency-ordered task graphs and the executors that run them.

A :class:`TaskGraph` is a set of named, argument-less closures with explicit
predecessor edges. Dependencies must be added before their dependents, so a
graph is acyclic by construction and its insertion order is a valid
topological order.

Two executors share the :class:`GraphExecutor` interface:

- :class:`SerialExecutor` runs tasks one at a time in insertion order.
  Deterministic; used for testing and debugging.
- :class:`ThreadPoolGraphExecutor` submits every task whose predecessors have
  finished to a ``ThreadPoolExecutor`` and blocks until the graph drains.

Usage::

    graph = TaskGraph("objective")
    graph.add("eval", evaluate_all)
    graph.add("sum", sum_all, depends_on=["eval"])
    with ThreadPoolGraphExecutor(max_workers=4) as executor:
        executor.run(graph)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Iterable

from .exceptions import TaskGraphError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Task:
    """One node of a task graph.

    Attributes:
        name: Unique name within the graph.
        func: Closure executed when the task runs.
        depends_on: Names of tasks that must finish first.
    """

    name: str
    func: Callable[[], None]
    depends_on: tuple[str, ...] = ()


class TaskGraph:
    """Named tasks with explicit predecessor edges."""

    def __init__(self, name: str = ""):
        self.name = name
        self._tasks: dict[str, Task] = {}

    def add(
        self,
        name: str,
        func: Callable[[], None],
        depends_on: Iterable[str] = (),
    ) -> str:
        """Add a task and return its name.

        Raises:
            TaskGraphError: If *name* is taken or a dependency is unknown.
        """
        if name in self._tasks:
            raise TaskGraphError(
                "Duplicate task name",
                context={"graph": self.name, "task": name},
            )
        deps = tuple(depends_on)
        for dep in deps:
            if dep not in self._tasks:
                raise TaskGraphError(
                    "Task depends on an unknown task",
                    context={"graph": self.name, "task": name, "dependency": dep},
                    suggestions=["Add dependencies to the graph before their dependents"],
                )
        self._tasks[name] = Task(name=name, func=func, depends_on=deps)
        return name

    def tasks(self) -> list[Task]:
        """All tasks in insertion (topological) order."""
        return list(self._tasks.values())

    def task(self, name: str) -> Task:
        return self._tasks[name]

    def dependents(self) -> dict[str, list[str]]:
        """Map from each task name to the names of tasks waiting on it."""
        result: dict[str, list[str]] = {name: [] for name in self._tasks}
        for task in self._tasks.values():
            for dep in task.depends_on:
                result[dep].append(task.name)
        return result

    def __contains__(self, name: object) -> bool:
        return name in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __repr__(self) -> str:
        return f"TaskGraph(name={self.name!r}, tasks={len(self._tasks)})"


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


class GraphExecutor(ABC):
    """Runs a :class:`TaskGraph` to completion."""

    @abstractmethod
    def run(self, graph: TaskGraph) -> None:
        """Execute every task, respecting dependencies.

        Exceptions raised by a task propagate to the caller once no other
        task of the graph is still running.
        """

    def shutdown(self) -> None:
        """Release any worker resources."""

    def __enter__(self) -> GraphExecutor:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()


class SerialExecutor(GraphExecutor):
    """Runs tasks one by one in insertion order."""

    def run(self, graph: TaskGraph) -> None:
        for task in graph.tasks():
            task.func()


class ThreadPoolGraphExecutor(GraphExecutor):
    """Runs ready tasks concurrently on a thread pool.

    The pool is created on first use and reused across runs until
    :meth:`shutdown` is called.
    """

    def __init__(self, max_workers: int | None = None):
        self.max_workers = max_workers
        self._pool: ThreadPoolExecutor | None = None

    def _get_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="nlplace",
            )
        return self._pool

    def run(self, graph: TaskGraph) -> None:
        if len(graph) == 0:
            return
        pool = self._get_pool()
        dependents = graph.dependents()
        waiting = {task.name: len(task.depends_on) for task in graph.tasks()}
        running: dict[Future, str] = {}
        error: BaseException | None = None

        for task in graph.tasks():
            if not task.depends_on:
                running[pool.submit(task.func)] = task.name

        while running:
            done, _ = wait(running, return_when=FIRST_COMPLETED)
            for future in done:
                name = running.pop(future)
                exc = future.exception()
                if exc is not None:
                    if error is None:
                        error = exc
                        logger.debug("Task %r of graph %r failed: %s", name, graph.name, exc)
                    continue
                if error is not None:
                    continue
                for child in dependents[name]:
                    waiting[child] -= 1
                    if waiting[child] == 0:
                        child_task = graph.task(child)
                        running[pool.submit(child_task.func)] = child

        if error is not None:
            raise error

    def shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None


def make_executor(kind: str, max_workers: int | None = None) -> GraphExecutor:
    """Create a graph executor by name (``"serial"`` or ``"thread"``)."""
    if kind == "serial":
        return SerialExecutor()
    elif kind == "thread":
        return ThreadPoolGraphExecutor(max_workers=max_workers)
    else:
        raise ValueError(f"Unknown executor: {kind!r}. Available: serial, thread")
