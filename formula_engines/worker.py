from __future__ import annotations

"""worker.py

Verification and search run in separate worker processes so the caller's
loop stays responsive. Each worker owns its own element cache; nothing is
shared, requests and messages are copied through queues.

- verify: formulas are processed in batches, with a progress message and a
  short pause after each batch.
- search: progress carries the running candidate list.

Cancelling a verify task kills its worker and starts a fresh one.
Cancelling a search task only mutes its progress; the run finishes and its
`complete` message is still delivered.
"""

import itertools
import multiprocessing as mp
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, Optional, Union

from loguru import logger

from formula_engines.config import get_config
from formula_engines.errors import FormulaLabError, WorkerError
from formula_engines.formula_parser import parse_all
from formula_engines.protocol import (
    CompleteMessage,
    ErrorMessage,
    ProgressMessage,
    SearchRequest,
    VerifyRequest,
    is_terminal,
    parse_request,
    to_history,
)
from formula_engines.search_engine import SearchParams, smart_search
from formula_engines.verify_engine import VerifyOverrides, default_resolver, verify_formulas

Emit = Callable[[Dict[str, Any]], None]

BATCH_PAUSE = 0.001  # seconds between verify batches
POLL_INTERVAL = 0.2


# ---------------------------
# Request handling (runs inside the worker)
# ---------------------------
def _diagnostic(err: FormulaLabError) -> Dict[str, Any]:
    return {"type": type(err).__name__, "message": str(err), **{
        k: v for k, v in vars(err).items() if isinstance(v, (int, str)) or v is None
    }}


def _run_verify(req: VerifyRequest, emit: Emit) -> None:
    cfg = get_config()
    history = to_history(req.history)
    formulas, errors = parse_all("\n".join(req.formulas))
    overrides = VerifyOverrides(req.offset, req.periods, req.left_expand, req.right_expand)
    resolver = default_resolver()

    results = []
    total = len(formulas)
    batch = cfg.verify_batch_size
    for start in range(0, total, batch):
        chunk = formulas[start:start + batch]
        results.extend(verify_formulas(chunk, history, overrides, req.target_period, resolver))
        emit(ProgressMessage(current=len(results), total=total).model_dump())
        time.sleep(BATCH_PAUSE)

    logger.info("verify: {} formulas, {} diagnostics", total, len(errors))
    emit(CompleteMessage(
        results=[r.to_dict() for r in results],
        errors=[_diagnostic(e) for e in errors],
    ).model_dump())


def _run_search(req: SearchRequest, emit: Emit) -> None:
    history = to_history(req.history)
    params = SearchParams(
        target_hit_rate=req.target_hit_rate,
        max_count=req.max_count,
        strategy=req.strategy,
        result_types=list(req.result_types),
        offset=req.offset,
        periods=req.periods,
        left_expand=req.left_expand,
        right_expand=req.right_expand,
        seed=req.seed,
    )

    def on_progress(current, total, found, results):
        emit(ProgressMessage(
            current=current,
            total=total,
            found=found,
            results=[r.to_dict() for r in results],
        ).model_dump())

    found = smart_search(history, params, on_progress=on_progress)
    emit(CompleteMessage(results=[r.to_dict() for r in found]).model_dump())


def handle_request(request: Union[Dict[str, Any], VerifyRequest, SearchRequest], emit: Emit) -> None:
    """Process one request, emitting progress and exactly one terminal message."""
    try:
        req = parse_request(request)
        if isinstance(req, VerifyRequest):
            _run_verify(req, emit)
        else:
            _run_search(req, emit)
    except Exception as e:
        logger.exception("worker request failed")
        emit(ErrorMessage(message=f"{type(e).__name__}: {e}").model_dump())


def run_inline(request: Union[Dict[str, Any], VerifyRequest, SearchRequest]) -> Iterator[Dict[str, Any]]:
    """Same message stream as a worker, produced in the calling process."""
    out: list = []
    handle_request(request, out.append)
    return iter(out)


def _worker_main(requests, responses) -> None:
    while True:
        item = requests.get()
        if item is None:
            return
        task_id, payload = item
        handle_request(payload, lambda msg: responses.put((task_id, msg)))


# ---------------------------
# Process ownership (runs in the caller)
# ---------------------------
class WorkerProcess:
    """One spawned worker plus its request/response queues.

    Several tasks can be queued on one worker while their handles are drained
    in any order, so responses are routed through per-task buffers: whichever
    handle reads a message that belongs to another pending task parks it in
    that task's buffer.
    """

    def __init__(self, name: str):
        self.name = name
        self._ctx = mp.get_context("spawn")
        self._lock = threading.Lock()
        self._pending: Dict[int, Deque[Dict[str, Any]]] = {}
        self.process = None
        self.requests = None
        self.responses = None

    def start(self) -> None:
        self.requests = self._ctx.Queue()
        self.responses = self._ctx.Queue()
        self.process = self._ctx.Process(
            target=_worker_main,
            args=(self.requests, self.responses),
            name=f"formula-lab-{self.name}",
            daemon=True,
        )
        self.process.start()
        logger.debug("worker {} started (pid {})", self.name, self.process.pid)

    def ensure_started(self) -> None:
        if self.process is None or not self.process.is_alive():
            self.start()

    def is_alive(self) -> bool:
        return self.process is not None and self.process.is_alive()

    def register(self, task_id: int) -> None:
        with self._lock:
            self._pending[task_id] = deque()

    def forget(self, task_id: int) -> None:
        with self._lock:
            self._pending.pop(task_id, None)

    def send(self, task_id: int, payload: Dict[str, Any]) -> None:
        self.ensure_started()
        self.register(task_id)
        self.requests.put((task_id, payload))

    def _route(self, task_id: int, msg: Dict[str, Any]) -> None:
        buffered = self._pending.get(task_id)
        if buffered is not None:
            buffered.append(msg)
        # messages for forgotten tasks are dropped

    def receive(self, task_id: int, timeout: float) -> Optional[Dict[str, Any]]:
        """Next message for `task_id`, or None once the queue stays empty for `timeout`."""
        end = time.monotonic() + timeout
        with self._lock:
            buffered = self._pending.get(task_id)
            if buffered:
                return buffered.popleft()
            while True:
                try:
                    owner, msg = self.responses.get(timeout=max(0.0, end - time.monotonic()))
                except queue.Empty:
                    return None
                if owner == task_id:
                    return msg
                self._route(owner, msg)

    def stop(self) -> None:
        if self.process is None:
            return
        if self.process.is_alive():
            self.requests.put(None)
            self.process.join(timeout=2)
        if self.process.is_alive():
            self.process.terminate()
            self.process.join(timeout=2)
        self.process = None

    def restart(self, dropped: Optional[int] = None) -> None:
        """Kill and respawn the worker.

        Every other task still pending on it gets an `error` message instead of
        waiting on queues that no longer exist.
        """
        with self._lock:
            self._pending.pop(dropped, None)
            if self.process is not None and self.process.is_alive():
                self.process.terminate()
                self.process.join(timeout=2)
            while self.responses is not None:
                try:
                    owner, msg = self.responses.get_nowait()
                except queue.Empty:
                    break
                self._route(owner, msg)
            for task_id, buffered in self._pending.items():
                if not any(is_terminal(m) for m in buffered):
                    logger.warning("task {} lost to a restart of worker {}", task_id, self.name)
                    buffered.append(ErrorMessage(message=f"worker {self.name} restarted").model_dump())
            self.process = None
            self.start()


@dataclass
class TaskHandle:
    task_id: int
    kind: str
    worker: WorkerProcess
    supervisor: "WorkerSupervisor"
    cancelled: bool = False
    done: bool = False
    result: Optional[Dict[str, Any]] = field(default=None, repr=False)

    def cancel(self) -> None:
        self.supervisor.cancel(self)

    def _finish(self, msg: Dict[str, Any]) -> None:
        self.done = True
        self.result = msg
        self.worker.forget(self.task_id)

    def messages(self, timeout: Optional[float] = None) -> Iterator[Dict[str, Any]]:
        """Yield messages for this task until its terminal message.

        A hard-cancelled verify task ends without a terminal message. A worker
        that dies mid-task yields one `error` message.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while not self.done:
            if self.cancelled and self.kind == "verify":
                return
            if deadline is not None and time.monotonic() >= deadline:
                raise WorkerError(f"task {self.task_id} timed out")
            msg = self.worker.receive(self.task_id, POLL_INTERVAL)
            if msg is None:
                if not self.worker.is_alive():
                    msg = ErrorMessage(message=f"worker {self.worker.name} exited").model_dump()
                    self._finish(msg)
                    yield msg
                    return
                continue
            if is_terminal(msg):
                self._finish(msg)
                yield msg
                return
            if not self.cancelled:
                yield msg

    def wait(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Drain messages and return the terminal one (None if hard-cancelled)."""
        last = None
        for msg in self.messages(timeout=timeout):
            last = msg
        return last if last is not None and is_terminal(last) else None


class WorkerSupervisor:
    """Owns one verify worker and one search worker."""

    def __init__(self):
        self.workers = {"verify": WorkerProcess("verify"), "search": WorkerProcess("search")}
        self._ids = itertools.count(1)

    def submit(self, request: Union[Dict[str, Any], VerifyRequest, SearchRequest]) -> TaskHandle:
        req = parse_request(request)
        worker = self.workers[req.kind]
        handle = TaskHandle(task_id=next(self._ids), kind=req.kind, worker=worker, supervisor=self)
        worker.send(handle.task_id, req.model_dump(mode="json"))
        return handle

    def cancel(self, handle: TaskHandle) -> None:
        handle.cancelled = True
        if handle.kind == "verify" and not handle.done:
            logger.info("verify task {} cancelled, restarting worker", handle.task_id)
            handle.worker.restart(dropped=handle.task_id)
        else:
            logger.info("search task {} muted; waiting for completion", handle.task_id)

    def shutdown(self) -> None:
        for worker in self.workers.values():
            worker.stop()

    def __enter__(self) -> "WorkerSupervisor":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
