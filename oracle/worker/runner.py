# oracle/worker/runner.py
"""
Execução isolada do pipeline de pontuação.

Duas estratégias com a mesma interface (start / poll / terminate):
- ProcessScoringWorker: processo separado (multiprocessing, contexto spawn);
  terminate() mata o processo.
- ThreadScoringWorker: thread no mesmo processo; terminate() sinaliza o
  token de cancelamento, verificado entre etapas do pipeline.

poll() devolve a próxima mensagem, None quando o prazo expira sem mensagem
(o chamador decide se é travamento), e levanta WorkerCrashed quando o worker
morre sem entregar resultado.
"""

from __future__ import annotations

import logging
import multiprocessing
import queue
import threading
import time
from typing import Optional, Protocol

from oracle.errors import WorkerCrashed
from oracle.worker.protocol import ErrorMessage, ProgressMessage, ResultMessage, WorkerInput, WorkerMessage

logger = logging.getLogger(__name__)

POLL_SLICE_S = 0.25
DRAIN_TIMEOUT_S = 0.5


def _worker_main(data: WorkerInput, out_queue, cancel: Optional[threading.Event] = None) -> None:
    """Ponto de entrada do worker: publica progresso e um resultado (ou erro)."""
    from oracle.scoring.pipeline import ScoringCancelled, run_pipeline

    t0 = time.perf_counter()

    def _progress(stage: str, percent: int) -> None:
        out_queue.put(ProgressMessage(stage=stage, percent=max(0, min(100, int(percent)))))

    try:
        profile, shelves = run_pipeline(data, on_progress=_progress, cancel=cancel)
    except ScoringCancelled:
        logger.info("Pontuação cancelada")
        return
    except Exception as e:
        logger.exception("Pipeline de pontuação falhou")
        out_queue.put(ErrorMessage(message=f"{type(e).__name__}: {e}"))
        return

    out_queue.put(
        ResultMessage(
            taste_profile=profile,
            shelves=shelves,
            compute_time_ms=int((time.perf_counter() - t0) * 1000),
        )
    )


class ScoringWorker(Protocol):
    def start(self, data: WorkerInput) -> None: ...

    def poll(self, timeout: float) -> Optional[WorkerMessage]: ...

    def is_alive(self) -> bool: ...

    def terminate(self) -> None: ...


class _QueueWorker:
    """Base com a lógica de leitura da fila compartilhada pelas duas estratégias."""

    _queue = None

    def is_alive(self) -> bool:
        raise NotImplementedError

    def poll(self, timeout: float) -> Optional[WorkerMessage]:
        if self._queue is None:
            raise WorkerCrashed("worker not started")
        deadline = time.monotonic() + max(0.0, float(timeout))
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            try:
                return self._queue.get(timeout=min(remaining, POLL_SLICE_S))
            except queue.Empty:
                if self.is_alive():
                    continue
            # Worker terminou: a última mensagem pode ainda estar em trânsito
            try:
                return self._queue.get(timeout=DRAIN_TIMEOUT_S)
            except queue.Empty:
                raise WorkerCrashed("worker exited without a result")


class ProcessScoringWorker(_QueueWorker):
    def __init__(self) -> None:
        self._ctx = multiprocessing.get_context("spawn")
        self._process = None

    def start(self, data: WorkerInput) -> None:
        self._queue = self._ctx.Queue()
        self._process = self._ctx.Process(
            target=_worker_main,
            args=(data, self._queue),
            name="oracle-scoring-worker",
            daemon=True,
        )
        self._process.start()
        logger.debug(f"Worker de pontuação iniciado (pid={self._process.pid})")

    def is_alive(self) -> bool:
        return self._process is not None and self._process.is_alive()

    def terminate(self) -> None:
        if self._process is not None and self._process.is_alive():
            self._process.terminate()
            self._process.join(timeout=5)
        self._process = None
        if self._queue is not None:
            self._queue.close()
            self._queue = None


class ThreadScoringWorker(_QueueWorker):
    def __init__(self) -> None:
        self._thread: Optional[threading.Thread] = None
        self._cancel = threading.Event()

    def start(self, data: WorkerInput) -> None:
        self._queue = queue.Queue()
        self._cancel = threading.Event()
        self._thread = threading.Thread(
            target=_worker_main,
            args=(data, self._queue, self._cancel),
            name="oracle-scoring-worker",
            daemon=True,
        )
        self._thread.start()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def terminate(self) -> None:
        self._cancel.set()
        self._thread = None
        self._queue = None


def build_worker(mode: str) -> ScoringWorker:
    if mode == "thread":
        return ThreadScoringWorker()
    return ProcessScoringWorker()


__all__ = [
    "ProcessScoringWorker",
    "ThreadScoringWorker",
    "ScoringWorker",
    "build_worker",
]
