"""
uploader
--------

per-object 업로드 (slow path) 를 위한 고정 크기 워커 풀.

- 매니페스트 순서로 채운 FIFO 큐 하나와 Condition 하나로 모든 공유 상태를 보호한다.
- 워커는 min(K, N) 개의 장수 스레드이며, 한 번에 태스크 하나만 소유한다.
- 재시도할 태스크는 backoff 만큼 기다린 뒤 큐 뒤쪽으로 되돌린다.
- 모든 태스크가 종료 상태(succeeded/failed)가 되어야 run() 이 반환된다.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, List, Optional

from .config import MAX_CONCURRENCY, MIN_CONCURRENCY
from .logging_utils import get_logger
from .models import TaskStatus, UploadManifest, UploadResult, UploadTask
from .progress import ProgressReporter
from .r2_object import AttemptOutcome, ObjectClient
from .retry import RetryPolicy


logger = get_logger(__name__)


def validate_concurrency(concurrency: int) -> int:
    if isinstance(concurrency, bool) or not isinstance(concurrency, int):
        raise ValueError(f"concurrency 는 정수여야 합니다: {concurrency!r}")
    if not (MIN_CONCURRENCY <= concurrency <= MAX_CONCURRENCY):
        raise ValueError(
            f"concurrency 는 {MIN_CONCURRENCY}~{MAX_CONCURRENCY} 사이여야 합니다: {concurrency}"
        )
    return concurrency


class BoundedConcurrencyUploader:
    def __init__(
        self,
        client: ObjectClient,
        policy: RetryPolicy,
        concurrency: int,
        *,
        reporter: Optional[ProgressReporter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.policy = policy
        self.concurrency = validate_concurrency(concurrency)
        self.reporter = reporter
        self._sleep = sleep

        self._cond = threading.Condition()
        self._queue: Deque[UploadTask] = deque()
        self._outstanding = 0
        self._in_flight = 0
        self._max_in_flight = 0
        self._results: List[UploadResult] = []

    @property
    def in_flight(self) -> int:
        with self._cond:
            return self._in_flight

    @property
    def max_in_flight(self) -> int:
        with self._cond:
            return self._max_in_flight

    def run(self, manifest: UploadManifest) -> List[UploadResult]:
        """
        매니페스트 전체를 종료 상태까지 처리하고, 완료 순서대로 결과를 반환한다.
        """
        with self._cond:
            self._queue = deque(manifest)
            self._outstanding = len(self._queue)
            self._in_flight = 0
            self._max_in_flight = 0
            self._results = []

        if not self._queue:
            return []

        worker_count = min(self.concurrency, len(self._queue))
        logger.info(
            "per-object 업로드 시작: 파일 %d개, 동시 업로드 %d개 (최대 시도 %d회)",
            len(self._queue),
            worker_count,
            self.policy.max_retries,
        )

        workers = [
            threading.Thread(target=self._worker, name=f"upload-{i}", daemon=True)
            for i in range(worker_count)
        ]
        for w in workers:
            w.start()
        for w in workers:
            w.join()

        with self._cond:
            return list(self._results)

    # -----------------------------
    # worker
    # -----------------------------
    def _take(self) -> Optional[UploadTask]:
        with self._cond:
            while True:
                if self._queue:
                    task = self._queue.popleft()
                    self._in_flight += 1
                    self._max_in_flight = max(self._max_in_flight, self._in_flight)
                    return task
                if self._outstanding == 0:
                    return None
                # 큐는 비었지만 backoff 중인 태스크가 돌아올 수 있다.
                self._cond.wait()

    def _release(self) -> None:
        with self._cond:
            self._in_flight -= 1

    def _requeue(self, task: UploadTask) -> None:
        with self._cond:
            self._queue.append(task)
            self._cond.notify()

    def _finish(self, result: UploadResult) -> None:
        try:
            if self.reporter is not None:
                self.reporter.record(result)
        finally:
            with self._cond:
                self._results.append(result)
                self._outstanding -= 1
                if self._outstanding == 0:
                    self._cond.notify_all()

    def _worker(self) -> None:
        while True:
            task = self._take()
            if task is None:
                return
            try:
                result = self._process(task)
            except Exception as e:  # noqa: BLE001
                # 한 태스크의 예기치 못한 오류가 배치 전체를 멈추지 않도록 태스크 실패로만 기록한다.
                logger.exception("업로드 처리 중 예기치 못한 오류: %s", task.remote_key)
                if not task.status.is_terminal:
                    task.mark_failed(f"{type(e).__name__}: {e}")
                result = UploadResult(task=task, status=task.status, attempts=task.attempt, error=task.last_error)
            if result is not None:
                self._finish(result)

    def _attempt(self, task: UploadTask) -> AttemptOutcome:
        try:
            return self.client.put(task)
        except Exception as e:  # noqa: BLE001
            return AttemptOutcome(ok=False, returncode=None, message=f"{type(e).__name__}: {e}")

    def _process(self, task: UploadTask) -> Optional[UploadResult]:
        """
        업로드 1회 시도. 종료되면 UploadResult, 재시도를 위해 큐에 되돌렸으면 None.
        """
        try:
            attempt = task.begin_attempt(self.policy.max_retries)
            outcome = self._attempt(task)
        finally:
            self._release()

        if outcome.ok:
            task.mark_succeeded()
            return UploadResult(task=task, status=task.status, attempts=attempt)

        error = self.policy.classify(outcome)
        if self.policy.should_retry(error, attempt):
            delay = self.policy.backoff_delay(attempt)
            logger.debug(
                "업로드 재시도 예정: %s (%d/%d, %s, %.1fs 후)",
                task.remote_key,
                attempt,
                self.policy.max_retries,
                type(error).__name__,
                delay,
            )
            task.mark_pending()
            self._sleep(delay)
            self._requeue(task)
            return None

        if attempt >= self.policy.max_retries:
            logger.debug("%s", self.policy.exhausted(task, error))
        task.mark_failed(self.policy.display_error(error))
        return UploadResult(task=task, status=task.status, attempts=attempt, error=task.last_error)
