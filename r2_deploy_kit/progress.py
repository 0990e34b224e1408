"""
progress
--------

태스크 종료 이벤트를 실시간으로 집계하고, 최종 RunSummary 와 요약 텍스트를 만든다.
여러 워커 스레드가 동시에 record() 를 호출하므로 모든 상태는 하나의 lock 으로 보호한다.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

import click

from .models import FAILURE_PREVIEW_LIMIT, RunSummary, TaskStatus, UploadResult


def _format_kb(size_bytes: int) -> str:
    return f"{size_bytes / 1024:.2f} KB"


class ProgressReporter:
    def __init__(
        self,
        total: int,
        *,
        echo: Callable[[str], None] = click.echo,
        clock: Callable[[], float] = time.monotonic,
        preview_limit: int = FAILURE_PREVIEW_LIMIT,
        started: Optional[float] = None,
    ) -> None:
        self.total = total
        self._echo = echo
        self._clock = clock
        self._preview_limit = preview_limit
        self._lock = threading.Lock()
        # started 가 주어지면 그 시각부터 잰다 (fallback 후에도 전체 실행 시간)
        self._started = clock() if started is None else started
        self._completed = 0
        self._succeeded = 0
        self._failed = 0
        self._failures: List[UploadResult] = []

    @property
    def started(self) -> float:
        return self._started

    def record(self, result: UploadResult, *, quiet: bool = False) -> None:
        with self._lock:
            self._completed += 1
            if result.status is TaskStatus.SUCCEEDED:
                self._succeeded += 1
                line = f"[{self._completed}/{self.total}] ✅ {result.remote_key} ({_format_kb(result.task.size_bytes)})"
            else:
                self._failed += 1
                if len(self._failures) < self._preview_limit:
                    self._failures.append(result)
                line = f"[{self._completed}/{self.total}] ❌ {result.remote_key}: {result.error}"
            # 출력 순서와 카운트 순서를 맞추기 위해 lock 안에서 출력한다.
            if not quiet:
                self._echo(line)

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    def finalize(self, strategy: str = "per-object") -> RunSummary:
        with self._lock:
            return RunSummary(
                total=self.total,
                succeeded=self._succeeded,
                failed=self._failed,
                elapsed_seconds=max(self._clock() - self._started, 0.0),
                failures=tuple(self._failures),
                strategy=strategy,
            )


def format_summary(summary: RunSummary) -> str:
    lines: List[str] = []
    lines.append("# Upload summary")
    lines.append(f"- strategy: {summary.strategy}")
    lines.append(f"- succeeded: {summary.succeeded}")
    lines.append(f"- failed: {summary.failed}")
    lines.append(f"- total: {summary.total}")
    lines.append(f"- duration: {summary.elapsed_seconds:.2f}s")
    lines.append(f"- speed: {summary.throughput:.2f} files/s")

    if summary.failures:
        lines.append("")
        lines.append(f"## Failed files (first {FAILURE_PREVIEW_LIMIT})")
        for r in summary.failures:
            lines.append(f"- {r.remote_key}: {r.error}")
        if summary.hidden_failures:
            lines.append(f"- ... and {summary.hidden_failures} more failed files")
    elif summary.total:
        lines.append("")
        lines.append("모든 파일을 업로드했습니다.")

    return "\n".join(lines)
