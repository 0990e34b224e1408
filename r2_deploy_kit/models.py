"""
models
------

업로드 작업 단위(UploadTask), 매니페스트, 결과/요약 데이터 타입.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Tuple

from .logging_utils import get_logger


logger = get_logger(__name__)

# 요약/로그에 남길 실패 목록 및 에러 문자열 길이 상한
FAILURE_PREVIEW_LIMIT = 10
ERROR_TEXT_LIMIT = 200


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in-flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED)


def truncate_error(message: str, limit: int = ERROR_TEXT_LIMIT) -> str:
    text = (message or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit]


def normalize_key(path: str) -> str:
    """
    아카이브 내부 경로를 remote key 형태로 정규화한다.

    - 구분자는 OS 와 무관하게 '/' 로 통일
    - 앞쪽 '/' 와 './' 세그먼트, 빈 세그먼트 제거
    """
    parts = path.replace("\\", "/").split("/")
    return "/".join(p for p in parts if p not in ("", "."))


def canonical_prefix(prefix: Optional[str]) -> str:
    stripped = (prefix or "").replace("\\", "/").strip().rstrip("/")
    if not stripped:
        return ""
    return stripped + "/"


def build_remote_key(prefix: Optional[str], relative_path: str) -> str:
    return canonical_prefix(prefix) + normalize_key(relative_path)


@dataclass
class UploadTask:
    local_path: str
    remote_key: str
    size_bytes: int
    attempt: int = 0
    status: TaskStatus = TaskStatus.PENDING
    last_error: Optional[str] = None

    def _ensure_not_terminal(self) -> None:
        if self.status.is_terminal:
            raise ValueError(
                f"이미 종료된 태스크의 상태는 바꿀 수 없습니다: {self.remote_key} ({self.status.value})"
            )

    def begin_attempt(self, max_retries: int) -> int:
        self._ensure_not_terminal()
        if self.attempt >= max_retries:
            raise ValueError(
                f"시도 횟수 한도를 넘었습니다: {self.remote_key} (attempt={self.attempt}, max={max_retries})"
            )
        self.attempt += 1
        self.status = TaskStatus.IN_FLIGHT
        return self.attempt

    def mark_pending(self) -> None:
        self._ensure_not_terminal()
        self.status = TaskStatus.PENDING

    def mark_succeeded(self) -> None:
        self._ensure_not_terminal()
        self.status = TaskStatus.SUCCEEDED
        self.last_error = None

    def mark_failed(self, message: str) -> None:
        self._ensure_not_terminal()
        self.status = TaskStatus.FAILED
        self.last_error = truncate_error(message)


class UploadManifest:
    """
    추출 결과로부터 한 번 만들어지는 순서 있는 작업 목록.
    생성 후에는 읽기 전용이며, remote key 는 매니페스트 안에서 유일하다.
    """

    def __init__(self, tasks: Iterable[UploadTask] = ()) -> None:
        self._tasks: Tuple[UploadTask, ...] = tuple(tasks)

    @classmethod
    def from_entries(cls, entries: Iterable[Tuple[str, str, int]]) -> "UploadManifest":
        """
        (local_path, remote_key, size_bytes) 목록으로 매니페스트를 만든다.

        같은 key 가 다시 나오면 원래 위치의 항목을 나중 항목으로 교체한다 (last write wins).
        """
        by_key: dict[str, UploadTask] = {}
        for local_path, remote_key, size_bytes in entries:
            if remote_key in by_key:
                logger.warning("중복된 remote key 는 나중 항목으로 덮어씁니다: %s", remote_key)
            by_key[remote_key] = UploadTask(
                local_path=local_path,
                remote_key=remote_key,
                size_bytes=size_bytes,
            )
        return cls(by_key.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[UploadTask]:
        return iter(self._tasks)

    def __getitem__(self, index: int) -> UploadTask:
        return self._tasks[index]

    @property
    def tasks(self) -> Tuple[UploadTask, ...]:
        return self._tasks

    @property
    def total_bytes(self) -> int:
        return sum(t.size_bytes for t in self._tasks)

    def keys(self) -> List[str]:
        return [t.remote_key for t in self._tasks]

    def reset(self) -> "UploadManifest":
        """모든 태스크를 pending / attempt=0 상태로 복제한 새 매니페스트."""
        return UploadManifest(
            replace(t, attempt=0, status=TaskStatus.PENDING, last_error=None) for t in self._tasks
        )


@dataclass(frozen=True)
class UploadResult:
    task: UploadTask
    status: TaskStatus
    attempts: int
    error: Optional[str] = None

    @property
    def remote_key(self) -> str:
        return self.task.remote_key


@dataclass(frozen=True)
class RunSummary:
    total: int
    succeeded: int
    failed: int
    elapsed_seconds: float
    failures: Tuple[UploadResult, ...] = field(default_factory=tuple)
    strategy: str = "per-object"

    @property
    def throughput(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.total / self.elapsed_seconds

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def hidden_failures(self) -> int:
        return max(self.failed - len(self.failures), 0)
