"""
retry
-----

업로드 시도 실패를 분류하고, 재시도 여부와 backoff 지연을 계산한다.

기본 정책은 "transient 가 아닌 실패도 시도 횟수 한도까지 재시도" 이다.
fail_fast_on_permanent=True 이면 transient 로 분류되지 않은 실패는 바로 종료된다.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import (
    PermanentUploadError,
    RetryBudgetExhausted,
    TransientUploadError,
    UploadAttemptError,
)
from .models import ERROR_TEXT_LIMIT, UploadTask, truncate_error
from .r2_object import AttemptOutcome


TRANSIENT_MARKERS = (
    "rate limit",
    "rate limited",
    "429",
    "500",
    "502",
    "503",
    "504",
    "connection lost",
    "connection reset",
    "timeout",
    "timed out",
    "econnreset",
    "etimedout",
    "unspecified error",
)


def is_transient_message(message: str) -> bool:
    text = (message or "").lower()
    return any(marker in text for marker in TRANSIENT_MARKERS)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 5
    base_delay: float = 1.0
    fail_fast_on_permanent: bool = False
    error_limit: int = ERROR_TEXT_LIMIT

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries 는 1 이상이어야 합니다: {self.max_retries}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay 는 0 이상이어야 합니다: {self.base_delay}")

    def classify(self, outcome: AttemptOutcome) -> UploadAttemptError:
        message = outcome.message or "Unknown error"
        # spawn 실패(returncode 없음)와 timeout 은 네트워크 계열 실패로 본다.
        if outcome.timed_out or outcome.returncode is None or is_transient_message(message):
            return TransientUploadError(message, returncode=outcome.returncode)
        return PermanentUploadError(message, returncode=outcome.returncode)

    def should_retry(self, error: UploadAttemptError, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        if self.fail_fast_on_permanent and isinstance(error, PermanentUploadError):
            return False
        return True

    def backoff_delay(self, attempt: int) -> float:
        """attempt 번째 시도가 실패한 뒤 기다릴 시간: 1s, 2s, 4s, 8s, ..."""
        return self.base_delay * (2 ** (max(attempt, 1) - 1))

    def exhausted(self, task: UploadTask, error: UploadAttemptError) -> RetryBudgetExhausted:
        return RetryBudgetExhausted(task.remote_key, task.attempt, error)

    def display_error(self, error: UploadAttemptError) -> str:
        return truncate_error(error.message, self.error_limit)
