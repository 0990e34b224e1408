"""
errors
------

업로드 파이프라인에서 사용하는 예외 계층.

- 프로세스 치명적: ArchiveCorrupt (업로드 시작 전 중단)
- 배치 단위 비치명적: ToolUnavailable, BulkSyncFailed (fast path 만 포기)
- 태스크 단위: TransientUploadError / PermanentUploadError / RetryBudgetExhausted
  (기록만 하고 배치를 중단시키지 않는다)
"""

from __future__ import annotations


class UploadKitError(RuntimeError):
    """r2_deploy_kit 에서 발생시키는 예외의 공통 부모."""


class CommandFailed(RuntimeError):
    """
    외부 명령 실행 실패 (명령 없음 / timeout / nonzero exit).
    """

    def __init__(self, message: str, *, returncode: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.output = output


class ArchiveCorrupt(UploadKitError):
    """zip 아카이브를 디코딩할 수 없거나, 엔트리 하나라도 풀기에 실패한 경우."""


class ToolUnavailable(UploadKitError):
    """bulk-copy 도구(rclone) 또는 그 도구가 필요로 하는 자격증명이 없는 경우."""


class BulkSyncFailed(UploadKitError):
    """rclone copy 가 실패한 경우. 어떤 파일이 올라갔는지는 알 수 없다."""


class UploadAttemptError(UploadKitError):
    """per-object 업로드 시도 1회의 실패."""

    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.returncode = returncode


class TransientUploadError(UploadAttemptError):
    """rate limit, 5xx, connection reset, timeout 등 재시도하면 성공할 것으로 기대되는 실패."""


class PermanentUploadError(UploadAttemptError):
    """그 외 모든 실패. 기본 정책에서는 이것도 시도 횟수 한도까지 재시도한다."""


class RetryBudgetExhausted(UploadKitError):
    """max_retries 번 시도 후에도 실패한 태스크. 태스크 단위 최종 실패로만 기록된다."""

    def __init__(self, remote_key: str, attempts: int, last_error: UploadAttemptError) -> None:
        super().__init__(f"{remote_key}: {attempts}회 시도 후 실패 ({last_error.message})")
        self.remote_key = remote_key
        self.attempts = attempts
        self.last_error = last_error
