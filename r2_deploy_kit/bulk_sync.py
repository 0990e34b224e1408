"""
bulk_sync
---------

rclone copy 한 번으로 추출 디렉토리 전체를 R2 에 올리는 fast path.

프로세스 단위로 원자적으로 취급한다. 실패하면 어떤 파일이 올라갔는지 알 수 없으므로
BulkSyncFailed 하나만 던지고, 호출 측은 매니페스트 전체를 per-object 경로로 다시 올린다.
"""

from __future__ import annotations

from typing import List, Optional

from .config import BulkCredentials
from .errors import BulkSyncFailed, CommandFailed
from .logging_utils import get_logger
from .models import TaskStatus, UploadManifest, UploadResult, canonical_prefix
from .subprocess_utils import run_command


logger = get_logger(__name__)

DEFAULT_TRANSFERS = 50
DEFAULT_CHECKERS = 50


def build_destination(bucket: str, prefix: str = "", *, remote: Optional[str] = None) -> str:
    """
    remote 가 설정되어 있으면 `<remote>:<bucket>/<prefix>`,
    없으면 환경변수로 구성되는 on-the-fly S3 backend `:s3:<bucket>/<prefix>`.
    """
    path = f"{bucket}/{canonical_prefix(prefix)}"
    if remote:
        return f"{remote.rstrip(':')}:{path}"
    return f":s3:{path}"


def build_rclone_command(
    root: str,
    bucket: str,
    prefix: str = "",
    *,
    remote: Optional[str] = None,
    transfers: int = DEFAULT_TRANSFERS,
    checkers: int = DEFAULT_CHECKERS,
    rclone_bin: str = "rclone",
) -> List[str]:
    # access key 는 커맨드라인이 아니라 RCLONE_S3_* 환경변수로 넘긴다.
    return [
        rclone_bin,
        "copy",
        root,
        build_destination(bucket, prefix, remote=remote),
        "--transfers",
        str(transfers),
        "--checkers",
        str(checkers),
        "--stats",
        "1s",
        # stats 는 기본 INFO 레벨이라 -v 없이는 출력되지 않는다.
        "--stats-log-level",
        "NOTICE",
    ]


def bulk_sync(
    manifest: UploadManifest,
    root: str,
    *,
    bucket: str,
    account_id: str,
    credentials: BulkCredentials,
    prefix: str = "",
    remote: Optional[str] = None,
    transfers: int = DEFAULT_TRANSFERS,
    checkers: int = DEFAULT_CHECKERS,
    rclone_bin: str = "rclone",
    timeout: Optional[float] = 3600.0,
) -> List[UploadResult]:
    """
    매니페스트 전체를 rclone 으로 한 번에 업로드한다.

    성공 시 모든 태스크를 개별 검증 없이 succeeded 로 표시한다 (rclone 의 보장을 그대로 신뢰).
    실패 시 태스크 상태는 건드리지 않은 채 BulkSyncFailed 를 던진다.
    """
    cmd = build_rclone_command(
        root,
        bucket,
        prefix,
        remote=remote,
        transfers=transfers,
        checkers=checkers,
        rclone_bin=rclone_bin,
    )
    env = credentials.as_env(account_id)

    logger.info("rclone 으로 폴더 전체 업로드: %d개 파일 -> %s", len(manifest), cmd[3])
    try:
        run_command(
            cmd,
            env=env,
            timeout=timeout,
            stream_output=True,
            spinner_message=f"rclone copy -> {bucket}",
        )
    except CommandFailed as e:
        raise BulkSyncFailed(f"rclone 업로드 실패: {e}") from e

    results: List[UploadResult] = []
    for task in manifest:
        if task.status is TaskStatus.PENDING:
            task.mark_succeeded()
        results.append(UploadResult(task=task, status=task.status, attempts=task.attempt))
    return results
