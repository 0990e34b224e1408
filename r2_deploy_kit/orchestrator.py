from __future__ import annotations

import shutil
import tempfile
import time
from typing import Callable, List, Optional

import click

from .archive import ArchiveSource, describe_archive, extract_archive
from .bulk_sync import build_destination, bulk_sync
from .config import UploadConfig
from .errors import BulkSyncFailed, ToolUnavailable
from .logging_utils import get_logger
from .models import RunSummary, UploadManifest, UploadResult, canonical_prefix
from .progress import ProgressReporter
from .r2_object import ObjectClient, WranglerObjectClient
from .retry import RetryPolicy
from .tools import WhichFn, detect_fast_path, fast_path_hint, require_tool
from .uploader import BoundedConcurrencyUploader


logger = get_logger(__name__)

BulkFn = Callable[..., List[UploadResult]]

STRATEGY_BULK = "bulk"
STRATEGY_PER_OBJECT = "per-object"
STRATEGY_FALLBACK = "bulk→per-object"


def _make_client(cfg: UploadConfig) -> ObjectClient:
    return WranglerObjectClient(
        cfg.bucket_name,
        cfg.wrangler_credentials,
        timeout=cfg.attempt_timeout,
        wrangler_bin=cfg.wrangler_bin,
    )


def _run_per_object(
    cfg: UploadConfig,
    manifest: UploadManifest,
    reporter: ProgressReporter,
    client: ObjectClient,
    sleep: Callable[[float], None],
) -> None:
    policy = RetryPolicy(
        max_retries=cfg.max_retries,
        fail_fast_on_permanent=cfg.fail_fast_on_permanent,
    )
    uploader = BoundedConcurrencyUploader(
        client,
        policy,
        cfg.concurrency,
        reporter=reporter,
        sleep=sleep,
    )
    uploader.run(manifest)


def deploy_archive(
    cfg: UploadConfig,
    archive: ArchiveSource,
    *,
    client: Optional[ObjectClient] = None,
    bulk: Optional[BulkFn] = None,
    echo: Callable[[str], None] = click.echo,
    sleep: Callable[[float], None] = time.sleep,
    which: WhichFn = shutil.which,
) -> RunSummary:
    """
    zip 아카이브 하나를 R2 버킷에 업로드한다.

    추출 → fast path 판단 → (rclone, 실패 시에만 wrangler 워커 풀) → 요약.
    임시 추출 디렉토리는 성공/부분 실패/예외 어떤 경우에도 삭제된다.
    """
    cfg.validate()
    object_client = client or _make_client(cfg)
    bulk_fn = bulk or bulk_sync

    with tempfile.TemporaryDirectory(prefix="zip-upload-") as temp_dir:
        logger.info("아카이브 추출: %s -> %s", archive, temp_dir)
        manifest = extract_archive(archive, temp_dir, prefix=cfg.prefix)
        echo(f"{len(manifest)}개 파일을 추출했습니다.")

        reporter = ProgressReporter(len(manifest), echo=echo)

        use_fast_path = cfg.enable_fast_path and detect_fast_path(
            cfg.bulk_credentials,
            rclone_bin=cfg.rclone_bin,
            which=which,
        )

        if use_fast_path:
            echo("rclone 으로 폴더 전체를 업로드합니다...")
            try:
                results = bulk_fn(
                    manifest,
                    temp_dir,
                    bucket=cfg.bucket_name,
                    account_id=cfg.account_id,
                    credentials=cfg.bulk_credentials,
                    prefix=cfg.prefix,
                    remote=cfg.rclone_remote,
                    transfers=cfg.bulk_transfers,
                    checkers=cfg.bulk_checkers,
                    rclone_bin=cfg.rclone_bin,
                    timeout=cfg.bulk_timeout,
                )
            except BulkSyncFailed as e:
                # 어떤 파일이 올라갔는지 알 수 없으므로 매니페스트 전체를 다시 올린다.
                logger.warning("rclone 업로드 실패, wrangler 로 전환합니다: %s", e)
                echo(f"rclone 업로드 실패: {e}")
                echo(f"wrangler 로 파일별 업로드를 진행합니다 (동시 {cfg.concurrency}개).")
                retry_manifest = manifest.reset()
                reporter = ProgressReporter(len(retry_manifest), echo=echo, started=reporter.started)
                _run_per_object(cfg, retry_manifest, reporter, object_client, sleep)
                return reporter.finalize(STRATEGY_FALLBACK)

            for result in results:
                reporter.record(result, quiet=True)
            echo(f"rclone 으로 {len(manifest)}개 파일을 업로드했습니다.")
            return reporter.finalize(STRATEGY_BULK)

        if cfg.enable_fast_path:
            hint = fast_path_hint(cfg.bulk_credentials, rclone_bin=cfg.rclone_bin, which=which)
            if hint:
                echo(hint)
        echo(f"wrangler 로 파일별 업로드를 진행합니다 (동시 {cfg.concurrency}개).")
        _run_per_object(cfg, manifest, reporter, object_client, sleep)
        return reporter.finalize(STRATEGY_PER_OBJECT)


def _mask(value: Optional[str]) -> str:
    if not value:
        return "(not set)"
    return "****" + value[-4:] if len(value) > 8 else "****"


def plan_upload(cfg: UploadConfig, archive: ArchiveSource, *, which: WhichFn = shutil.which) -> str:
    """
    실제 업로드 없이 설정과 선택될 업로드 방식을 요약한다.
    """
    file_count, total_bytes = describe_archive(archive)
    fast = cfg.enable_fast_path and detect_fast_path(
        cfg.bulk_credentials,
        rclone_bin=cfg.rclone_bin,
        which=which,
    )

    lines: List[str] = []
    lines.append("# Upload plan")
    lines.append(f"- archive: {archive}")
    lines.append(f"- files: {file_count} ({total_bytes / 1024:.2f} KB)")
    lines.append(f"- bucket: {cfg.bucket_name}")
    lines.append(f"- prefix: {canonical_prefix(cfg.prefix) or '(none)'}")
    lines.append("")

    lines.append("## Config summary")
    lines.append(f"- account_id: {cfg.account_id}")
    lines.append(f"- api_token: {_mask(cfg.api_token)}")
    lines.append(f"- concurrency: {cfg.concurrency}")
    lines.append(f"- max_retries: {cfg.max_retries}")
    lines.append(f"- attempt_timeout: {cfg.attempt_timeout}s")
    lines.append(f"- fail_fast_on_permanent: {cfg.fail_fast_on_permanent}")
    lines.append(f"- enable_fast_path: {cfg.enable_fast_path}")
    lines.append(f"- r2_access_key_id: {_mask(cfg.r2_access_key_id)}")
    lines.append("")

    lines.append("## Strategy")
    if fast:
        dest = build_destination(cfg.bucket_name, cfg.prefix, remote=cfg.rclone_remote)
        lines.append(f"- {STRATEGY_BULK}: rclone copy -> {dest} (transfers={cfg.bulk_transfers}, checkers={cfg.bulk_checkers})")
        lines.append(f"- fallback: wrangler per-object (concurrency={cfg.concurrency})")
    else:
        lines.append(f"- {STRATEGY_PER_OBJECT}: wrangler r2 object put (concurrency={cfg.concurrency})")
        if cfg.enable_fast_path:
            hint = fast_path_hint(cfg.bulk_credentials, rclone_bin=cfg.rclone_bin, which=which)
            if hint:
                lines.append(f"- {hint}")

    return "\n".join(lines)


def check_environment(
    cfg: Optional[UploadConfig],
    *,
    config_error: Optional[str] = None,
    which: WhichFn = shutil.which,
) -> tuple[str, bool]:
    """
    업로드 전에 도구/자격증명 상태를 점검한다. (업로드는 하지 않는다)

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_issues: 크리티컬 이슈(wrangler 없음, 필수 설정 누락)가 있는지 여부
    """
    lines: List[str] = []
    critical: List[str] = []
    warnings: List[str] = []

    wrangler_bin = cfg.wrangler_bin if cfg else "wrangler"
    rclone_bin = cfg.rclone_bin if cfg else "rclone"

    lines.append("# Upload pre-check")
    lines.append("")

    lines.append("## Tools")
    try:
        path = require_tool(wrangler_bin, which=which)
        lines.append(f"- wrangler: {path}")
    except ToolUnavailable as e:
        lines.append("- wrangler: 없음")
        critical.append(str(e))
    try:
        path = require_tool(rclone_bin, which=which)
        lines.append(f"- rclone: {path}")
    except ToolUnavailable as e:
        lines.append("- rclone: 없음 (fast path 사용 불가)")
        warnings.append(str(e))
    lines.append("")

    lines.append("## Config")
    if cfg is None:
        msg = f"설정 로드 실패: {config_error or '알 수 없는 오류'}"
        lines.append(f"- {msg}")
        critical.append(msg)
    else:
        lines.append(f"- bucket: {cfg.bucket_name}")
        lines.append(f"- account_id: {cfg.account_id}")
        lines.append(f"- api_token: {_mask(cfg.api_token)}")
        if cfg.bulk_credentials.complete:
            lines.append("- R2 access keys: 설정됨")
        else:
            lines.append("- R2 access keys: 없음")
            warnings.append("R2_ACCESS_KEY_ID / R2_SECRET_ACCESS_KEY 가 없어 rclone fast path 를 쓸 수 없습니다.")
    lines.append("")

    lines.append("## Summary")
    if critical:
        lines.append("- 상태: 크리티컬 이슈가 있습니다. 업로드 전 반드시 해결해야 합니다.")
    elif warnings:
        lines.append("- 상태: 경고만 있습니다. wrangler 로 파일별 업로드를 진행합니다.")
    else:
        lines.append("- 상태: 주요 이슈 없음 (rclone fast path 사용 가능)")

    if critical:
        lines.append("")
        lines.append("### Critical issues")
        for i in critical:
            lines.append(f"- {i}")
    if warnings:
        lines.append("")
        lines.append("### Warnings")
        for i in warnings:
            lines.append(f"- {i}")

    return "\n".join(lines), bool(critical)
