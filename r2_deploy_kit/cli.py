import os
import sys
from typing import Dict, Optional

import click

from .config import (
    SECRETS_FILE_DEFAULT,
    UploadConfig,
    load_env_files,
    load_environment_secrets,
)
from .errors import ArchiveCorrupt
from .logging_utils import get_logger, register_secret, setup_logging
from .orchestrator import check_environment, deploy_archive, plan_upload
from .progress import format_summary
from .subprocess_utils import configure_progress


logger = get_logger(__name__)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리)",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다.",
)
@click.option(
    "--no-progress",
    is_flag=True,
    help="출력이 없는 동안 표시되는 스피너를 끕니다.",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int, no_progress: bool) -> None:
    """zip 아카이브를 Cloudflare R2 버킷에 업로드하는 CLI"""
    setup_logging(verbose)
    if no_progress:
        configure_progress(show=False)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _register_secrets(cfg: UploadConfig) -> None:
    register_secret(cfg.api_token)
    register_secret(cfg.r2_access_key_id)
    register_secret(cfg.r2_secret_access_key)


def _load_config_from_ctx(
    ctx: click.Context,
    *,
    environment: Optional[str] = None,
    secrets_file: Optional[str] = None,
    bucket: Optional[str] = None,
    prefix: Optional[str] = None,
    concurrency: Optional[int] = None,
    max_retries: Optional[int] = None,
    timeout: Optional[float] = None,
    no_fast_path: bool = False,
    strict: bool = False,
) -> UploadConfig:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)

    overrides: Dict[str, str] = {}
    if environment:
        path = secrets_file or os.path.join(base_dir, SECRETS_FILE_DEFAULT)
        overrides.update(load_environment_secrets(path, environment))

    # CLI 옵션이 env / secrets 파일보다 우선한다.
    cli_values = {
        "R2_BUCKET_NAME": bucket,
        "R2_PREFIX": prefix,
        "UPLOAD_CONCURRENCY": None if concurrency is None else str(concurrency),
        "UPLOAD_MAX_RETRIES": None if max_retries is None else str(max_retries),
        "UPLOAD_ATTEMPT_TIMEOUT_SECONDS": None if timeout is None else str(timeout),
        "ENABLE_FAST_PATH": "false" if no_fast_path else None,
        "UPLOAD_FAIL_FAST_ON_PERMANENT": "true" if strict else None,
    }
    overrides.update({k: v for k, v in cli_values.items() if v is not None})

    cfg = UploadConfig.from_env(overrides)

    _register_secrets(cfg)
    logger.debug("Config loaded: %s", cfg)
    return cfg


def _upload_options(func):  # noqa: ANN001, ANN202
    options = [
        click.option("-e", "--env", "environment", type=str, default=None,
                     help="deployments-secrets.json 의 배포 환경 이름"),
        click.option("--secrets-file", type=click.Path(dir_okay=False), default=None,
                     help=f"배포 secrets 파일 경로 (기본: <chdir>/{SECRETS_FILE_DEFAULT})"),
        click.option("--bucket", type=str, default=None, help="대상 R2 버킷 (기본: R2_BUCKET_NAME)"),
        click.option("--prefix", type=str, default=None, help="remote key prefix (예: preset/)"),
        click.option("--concurrency", type=int, default=None,
                     help="동시 업로드 수 1~200 (기본: UPLOAD_CONCURRENCY 또는 100)"),
        click.option("--max-retries", type=int, default=None, help="파일별 최대 시도 횟수 (기본: 5)"),
        click.option("--timeout", type=float, default=None, help="업로드 1회 시도 timeout(초)"),
        click.option("--no-fast-path", is_flag=True, help="rclone 을 쓰지 않고 wrangler 로만 업로드합니다."),
        click.option("--strict", is_flag=True, help="transient 가 아닌 에러는 재시도하지 않습니다."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@main.command()
@click.argument("zip_path", type=click.Path(dir_okay=False))
@_upload_options
@click.pass_context
def upload(ctx: click.Context, zip_path: str, **options) -> None:  # noqa: ANN003
    """zip 을 풀어서 모든 파일을 R2 에 업로드 (폴더 구조 유지, 기존 파일 덮어씀)"""
    try:
        cfg = _load_config_from_ctx(ctx, **options)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)

    if not os.path.exists(zip_path):
        click.echo(f"[ERROR] zip 파일을 찾을 수 없습니다: {zip_path}", err=True)
        sys.exit(1)

    click.echo(f"대상 버킷: {cfg.bucket_name}")
    if cfg.prefix:
        click.echo(f"Prefix: {cfg.prefix}")
    click.echo(f"동시 업로드: {cfg.concurrency}")

    try:
        summary = deploy_archive(cfg, zip_path)
    except ArchiveCorrupt as e:
        click.echo(f"[ERROR] 아카이브 오류: {e}", err=True)
        sys.exit(1)
    except Exception as e:  # noqa: BLE001
        logger.exception("업로드 중 오류 발생")
        click.echo(f"[ERROR] 업로드 실패: {e}", err=True)
        sys.exit(1)

    click.echo("")
    click.echo(format_summary(summary))

    # 파일 하나라도 실패했다면 전체 명령은 실패(exit 1)로 간주
    if not summary.ok:
        sys.exit(1)


@main.command()
@click.argument("zip_path", type=click.Path(dir_okay=False))
@_upload_options
@click.pass_context
def plan(ctx: click.Context, zip_path: str, **options) -> None:  # noqa: ANN003
    """업로드 없이 설정/파일 수/선택될 업로드 방식을 출력"""
    try:
        cfg = _load_config_from_ctx(ctx, **options)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)

    try:
        report = plan_upload(cfg, zip_path)
    except ArchiveCorrupt as e:
        click.echo(f"[ERROR] 아카이브 오류: {e}", err=True)
        sys.exit(1)

    click.echo(report)


@main.command()
@click.option("-e", "--env", "environment", type=str, default=None,
              help="deployments-secrets.json 의 배포 환경 이름")
@click.option("--secrets-file", type=click.Path(dir_okay=False), default=None)
@click.pass_context
def check(ctx: click.Context, environment: Optional[str], secrets_file: Optional[str]) -> None:
    """
    업로드 전에 wrangler/rclone 설치 여부와 자격증명 상태를 점검한다.
    """
    cfg: Optional[UploadConfig] = None
    config_error: Optional[str] = None
    try:
        cfg = _load_config_from_ctx(ctx, environment=environment, secrets_file=secrets_file)
    except Exception as e:  # noqa: BLE001
        config_error = str(e)

    report, has_issues = check_environment(cfg, config_error=config_error)
    click.echo(report)

    if has_issues:
        sys.exit(1)
