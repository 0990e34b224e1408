import os
import tempfile
import time
from dataclasses import replace
from typing import List

import pytest

from r2_deploy_kit import bulk_sync as bulk_sync_mod
from r2_deploy_kit import orchestrator
from r2_deploy_kit.config import UploadConfig
from r2_deploy_kit.errors import ArchiveCorrupt, BulkSyncFailed
from r2_deploy_kit.r2_object import AttemptOutcome
from r2_deploy_kit.subprocess_utils import RunResult


def _minimal_cfg() -> UploadConfig:
    return UploadConfig(
        account_id="acc123",
        api_token="cf-token-value",
        bucket_name="assets",
        prefix="preset/",
        concurrency=2,
    )


def _with_keys(cfg: UploadConfig) -> UploadConfig:
    return replace(cfg, r2_access_key_id="r2-access-id", r2_secret_access_key="r2-secret-value")


def _which(available):  # noqa: ANN001, ANN202
    return lambda name: f"/usr/bin/{name}" if name in available else None


@pytest.fixture
def temp_dirs(monkeypatch: pytest.MonkeyPatch) -> List[str]:
    """orchestrator 가 만든 임시 디렉토리 경로를 기록한다."""
    created: List[str] = []
    real = tempfile.TemporaryDirectory

    def spy(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        td = real(*args, **kwargs)
        created.append(td.name)
        return td

    monkeypatch.setattr(orchestrator.tempfile, "TemporaryDirectory", spy)
    return created


@pytest.fixture
def sample_zip(make_zip) -> str:  # noqa: ANN001
    return make_zip([("img/", None), ("img/a.png", b"a" * 10), ("img/b.png", b"b" * 20), ("index.html", b"<html/>")])


def test_per_object_upload_without_fast_path(sample_zip, fake_client, recorded_sleep, temp_dirs) -> None:  # noqa: ANN001
    lines: List[str] = []
    client = fake_client()

    summary = orchestrator.deploy_archive(
        _minimal_cfg(),
        sample_zip,
        client=client,
        echo=lines.append,
        sleep=recorded_sleep.append,
        which=_which({"wrangler"}),
    )

    assert summary.ok
    assert summary.strategy == orchestrator.STRATEGY_PER_OBJECT
    assert (summary.total, summary.succeeded) == (3, 3)
    assert sorted(client.calls) == ["preset/img/a.png", "preset/img/b.png", "preset/index.html"]
    assert any(line.startswith("Tip:") for line in lines)
    assert len(temp_dirs) == 1
    assert not os.path.exists(temp_dirs[0])


def test_fast_path_success_skips_per_object_client(
    sample_zip, fake_client, temp_dirs, monkeypatch: pytest.MonkeyPatch  # noqa: ANN001
) -> None:
    calls = []

    def fake_run(cmd, **kwargs):  # noqa: ANN001, ANN003, ANN202
        calls.append((cmd, kwargs))
        return RunResult(returncode=0, stdout="", stderr="")

    monkeypatch.setattr(bulk_sync_mod, "run_command", fake_run)
    client = fake_client()

    summary = orchestrator.deploy_archive(
        _with_keys(_minimal_cfg()),
        sample_zip,
        client=client,
        echo=lambda _l: None,
        which=_which({"wrangler", "rclone"}),
    )

    assert summary.strategy == orchestrator.STRATEGY_BULK
    assert summary.succeeded == 3
    assert client.order == []
    cmd, kwargs = calls[0]
    assert cmd[3] == ":s3:assets/preset/"
    assert cmd[2] == temp_dirs[0]
    assert kwargs["env"]["RCLONE_S3_ACCESS_KEY_ID"] == "r2-access-id"
    assert not os.path.exists(temp_dirs[0])


def test_fast_path_failure_falls_back_to_whole_manifest(sample_zip, fake_client, recorded_sleep) -> None:  # noqa: ANN001
    def failing_bulk(manifest, root, **kwargs):  # noqa: ANN001, ANN003, ANN202
        raise BulkSyncFailed("rclone exit=1")

    lines: List[str] = []
    client = fake_client()

    summary = orchestrator.deploy_archive(
        _with_keys(_minimal_cfg()),
        sample_zip,
        client=client,
        bulk=failing_bulk,
        echo=lines.append,
        sleep=recorded_sleep.append,
        which=_which({"wrangler", "rclone"}),
    )

    assert summary.strategy == orchestrator.STRATEGY_FALLBACK
    assert summary.succeeded == 3
    assert all(n == 1 for n in client.calls.values())
    assert len(client.calls) == 3
    assert any("rclone 업로드 실패" in line for line in lines)


def test_fast_path_disabled_by_config(sample_zip, fake_client) -> None:  # noqa: ANN001
    def unexpected_bulk(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        raise AssertionError("bulk path must not run")

    cfg = replace(_with_keys(_minimal_cfg()), enable_fast_path=False)

    summary = orchestrator.deploy_archive(
        cfg,
        sample_zip,
        client=fake_client(),
        bulk=unexpected_bulk,
        echo=lambda _l: None,
        which=_which({"wrangler", "rclone"}),
    )

    assert summary.strategy == orchestrator.STRATEGY_PER_OBJECT


def test_partial_failure_still_cleans_up(sample_zip, fake_client, recorded_sleep, temp_dirs) -> None:  # noqa: ANN001
    client = fake_client({"preset/img/b.png": [AttemptOutcome(ok=False, returncode=1, message="forbidden")]})

    summary = orchestrator.deploy_archive(
        _minimal_cfg(),
        sample_zip,
        client=client,
        echo=lambda _l: None,
        sleep=recorded_sleep.append,
        which=_which({"wrangler"}),
    )

    assert not summary.ok
    assert summary.failed == 1
    assert summary.failures[0].remote_key == "preset/img/b.png"
    assert client.calls["preset/img/b.png"] == 5
    assert not os.path.exists(temp_dirs[0])


def test_unexpected_error_still_cleans_up(sample_zip, temp_dirs) -> None:  # noqa: ANN001
    def exploding_bulk(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        orchestrator.deploy_archive(
            _with_keys(_minimal_cfg()),
            sample_zip,
            bulk=exploding_bulk,
            echo=lambda _l: None,
            which=_which({"wrangler", "rclone"}),
        )

    assert len(temp_dirs) == 1
    assert not os.path.exists(temp_dirs[0])


def test_corrupt_archive_aborts_before_upload(tmp_path, fake_client, temp_dirs) -> None:  # noqa: ANN001
    bad = tmp_path / "bad.zip"
    bad.write_bytes(b"garbage")
    client = fake_client()

    with pytest.raises(ArchiveCorrupt):
        orchestrator.deploy_archive(_minimal_cfg(), str(bad), client=client, echo=lambda _l: None)

    assert client.order == []
    assert not os.path.exists(temp_dirs[0])


def test_empty_archive_produces_empty_summary(make_zip, fake_client) -> None:  # noqa: ANN001
    zip_path = make_zip([("only-dir/", None)])

    summary = orchestrator.deploy_archive(
        _minimal_cfg(),
        zip_path,
        client=fake_client(),
        echo=lambda _l: None,
        which=_which({"wrangler"}),
    )

    assert summary.total == 0
    assert summary.ok


def test_plan_upload_reports_strategy_without_uploading(sample_zip) -> None:  # noqa: ANN001
    report = orchestrator.plan_upload(_with_keys(_minimal_cfg()), sample_zip, which=_which({"rclone"}))

    assert "# Upload plan" in report
    assert "- files: 3" in report
    assert "- prefix: preset/" in report
    assert ":s3:assets/preset/" in report
    assert "cf-token-value" not in report
    assert "r2-access-id" not in report


def test_plan_upload_without_rclone_uses_per_object(sample_zip) -> None:  # noqa: ANN001
    report = orchestrator.plan_upload(_minimal_cfg(), sample_zip, which=_which(set()))

    assert "- per-object: wrangler r2 object put (concurrency=2)" in report
    assert "Tip:" in report


def test_check_environment_flags_missing_wrangler_as_critical() -> None:
    summary, has_issues = orchestrator.check_environment(_minimal_cfg(), which=_which({"rclone"}))

    assert has_issues
    assert "Critical issues" in summary
    assert "wrangler" in summary


def test_check_environment_missing_rclone_is_only_a_warning() -> None:
    summary, has_issues = orchestrator.check_environment(_minimal_cfg(), which=_which({"wrangler"}))

    assert not has_issues
    assert "### Warnings" in summary
    assert "Critical issues" not in summary


def test_check_environment_reports_config_error() -> None:
    summary, has_issues = orchestrator.check_environment(
        None,
        config_error="필수 환경변수가 누락되었습니다: R2_BUCKET_NAME",
        which=_which({"wrangler", "rclone"}),
    )

    assert has_issues
    assert "R2_BUCKET_NAME" in summary


def test_fallback_duration_includes_failed_bulk_attempt(sample_zip, fake_client, recorded_sleep) -> None:  # noqa: ANN001
    def slow_failing_bulk(manifest, root, **kwargs):  # noqa: ANN001, ANN003, ANN202
        time.sleep(0.3)
        raise BulkSyncFailed("rclone exit=1")

    summary = orchestrator.deploy_archive(
        _with_keys(_minimal_cfg()),
        sample_zip,
        client=fake_client(),
        bulk=slow_failing_bulk,
        echo=lambda _l: None,
        sleep=recorded_sleep.append,
        which=_which({"wrangler", "rclone"}),
    )

    assert summary.strategy == orchestrator.STRATEGY_FALLBACK
    assert summary.elapsed_seconds >= 0.3
