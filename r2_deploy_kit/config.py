from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv


ENV_FILES_DEFAULT_ORDER = [".env", ".env.r2", ".env.secrets"]
SECRETS_FILE_DEFAULT = "deployments-secrets.json"

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 200


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def load_environment_secrets(path: str, environment: str) -> Dict[str, str]:
    """
    deployments-secrets.json 에서 특정 배포 환경의 Cloudflare 설정을 읽어
    환경변수 이름 → 값 dict 로 반환한다.

    {"environments": {"<env>": {"cloudflare": {"apiToken", "accountId"}, "bucketName", ...}}}
    """
    if not os.path.exists(path):
        raise ValueError(f"배포 secrets 파일을 찾을 수 없습니다: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"배포 secrets 파일을 파싱할 수 없습니다: {path} ({e})") from e

    env_cfg = (data.get("environments") or {}).get(environment)
    if not env_cfg or not env_cfg.get("cloudflare"):
        raise ValueError(f"환경 {environment!r} 에 대한 Cloudflare 설정이 없습니다: {path}")

    cloudflare = env_cfg["cloudflare"]
    if not cloudflare.get("apiToken") or not cloudflare.get("accountId"):
        raise ValueError(f"환경 {environment!r} 에 API token 또는 account ID 가 없습니다.")

    overrides = {
        "CLOUDFLARE_API_TOKEN": cloudflare["apiToken"],
        "CLOUDFLARE_ACCOUNT_ID": cloudflare["accountId"],
    }
    optional_keys = {
        "R2_BUCKET_NAME": env_cfg.get("bucketName"),
        "R2_ACCESS_KEY_ID": env_cfg.get("r2AccessKeyId") or cloudflare.get("r2AccessKeyId"),
        "R2_SECRET_ACCESS_KEY": env_cfg.get("r2SecretAccessKey") or cloudflare.get("r2SecretAccessKey"),
    }
    for key, value in optional_keys.items():
        if value:
            overrides[key] = str(value)
    return overrides


def _get_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y"}


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} 는 정수여야 합니다: {raw!r}") from e


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} 는 숫자여야 합니다: {raw!r}") from e


@dataclass(frozen=True)
class WranglerCredentials:
    """wrangler (per-object client) 용 자격증명."""

    account_id: str
    api_token: str = field(repr=False)

    def as_env(self) -> Dict[str, str]:
        return {
            "CLOUDFLARE_ACCOUNT_ID": self.account_id,
            "CLOUDFLARE_API_TOKEN": self.api_token,
        }


@dataclass(frozen=True)
class BulkCredentials:
    """rclone (bulk-copy tool) 용 S3 호환 access key. wrangler 토큰과는 별개다."""

    access_key_id: Optional[str] = field(default=None, repr=False)
    secret_access_key: Optional[str] = field(default=None, repr=False)

    @property
    def complete(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def as_env(self, account_id: str) -> Dict[str, str]:
        if not self.complete:
            return {}
        return {
            "RCLONE_S3_PROVIDER": "Cloudflare",
            "RCLONE_S3_ACCESS_KEY_ID": self.access_key_id or "",
            "RCLONE_S3_SECRET_ACCESS_KEY": self.secret_access_key or "",
            "RCLONE_S3_ENDPOINT": f"https://{account_id}.r2.cloudflarestorage.com",
            "RCLONE_S3_REGION": "auto",
        }


@dataclass
class UploadConfig:
    # 필수
    account_id: str
    api_token: str = field(repr=False)
    bucket_name: str

    prefix: str = ""

    # per-object 업로드 (slow path)
    concurrency: int = 100
    max_retries: int = 5
    attempt_timeout: float = 120.0
    fail_fast_on_permanent: bool = False
    wrangler_bin: str = "wrangler"

    # rclone (fast path)
    enable_fast_path: bool = True
    r2_access_key_id: Optional[str] = field(default=None, repr=False)
    r2_secret_access_key: Optional[str] = field(default=None, repr=False)
    rclone_remote: Optional[str] = None
    rclone_bin: str = "rclone"
    bulk_transfers: int = 50
    bulk_checkers: int = 50
    bulk_timeout: float = 3600.0

    @classmethod
    def from_env(cls, overrides: Optional[Mapping[str, str]] = None) -> "UploadConfig":
        """
        os.environ 위에 overrides (deployments-secrets.json, CLI 옵션) 를 얹어서 읽는다.
        os.environ 자체는 변경하지 않는다.
        """
        env: Dict[str, str] = dict(os.environ)
        if overrides:
            env.update({k: v for k, v in overrides.items() if v is not None})

        missing: List[str] = []
        def req(name: str) -> str:
            val = env.get(name)
            if not val:
                missing.append(name)
            return val or ""

        account_id = req("CLOUDFLARE_ACCOUNT_ID")
        api_token = req("CLOUDFLARE_API_TOKEN")
        bucket_name = req("R2_BUCKET_NAME")

        if missing:
            raise ValueError(
                "필수 환경변수가 누락되었습니다: " + ", ".join(sorted(set(missing)))
            )

        cfg = cls(
            account_id=account_id,
            api_token=api_token,
            bucket_name=bucket_name,
            prefix=env.get("R2_PREFIX", ""),
            concurrency=_get_int(env, "UPLOAD_CONCURRENCY", 100),
            max_retries=_get_int(env, "UPLOAD_MAX_RETRIES", 5),
            attempt_timeout=_get_float(env, "UPLOAD_ATTEMPT_TIMEOUT_SECONDS", 120.0),
            fail_fast_on_permanent=_get_bool(env, "UPLOAD_FAIL_FAST_ON_PERMANENT", False),
            wrangler_bin=env.get("WRANGLER_BIN") or "wrangler",
            enable_fast_path=_get_bool(env, "ENABLE_FAST_PATH", True),
            r2_access_key_id=env.get("R2_ACCESS_KEY_ID") or None,
            r2_secret_access_key=env.get("R2_SECRET_ACCESS_KEY") or None,
            rclone_remote=env.get("R2_REMOTE") or None,
            rclone_bin=env.get("RCLONE_BIN") or "rclone",
            bulk_transfers=_get_int(env, "RCLONE_TRANSFERS", 50),
            bulk_checkers=_get_int(env, "RCLONE_CHECKERS", 50),
            bulk_timeout=_get_float(env, "RCLONE_TIMEOUT_SECONDS", 3600.0),
        )
        cfg.validate()
        return cfg

    def validate(self) -> None:
        """
        범위를 벗어난 값은 조용히 보정하지 않고 설정 오류로 처리한다.
        """
        if not (MIN_CONCURRENCY <= self.concurrency <= MAX_CONCURRENCY):
            raise ValueError(
                f"concurrency 는 {MIN_CONCURRENCY}~{MAX_CONCURRENCY} 사이여야 합니다: {self.concurrency}"
            )
        if self.max_retries < 1:
            raise ValueError(f"max_retries 는 1 이상이어야 합니다: {self.max_retries}")
        if self.attempt_timeout <= 0:
            raise ValueError(f"attempt_timeout 은 0보다 커야 합니다: {self.attempt_timeout}")
        if self.bulk_transfers < 1 or self.bulk_checkers < 1:
            raise ValueError("RCLONE_TRANSFERS / RCLONE_CHECKERS 는 1 이상이어야 합니다.")

    @property
    def wrangler_credentials(self) -> WranglerCredentials:
        return WranglerCredentials(account_id=self.account_id, api_token=self.api_token)

    @property
    def bulk_credentials(self) -> BulkCredentials:
        return BulkCredentials(
            access_key_id=self.r2_access_key_id,
            secret_access_key=self.r2_secret_access_key,
        )
