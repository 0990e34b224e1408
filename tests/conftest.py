"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 r2_deploy_kit 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.
"""

from __future__ import annotations

import os
import sys
import threading
import time
import zipfile
from collections import defaultdict
from typing import Callable, Dict, List, Optional

import pytest


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


_CFG_ENV_KEYS = [
    "CLOUDFLARE_ACCOUNT_ID",
    "CLOUDFLARE_API_TOKEN",
    "R2_BUCKET_NAME",
    "R2_PREFIX",
    "UPLOAD_CONCURRENCY",
    "UPLOAD_MAX_RETRIES",
    "UPLOAD_ATTEMPT_TIMEOUT_SECONDS",
    "UPLOAD_FAIL_FAST_ON_PERMANENT",
    "ENABLE_FAST_PATH",
    "R2_ACCESS_KEY_ID",
    "R2_SECRET_ACCESS_KEY",
    "R2_REMOTE",
    "RCLONE_TRANSFERS",
    "RCLONE_CHECKERS",
    "RCLONE_TIMEOUT_SECONDS",
    "WRANGLER_BIN",
    "RCLONE_BIN",
]


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """개발자 로컬 env 의 R2 설정이 테스트에 섞이지 않도록 관련 키를 모두 지운다."""
    for key in _CFG_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def make_zip(tmp_path) -> Callable[..., str]:  # noqa: ANN001
    """
    {아카이브 경로: bytes} 로 zip 을 만든다. 값이 None 이면 디렉토리 엔트리.
    """

    def _make(entries, name: str = "files.zip") -> str:  # noqa: ANN001
        path = tmp_path / name
        items = entries.items() if isinstance(entries, dict) else entries
        with zipfile.ZipFile(path, "w") as zf:
            for arcname, data in items:
                zf.writestr(arcname, b"" if data is None else data)
        return str(path)

    return _make


class FakeClient:
    """
    ObjectClient 대역. key 별로 시도 결과 시퀀스를 지정할 수 있고,
    동시에 진행 중인 put() 호출 수의 최댓값을 기록한다.
    """

    def __init__(self, script: Optional[Dict[str, list]] = None, *, delay: float = 0.0) -> None:
        self.script = script or {}
        self.delay = delay
        self.calls: Dict[str, int] = defaultdict(int)
        self.order: List[str] = []
        self.current = 0
        self.max_seen = 0
        self._lock = threading.Lock()

    def put(self, task):  # noqa: ANN001, ANN201
        from r2_deploy_kit.r2_object import AttemptOutcome

        with self._lock:
            self.current += 1
            self.max_seen = max(self.max_seen, self.current)
            self.calls[task.remote_key] += 1
            self.order.append(task.remote_key)
            n = self.calls[task.remote_key]
        try:
            if self.delay:
                time.sleep(self.delay)
            outcomes = self.script.get(task.remote_key)
            if not outcomes:
                return AttemptOutcome(ok=True)
            outcome = outcomes[min(n, len(outcomes)) - 1]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            with self._lock:
                self.current -= 1


@pytest.fixture
def fake_client() -> Callable[..., FakeClient]:
    return FakeClient


@pytest.fixture
def recorded_sleep() -> List[float]:
    """uploader 의 sleep 대역. 실제로 기다리지 않고 요청된 지연만 기록한다."""
    return []
