"""
r2_object
---------

`wrangler r2 object put` 으로 파일 하나를 올리는 per-object 클라이언트.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from .config import WranglerCredentials
from .logging_utils import get_logger, redact
from .models import UploadTask
from .subprocess_utils import run_capture


logger = get_logger(__name__)


@dataclass(frozen=True)
class AttemptOutcome:
    ok: bool
    returncode: Optional[int] = 0
    message: str = ""
    timed_out: bool = False


class ObjectClient(Protocol):
    def put(self, task: UploadTask) -> AttemptOutcome:
        ...


class WranglerObjectClient:
    """
    자격증명은 호출마다 subprocess env 로만 전달한다.
    """

    def __init__(
        self,
        bucket: str,
        credentials: WranglerCredentials,
        *,
        timeout: float = 120.0,
        wrangler_bin: str = "wrangler",
    ) -> None:
        self.bucket = bucket
        self.credentials = credentials
        self.timeout = timeout
        self.wrangler_bin = wrangler_bin

    def build_command(self, task: UploadTask) -> List[str]:
        return [
            self.wrangler_bin,
            "r2",
            "object",
            "put",
            f"{self.bucket}/{task.remote_key}",
            "--file",
            task.local_path,
            "--remote",
        ]

    def put(self, task: UploadTask) -> AttemptOutcome:
        result = run_capture(
            self.build_command(task),
            env=self.credentials.as_env(),
            timeout=self.timeout,
        )
        if result.ok:
            return AttemptOutcome(ok=True, returncode=0)

        message = (result.stderr or "").strip() or (result.stdout or "").strip() or "Unknown error"
        # 요약에 그대로 출력되는 문구라 secret 마스킹
        message = redact(message)
        logger.debug("wrangler put 실패: %s (exit=%s)", task.remote_key, result.returncode)
        return AttemptOutcome(
            ok=False,
            returncode=result.returncode,
            message=message,
            timed_out=result.timed_out,
        )
