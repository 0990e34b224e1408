"""
tools
-----

rclone(fast path) 을 쓸 수 있는지 판단하는 모듈.
바이너리가 PATH 에 있고, rclone 용 R2 access key 가 모두 있어야 한다.
"""

from __future__ import annotations

import shutil
from typing import Callable, Optional

from .config import BulkCredentials
from .errors import ToolUnavailable
from .logging_utils import get_logger


logger = get_logger(__name__)

WhichFn = Callable[[str], Optional[str]]


def require_tool(name: str, *, which: WhichFn = shutil.which) -> str:
    path = which(name)
    if not path:
        raise ToolUnavailable(f"{name} 명령을 PATH 에서 찾을 수 없습니다.")
    return path


def detect_fast_path(
    creds: BulkCredentials,
    *,
    rclone_bin: str = "rclone",
    which: WhichFn = shutil.which,
) -> bool:
    """
    부수효과 없는 capability 체크. 예외를 던지지 않는다.
    """
    try:
        require_tool(rclone_bin, which=which)
    except ToolUnavailable as e:
        logger.debug("fast path 비활성화: %s", e)
        return False
    except Exception as e:  # noqa: BLE001
        logger.debug("rclone 탐색 중 오류로 fast path 를 비활성화합니다: %s", e)
        return False

    if not creds.complete:
        logger.debug("fast path 비활성화: R2_ACCESS_KEY_ID / R2_SECRET_ACCESS_KEY 가 없습니다.")
        return False
    return True


def fast_path_hint(creds: BulkCredentials, *, rclone_bin: str = "rclone", which: WhichFn = shutil.which) -> str:
    try:
        has_tool = bool(which(rclone_bin))
    except Exception:  # noqa: BLE001
        has_tool = False

    if has_tool and not creds.complete:
        return "Tip: R2_ACCESS_KEY_ID / R2_SECRET_ACCESS_KEY 를 설정하면 rclone 으로 더 빠르게 업로드합니다."
    if not has_tool:
        return "Tip: rclone 을 설치하고 R2_ACCESS_KEY_ID / R2_SECRET_ACCESS_KEY 를 설정하면 더 빠르게 업로드합니다."
    return ""
