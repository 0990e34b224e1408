from __future__ import annotations

import os
import queue
import subprocess
import sys
import threading
import time
from dataclasses import dataclass, replace
from textwrap import shorten
from typing import Callable, Mapping, Sequence

from .errors import CommandFailed
from .logging_utils import get_logger


logger = get_logger(__name__)

OUTPUT_TAIL_LIMIT = 2000


# -----------------------------
# 진행 표시 (spinner) 설정
# -----------------------------
@dataclass(frozen=True)
class ProgressSettings:
    show: bool = True
    idle_seconds: float = 2.0
    style: str = "braille"  # braille | ascii
    interval: float = 0.12

    @classmethod
    def from_env(cls, base: "ProgressSettings | None" = None) -> "ProgressSettings":
        """
        CLI_SHOW_PROGRESS / CLI_PROGRESS_IDLE_SECONDS / CLI_PROGRESS_STYLE /
        CLI_PROGRESS_INTERVAL_SECONDS 가 있으면 base 위에 덮어쓴다.
        잘못된 숫자 값은 무시한다.
        """
        settings = base or cls()
        raw_show = os.getenv("CLI_SHOW_PROGRESS")
        if raw_show is not None:
            settings = replace(settings, show=raw_show.strip().lower() in {"1", "true", "yes", "y", "on"})
        style = os.getenv("CLI_PROGRESS_STYLE")
        if style:
            settings = replace(settings, style=style)
        for env_name, attr in (
            ("CLI_PROGRESS_IDLE_SECONDS", "idle_seconds"),
            ("CLI_PROGRESS_INTERVAL_SECONDS", "interval"),
        ):
            raw = (os.getenv(env_name) or "").strip()
            if not raw:
                continue
            try:
                settings = replace(settings, **{attr: float(raw)})
            except ValueError:
                logger.debug("%s 값이 숫자가 아니어서 무시합니다: %r", env_name, raw)
        return settings


_defaults_lock = threading.Lock()
_defaults = ProgressSettings()


def configure_progress(**changes) -> ProgressSettings:  # noqa: ANN003
    """CLI 엔트리포인트에서 전역 진행 표시 기본값을 바꾼다. (예: --no-progress)"""
    global _defaults
    with _defaults_lock:
        _defaults = replace(_defaults, **changes)
        return _defaults


def _resolve_progress(override: ProgressSettings | None) -> ProgressSettings:
    # 우선순위: 호출 인자 > env > 전역 기본값
    if override is not None:
        return override
    with _defaults_lock:
        base = _defaults
    return ProgressSettings.from_env(base)


def _is_tty(stream) -> bool:  # noqa: ANN001
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


_FRAMES = {
    "braille": ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"],
    "ascii": ["|", "/", "-", "\\"],
}


def _format_elapsed(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:0.1f}s"
    minutes, sec = divmod(int(seconds), 60)
    return f"{minutes}m{sec:02d}s"


def _merged_env(env: Mapping[str, str] | None) -> dict[str, str] | None:
    """
    호출 단위 env 를 현재 프로세스 env 위에 얹는다.
    os.environ 자체는 변경하지 않는다.
    """
    if env is None:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


class _IdleSpinner:
    """
    출력이 idle_seconds 이상 끊긴 동안에만 stderr 한 줄에 스피너를 그린다.
    rclone 이 목록을 훑는 구간처럼 조용한 동안 멈춘 것처럼 보이지 않게 한다.
    """

    def __init__(self, message: str, settings: ProgressSettings, *, stream=None) -> None:  # noqa: ANN001
        self._message = message
        self._stream = stream if stream is not None else sys.stderr
        self._frames = _FRAMES.get((settings.style or "").strip().lower(), _FRAMES["braille"])
        self._interval = max(settings.interval, 0.02)
        self._idle_seconds = max(settings.idle_seconds, 0.0)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._width = 0
        self._visible = False

    def _draw(self, idx: int, elapsed: float) -> None:
        text = f"{self._frames[idx % len(self._frames)]} {self._message}  {_format_elapsed(elapsed)}"
        self._width = max(self._width, len(text))
        self._stream.write("\r" + text)
        self._stream.flush()
        self._visible = True

    def clear(self) -> None:
        if not self._visible:
            return
        self._stream.write("\r" + " " * self._width + "\r")
        self._stream.flush()
        self._visible = False

    def start(self, started: float, last_activity: Callable[[], float]) -> None:
        def _loop() -> None:
            idx = 0
            while not self._stop.is_set():
                now = time.monotonic()
                quiet_for = now - last_activity()
                if quiet_for < self._idle_seconds:
                    self.clear()
                    self._stop.wait(min(self._interval, max(self._idle_seconds - quiet_for, 0.02)))
                    continue
                self._draw(idx, now - started)
                idx += 1
                self._stop.wait(self._interval)

        self._thread = threading.Thread(target=_loop, name="progress-spinner", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1.0)
        self.clear()


def _maybe_spinner(cmd: Sequence[str], message: str | None, settings: ProgressSettings) -> _IdleSpinner | None:
    if not settings.show or not _is_tty(sys.stderr):
        return None
    label = message or shorten(" ".join(cmd), width=72, placeholder="…")
    return _IdleSpinner(label, settings, stream=sys.stderr)


@dataclass(frozen=True)
class RunResult:
    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def _decode(data: str | bytes | None) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8", "replace")
    return data or ""


def run_capture(
    cmd: Sequence[str],
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = 120.0,
) -> RunResult:
    """
    외부 명령을 한 번 실행하고 결과를 그대로 돌려준다. 예외를 던지지 않는다.

    - nonzero exit: returncode 와 stdout/stderr 를 그대로 담는다
    - timeout: 자식 프로세스를 kill 하고 timed_out=True
    - 실행 파일 없음 등 spawn 실패: returncode=None, stderr 에 OS 에러 메시지
    """
    logger.debug("명령 실행: %s", " ".join(cmd))
    try:
        done = subprocess.run(  # noqa: S603
            list(cmd),
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=_merged_env(env),
        )
    except subprocess.TimeoutExpired as e:
        # subprocess.run 은 자식 프로세스를 kill 한 뒤 TimeoutExpired 를 올린다.
        return RunResult(
            returncode=None,
            stdout=_decode(e.stdout),
            stderr=(_decode(e.stderr) + f"\ntimeout: {timeout}초 안에 끝나지 않았습니다").strip(),
            timed_out=True,
        )
    except OSError as e:
        return RunResult(returncode=None, stdout="", stderr=f"명령을 실행할 수 없습니다: {cmd[0]} ({e})")

    return RunResult(returncode=done.returncode, stdout=done.stdout or "", stderr=done.stderr or "")


def _raise_for_result(cmd: Sequence[str], result: RunResult, timeout: float | None) -> None:
    joined = " ".join(cmd)
    if result.timed_out:
        raise CommandFailed(
            f"명령 실행이 {timeout}초 안에 끝나지 않았습니다: {joined}",
            output=result.stdout[-OUTPUT_TAIL_LIMIT:],
        )
    if result.returncode is None:
        raise CommandFailed(f"필요한 명령을 찾을 수 없습니다: {cmd[0]} ({result.stderr})")
    tail = (result.stderr or result.stdout).strip()
    detail = "\n출력:\n" + shorten(tail, width=OUTPUT_TAIL_LIMIT) if tail else ""
    raise CommandFailed(
        f"명령 실행 실패: {joined} (exit={result.returncode}){detail}",
        returncode=result.returncode,
        output=tail[-OUTPUT_TAIL_LIMIT:],
    )


def _stream(
    cmd: Sequence[str],
    *,
    cwd: str | None,
    env: Mapping[str, str] | None,
    timeout: float | None,
    spinner: _IdleSpinner | None,
) -> RunResult:
    # rclone 은 진행 로그를 stderr 로 내보내므로 STDOUT 으로 합친다.
    try:
        proc = subprocess.Popen(  # noqa: S603
            list(cmd),
            cwd=cwd,
            env=_merged_env(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
    except OSError as e:
        return RunResult(returncode=None, stdout="", stderr=str(e))

    lines: list[str] = []
    started = time.monotonic()
    deadline = None if timeout is None else started + float(timeout)
    activity = {"at": started}
    activity_lock = threading.Lock()

    def _last_activity() -> float:
        with activity_lock:
            return activity["at"]

    q: queue.Queue[str | None] = queue.Queue()

    def _pump() -> None:
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                q.put(line)
        finally:
            q.put(None)

    reader = threading.Thread(target=_pump, name="stream-reader", daemon=True)
    reader.start()
    if spinner is not None:
        spinner.start(started, _last_activity)

    try:
        while True:
            if deadline is not None and time.monotonic() >= deadline:
                proc.kill()
                proc.wait()
                return RunResult(returncode=None, stdout="".join(lines), stderr="", timed_out=True)
            try:
                item = q.get(timeout=0.1)
            except queue.Empty:
                continue
            if item is None:
                break
            if spinner is not None:
                spinner.clear()
            lines.append(item)
            sys.stdout.write(item)
            sys.stdout.flush()
            with activity_lock:
                activity["at"] = time.monotonic()

        remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
        try:
            returncode = proc.wait(timeout=remaining)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
            return RunResult(returncode=None, stdout="".join(lines), stderr="", timed_out=True)
    finally:
        reader.join(timeout=1.0)
        if proc.stdout is not None:
            proc.stdout.close()
        if spinner is not None:
            spinner.stop()

    return RunResult(returncode=returncode, stdout="".join(lines), stderr="")


def run_command(
    cmd: Sequence[str],
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = 900.0,
    stream_output: bool = False,
    spinner_message: str | None = None,
    progress: ProgressSettings | None = None,
) -> RunResult:
    """
    외부 명령을 실행하고, 실패하면 (명령 없음 / timeout / nonzero exit) CommandFailed 를 던진다.

    - stream_output=False: stdout/stderr 를 캡처한다
    - stream_output=True : 출력을 실시간으로 터미널에 흘린다 (rclone --stats 등)

    어느 쪽이든 출력이 한동안 없으면 TTY stderr 에 스피너를 그린다.
    env 는 현재 프로세스 환경 위에 덧붙여 이 호출에만 적용된다.
    """
    logger.info("명령 실행: %s", " ".join(cmd))
    spinner = _maybe_spinner(cmd, spinner_message, _resolve_progress(progress))

    if stream_output:
        result = _stream(cmd, cwd=cwd, env=env, timeout=timeout, spinner=spinner)
    else:
        if spinner is not None:
            started = time.monotonic()
            spinner.start(started, lambda: started)
        try:
            result = run_capture(cmd, cwd=cwd, env=env, timeout=timeout)
        finally:
            if spinner is not None:
                spinner.stop()
        if result.stderr:
            logger.debug("명령 stderr: %s", shorten(result.stderr.strip(), width=OUTPUT_TAIL_LIMIT))

    if not result.ok:
        _raise_for_result(cmd, result, timeout)
    return result
