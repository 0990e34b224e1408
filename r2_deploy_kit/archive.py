"""
archive
-------

zip 아카이브를 임시 디렉토리에 풀고, 업로드 매니페스트를 만드는 모듈.

엔트리 쓰기는 스레드 풀에서 동시에 진행되지만, 매니페스트는 모든 쓰기가
끝난 뒤에만 반환된다. 엔트리 하나라도 실패하면 전체 추출이 실패한다.
"""

from __future__ import annotations

import os
import zipfile
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import BinaryIO, Dict, List, Tuple, Union

from .errors import ArchiveCorrupt
from .logging_utils import get_logger
from .models import UploadManifest, build_remote_key, normalize_key


logger = get_logger(__name__)

ArchiveSource = Union[str, os.PathLike, BinaryIO]


def _open_zip(source: ArchiveSource) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(source, mode="r")
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, EOFError) as e:
        raise ArchiveCorrupt(f"zip 아카이브를 열 수 없습니다: {source!r} ({e})") from e


def _safe_target(dest_dir: Path, relative: str) -> Path:
    """
    정규화된 엔트리 경로를 dest_dir 기준 경로로 바꾼다.
    dest_dir 밖으로 나가는 경로(.. 세그먼트)는 손상된 아카이브로 취급한다.
    """
    parts = relative.split("/")
    if any(p == ".." for p in parts) or (parts and parts[0].endswith(":")):
        raise ArchiveCorrupt(f"아카이브 밖을 가리키는 엔트리입니다: {relative}")
    return dest_dir.joinpath(*parts)


def _is_dir_entry(info: zipfile.ZipInfo) -> bool:
    return info.is_dir() or info.filename.replace("\\", "/").endswith("/")


def _write_entry(zf: zipfile.ZipFile, info: zipfile.ZipInfo, target: Path) -> int:
    target.parent.mkdir(parents=True, exist_ok=True)
    data = zf.read(info)
    with open(target, "wb") as f:
        f.write(data)
    return len(data)


def _plan_entries(zf: zipfile.ZipFile, dest_dir: Path) -> Tuple[List[Path], Dict[str, Tuple[zipfile.ZipInfo, Path]]]:
    """
    (디렉토리 목록, key -> (엔트리, 대상 경로)) 를 아카이브 순서대로 만든다.
    같은 경로가 여러 번 나오면 마지막 엔트리만 남는다.
    """
    directories: List[Path] = []
    files: Dict[str, Tuple[zipfile.ZipInfo, Path]] = {}
    for info in zf.infolist():
        relative = normalize_key(info.filename)
        if not relative:
            continue
        target = _safe_target(dest_dir, relative)
        if _is_dir_entry(info):
            directories.append(target)
            continue
        if relative in files:
            # 순서 위치는 유지하고 엔트리만 교체
            logger.warning("아카이브에 같은 경로가 중복되어 마지막 항목을 사용합니다: %s", relative)
        files[relative] = (info, target)
    return directories, files


def describe_archive(source: ArchiveSource) -> Tuple[int, int]:
    """
    압축을 풀지 않고 (파일 수, 압축 해제 후 총 바이트) 를 반환한다.
    """
    with _open_zip(source) as zf:
        seen: Dict[str, int] = {}
        for info in zf.infolist():
            relative = normalize_key(info.filename)
            if not relative or _is_dir_entry(info):
                continue
            seen[relative] = info.file_size
    return len(seen), sum(seen.values())


def extract_archive(
    source: ArchiveSource,
    dest_dir: Union[str, os.PathLike],
    *,
    prefix: str = "",
    max_workers: int = 8,
) -> UploadManifest:
    """
    zip 을 dest_dir 에 풀고 UploadManifest 를 반환한다.

    - 디렉토리 엔트리: 디렉토리만 생성
    - 파일 엔트리: 부모 디렉토리 생성 후 기록, remote key = prefix + 정규화 경로
    - 실패 시 ArchiveCorrupt (부분 결과는 반환하지 않는다)
    """
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)

    with _open_zip(source) as zf:
        directories, files = _plan_entries(zf, dest)

        try:
            for directory in directories:
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveCorrupt(f"아카이브 디렉토리 생성에 실패했습니다: {e}") from e

        logger.info("아카이브 추출 시작: 파일 %d개 -> %s", len(files), dest)

        futures: Dict[str, Future[int]] = {}
        with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="extract") as pool:
            for relative, (info, target) in files.items():
                futures[relative] = pool.submit(_write_entry, zf, info, target)

            done, not_done = wait(futures.values(), return_when=FIRST_EXCEPTION)
            failed = [f for f in done if f.exception() is not None]
            if failed:
                for f in not_done:
                    f.cancel()
                wait(not_done)
                cause = failed[0].exception()
                raise ArchiveCorrupt(f"아카이브 엔트리 추출에 실패했습니다: {cause}") from cause

        entries = []
        for relative, (_info, target) in files.items():
            size = futures[relative].result()
            entries.append((str(target.resolve()), build_remote_key(prefix, relative), size))

    manifest = UploadManifest.from_entries(entries)
    logger.info("아카이브 추출 완료: 파일 %d개, %d bytes", len(manifest), manifest.total_bytes)
    return manifest
