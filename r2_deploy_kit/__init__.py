"""
r2_deploy_kit
-------------

zip 아카이브를 Cloudflare R2 버킷에 한 번에 올리는 배포 CLI 패키지.
rclone 이 준비되어 있으면 폴더 전체를 한 번에 올리고, 아니면(또는 실패하면)
wrangler 로 파일별 업로드를 제한된 동시성 + 재시도로 진행한다.
"""

__all__ = [
    "config",
    "orchestrator",
    "uploader",
]
