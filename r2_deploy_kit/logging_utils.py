import logging
import sys
import threading


_secrets_lock = threading.Lock()
_secrets: set[str] = set()

_MASK = "****"


def register_secret(value: str | None) -> None:
    """로그에 절대 남으면 안 되는 값(API 토큰, access key 등)을 등록한다."""
    if not value or len(value) < 4:
        return
    with _secrets_lock:
        _secrets.add(value)


def redact(text: str) -> str:
    with _secrets_lock:
        values = sorted(_secrets, key=len, reverse=True)
    for value in values:
        text = text.replace(value, _MASK)
    return text


class SecretRedactingFilter(logging.Filter):
    """
    등록된 secret 값을 로그 레코드에서 마스킹한다.
    wrangler/rclone 이 에러 메시지에 토큰을 되돌려 찍는 경우까지 막기 위함.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if _secrets:
            record.msg = redact(record.getMessage())
            record.args = None
        return True


def setup_logging(verbosity: int = 0) -> None:
    level = logging.INFO
    if verbosity >= 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, SecretRedactingFilter) for f in handler.filters):
            handler.addFilter(SecretRedactingFilter())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
