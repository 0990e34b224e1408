import logging

import pytest

from r2_deploy_kit import logging_utils
from r2_deploy_kit.logging_utils import SecretRedactingFilter, redact, register_secret


@pytest.fixture(autouse=True)
def _isolated_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(logging_utils, "_secrets", set())


def test_registered_secret_is_masked() -> None:
    register_secret("cf-token-value")
    assert redact("Authorization: Bearer cf-token-value") == "Authorization: Bearer ****"


def test_short_values_are_not_registered() -> None:
    register_secret("abc")
    register_secret(None)
    assert redact("abc") == "abc"


def test_filter_masks_formatted_message() -> None:
    register_secret("r2-secret-value")
    record = logging.LogRecord(
        name="r2_deploy_kit.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="rclone env: %s",
        args=("RCLONE_S3_SECRET_ACCESS_KEY=r2-secret-value",),
        exc_info=None,
    )

    assert SecretRedactingFilter().filter(record)
    assert record.getMessage() == "rclone env: RCLONE_S3_SECRET_ACCESS_KEY=****"
