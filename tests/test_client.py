from __future__ import annotations

import os

import pytest

from client import ClientCredentials, read_credentials, session_path


def test_credentials_are_read_from_the_environment() -> None:
    credentials = read_credentials({"API_ID": " 12345 ", "API_HASH": "abc", "SESSION_NAME": ""})

    assert credentials == ClientCredentials(12345, "abc", "seekwatch")


@pytest.mark.parametrize(
    "environ",
    [
        {},
        {"API_ID": "12345"},
        {"API_ID": "not-a-number", "API_HASH": "abc"},
    ],
)
def test_unusable_credentials_are_rejected(environ) -> None:
    with pytest.raises(RuntimeError):
        read_credentials(environ)


def test_session_file_lives_in_the_data_directory(tmp_path) -> None:
    relative = ClientCredentials(1, "abc", "bot")
    absolute = ClientCredentials(1, "abc", str(tmp_path / "elsewhere"))

    assert session_path(relative, "data") == os.path.join("data", "bot")
    assert session_path(absolute, "data") == str(tmp_path / "elsewhere")
