import base64
import json
from pathlib import Path

import pytest

from bsv_inscribe.content import (
    TEXT_CONTENT_TYPE,
    Profile,
    file_payload,
    guess_content_type,
    profile_payload,
    text_payload,
)
from bsv_inscribe.errors import EncodingError


def test_text_payload_is_utf8() -> None:
    payload = text_payload("héllo")

    assert payload.content_type == TEXT_CONTENT_TYPE
    assert payload.payload == "héllo".encode("utf-8")
    with pytest.raises(EncodingError):
        text_payload("")


def test_file_payload_guesses_type(tmp_path: Path) -> None:
    image = tmp_path / "pixel.png"
    image.write_bytes(b"\x89PNG\r\n")
    blob = tmp_path / "blob.unknownext"
    blob.write_bytes(b"\x00")

    assert file_payload(image).content_type == "image/png"
    assert file_payload(image, "image/x-custom").content_type == "image/x-custom"
    assert guess_content_type(blob) == "application/octet-stream"


def test_file_payload_errors(tmp_path: Path) -> None:
    empty = tmp_path / "empty.txt"
    empty.write_bytes(b"")

    with pytest.raises(EncodingError):
        file_payload(empty)
    with pytest.raises(EncodingError):
        file_payload(tmp_path / "missing.txt")


def test_profile_defaults() -> None:
    document = Profile(timestamp="2024-01-01T00:00:00Z").to_dict()

    assert document == {
        "p": "profile",
        "username": "Anonymous",
        "title": "BSV User",
        "bio": "On-chain profile",
        "timestamp": "2024-01-01T00:00:00Z",
    }


def test_profile_with_background_uses_profile2(tmp_path: Path) -> None:
    avatar = tmp_path / "a.png"
    avatar.write_bytes(b"avatar")
    background = tmp_path / "b.jpg"
    background.write_bytes(b"bg")

    profile = Profile.from_files(username="sam", avatar_path=avatar, background_path=background)
    document = json.loads(profile_payload(profile).payload)

    assert document["p"] == "profile2"
    assert document["username"] == "sam"
    assert document["avatar"] == "data:image/png;base64," + base64.b64encode(b"avatar").decode()
    assert document["background"].startswith("data:image/jpeg;base64,")


def test_profile_missing_image(tmp_path: Path) -> None:
    with pytest.raises(EncodingError):
        Profile.from_files(avatar_path=tmp_path / "nope.png")
