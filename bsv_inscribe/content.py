"""Builders for the payload kinds the publisher knows how to inscribe."""

from __future__ import annotations

import base64
import json
import mimetypes
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import EncodingError
from .script import InscriptionPayload

TEXT_CONTENT_TYPE = "text/plain;charset=utf-8"
PROFILE_CONTENT_TYPE = "application/json"

DEFAULT_USERNAME = "Anonymous"
DEFAULT_TITLE = "BSV User"
DEFAULT_BIO = "On-chain profile"


def text_payload(text: str) -> InscriptionPayload:
    if not text:
        raise EncodingError("Text inscriptions must not be empty")
    return InscriptionPayload(content_type=TEXT_CONTENT_TYPE, payload=text.encode("utf-8"))


def guess_content_type(path: Path) -> str:
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or "application/octet-stream"


def file_payload(path: str | Path, content_type: str | None = None) -> InscriptionPayload:
    source = Path(path).expanduser()
    try:
        data = source.read_bytes()
    except OSError as exc:
        raise EncodingError(f"Unable to read {source}: {exc}") from exc
    if not data:
        raise EncodingError(f"{source} is empty")
    return InscriptionPayload(content_type=content_type or guess_content_type(source), payload=data)


def _data_url(path: Path) -> str:
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{guess_content_type(path)};base64,{encoded}"


@dataclass
class Profile:
    """Structured profile document.

    Profiles carrying a background image use the ``profile2`` tag.
    """

    username: str = DEFAULT_USERNAME
    title: str = DEFAULT_TITLE
    bio: str = DEFAULT_BIO
    avatar: str | None = None
    background: str | None = None
    timestamp: str | None = None

    @classmethod
    def from_files(
        cls,
        *,
        username: str | None = None,
        title: str | None = None,
        bio: str | None = None,
        avatar_path: str | Path | None = None,
        background_path: str | Path | None = None,
    ) -> "Profile":
        try:
            avatar = _data_url(Path(avatar_path).expanduser()) if avatar_path else None
            background = _data_url(Path(background_path).expanduser()) if background_path else None
        except OSError as exc:
            raise EncodingError(f"Unable to read profile image: {exc}") from exc
        return cls(
            username=username or DEFAULT_USERNAME,
            title=title or DEFAULT_TITLE,
            bio=bio or DEFAULT_BIO,
            avatar=avatar,
            background=background,
        )

    def to_dict(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "p": "profile2" if self.background else "profile",
            "username": self.username,
            "title": self.title,
            "bio": self.bio,
            "timestamp": self.timestamp
            or time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        if self.avatar:
            document["avatar"] = self.avatar
        if self.background:
            document["background"] = self.background
        return document


def profile_payload(profile: Profile) -> InscriptionPayload:
    return InscriptionPayload(
        content_type=PROFILE_CONTENT_TYPE,
        payload=json.dumps(profile.to_dict(), separators=(",", ":")).encode("utf-8"),
    )
