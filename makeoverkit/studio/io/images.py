# makeoverkit/studio/io/images.py
from __future__ import annotations

import base64
import binascii
import io
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from PIL import Image, UnidentifiedImageError

PathLike = Union[str, Path]

DEFAULT_MIME = "image/png"


def sniff_mime(data: bytes) -> str:
    """
    Identify an encoded image with Pillow.
    Raises ValueError for anything Pillow can't open.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError("not a decodable image") from e
    return Image.MIME.get(fmt or "", DEFAULT_MIME)


def _split_data_url(url: str) -> tuple[str, bytes]:
    if not url.startswith("data:") or "," not in url:
        raise ValueError("expected a data: URL")
    header, payload = url[len("data:"):].split(",", 1)
    parts = header.split(";")
    if "base64" not in parts[1:]:
        raise ValueError("only base64 data: URLs are supported")
    mime = parts[0] or DEFAULT_MIME
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("malformed base64 payload in data: URL") from e
    return mime, data


def _data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64," + base64.b64encode(data).decode("ascii")


@dataclass(frozen=True)
class ImageRef:
    """An uploaded image as it sits in a slot: encoded bytes plus a name."""
    data: bytes
    filename: str
    mime_type: str = DEFAULT_MIME

    @classmethod
    def from_bytes(cls, data: bytes, filename: str) -> "ImageRef":
        return cls(data=bytes(data), filename=filename, mime_type=sniff_mime(data))

    @classmethod
    def from_path(cls, path: PathLike) -> "ImageRef":
        p = Path(path)
        return cls.from_bytes(p.read_bytes(), p.name)

    @classmethod
    def from_data_url(cls, url: str, filename: str) -> "ImageRef":
        _declared, data = _split_data_url(url)
        return cls.from_bytes(data, filename)

    def to_data_url(self) -> str:
        return _data_url(self.mime_type, self.data)

    def open(self) -> Image.Image:
        return Image.open(io.BytesIO(self.data))


@dataclass(frozen=True)
class Artifact:
    """A generated image. Never mutated after the backend hands it over."""
    data: bytes
    mime_type: str = DEFAULT_MIME

    @classmethod
    def from_image(cls, img: Image.Image) -> "Artifact":
        return cls(data=encode_png_bytes(img), mime_type="image/png")

    @classmethod
    def from_data_url(cls, url: str) -> "Artifact":
        mime, data = _split_data_url(url)
        return cls(data=data, mime_type=mime)

    def to_data_url(self) -> str:
        return _data_url(self.mime_type, self.data)

    def open(self) -> Image.Image:
        return Image.open(io.BytesIO(self.data))


def encode_png_bytes(img: Image.Image) -> bytes:
    """
    Deterministic PNG encoder for uploads and artifacts.
    """
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def artifact_to_file(artifact: Artifact, filename: str) -> ImageRef:
    """
    Turn a generated artifact back into a slot/backend input.
    Validates the payload decodes, so a corrupt artifact fails here
    rather than inside the backend.
    """
    return ImageRef.from_bytes(artifact.data, filename)


def file_to_image(ref: ImageRef) -> Image.Image:
    """Decode a slot image into an RGB Pillow image the backends can consume."""
    img = ref.open()
    return img.convert("RGB") if img.mode != "RGB" else img
