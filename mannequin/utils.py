import base64
import binascii
import re
from typing import NamedTuple, Optional

import bleach

from .exceptions import InvalidUpload

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png")
MAX_UPLOAD_BYTES = 12 * 1024 * 1024

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<payload>.*)$", re.DOTALL)


class ImageUpload(NamedTuple):
    mime_type: str
    data: bytes

    def as_data_url(self) -> str:
        return to_data_url(self.data, self.mime_type)


def sanitize_input(value: Optional[str]) -> str:
    """Sanitize a user-supplied display string.

    - Strips HTML tags using bleach.clean(..., strip=True)
    - Removes NULL bytes
    - Trims whitespace
    """
    if value is None:
        return ""
    val = value.replace("\x00", "")
    val = bleach.clean(val, tags=set(), strip=True)
    return val.strip()


def validate_image(mime_type: Optional[str], size: int):
    """Reject anything that is not a JPEG/PNG of at most 12MB."""
    if (mime_type or "").lower() not in ALLOWED_IMAGE_TYPES:
        raise InvalidUpload("Only JPEG and PNG images are supported")
    if size <= 0:
        raise InvalidUpload("Image is empty")
    if size > MAX_UPLOAD_BYTES:
        raise InvalidUpload("Image must be 12MB or smaller")


def parse_image_data_url(value: Optional[str]) -> ImageUpload:
    """Decode a ``data:image/...;base64,`` URL (or bare base64, taken as JPEG)."""
    if not value:
        raise InvalidUpload("Image is required")
    value = value.strip()
    m = _DATA_URL.match(value)
    if m:
        mime_type, payload = m.group("mime").lower(), m.group("payload")
    else:
        mime_type, payload = "image/jpeg", value

    # check the type before paying for the decode
    if mime_type not in ALLOWED_IMAGE_TYPES:
        raise InvalidUpload("Only JPEG and PNG images are supported")
    # base64 inflates by 4/3; anything far past the limit can be refused undecoded
    if len(payload) > (MAX_UPLOAD_BYTES * 4) // 3 + 4:
        raise InvalidUpload("Image must be 12MB or smaller")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidUpload("Image is not valid base64") from e

    validate_image(mime_type, len(data))
    return ImageUpload(mime_type, data)


def to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"
