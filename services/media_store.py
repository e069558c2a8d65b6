"""
Media store - persists inline media delivered with channel events

Files land in MEDIA_ROOT under a per-tenant directory; the stored message
keeps the relative path as its media URL.
"""

import base64
import binascii
import os
import secrets
from dataclasses import dataclass
from typing import Optional, Union

import sentry_sdk
from werkzeug.utils import secure_filename

from logging_config import get_logger
from utils.datetime_utils import utc_now, to_epoch_ms

logger = get_logger(__name__)


@dataclass
class InboundMedia:
    """Media attached to a channel event; `data` is base64 unless bytes are given"""
    filename: Optional[str]
    mimetype: str
    data: Union[str, bytes]

    @property
    def media_type(self) -> str:
        return (self.mimetype or 'application/octet-stream').split('/')[0]

    def content(self) -> bytes:
        if isinstance(self.data, bytes):
            return self.data
        try:
            return base64.b64decode(self.data, validate=False)
        except (binascii.Error, ValueError):
            logger.warning("Inline media is not valid base64, storing raw text",
                           filename=self.filename)
            return self.data.encode('utf-8')


def build_media_filename(filename: Optional[str], mimetype: Optional[str]) -> str:
    """Unique, filesystem-safe name keeping the original extension."""
    suffix = secrets.token_hex(3)
    safe = secure_filename(filename or '')
    if safe and '.' in safe:
        base, extension = safe.rsplit('.', 1)
        return f"{base or 'file'}.{suffix}.{extension}"
    extension = 'bin'
    if mimetype and '/' in mimetype:
        extension = mimetype.split('/', 1)[1].split(';')[0].strip() or 'bin'
    return f"{safe or suffix}-{to_epoch_ms(utc_now())}.{extension}"


class LocalMediaStore:
    """Writes media files below a root directory"""

    def __init__(self, root: str):
        self.root = root

    def save(self, tenant_id: int, media: InboundMedia) -> str:
        """
        Store media for a tenant.

        Returns:
            The path relative to the store root, used as the message media URL.
            A failed write is logged and reported, and the name is still
            returned so the message itself is never lost.
        """
        filename = build_media_filename(media.filename, media.mimetype)
        relative = f"{tenant_id}/{filename}"
        directory = os.path.join(self.root, str(tenant_id))
        try:
            os.makedirs(directory, exist_ok=True)
            with open(os.path.join(directory, filename), 'wb') as handle:
                handle.write(media.content())
        except OSError as e:
            sentry_sdk.capture_exception(e)
            logger.error("Failed to store inbound media", path=relative, error=str(e))
        return relative

    def path_for(self, relative: str) -> str:
        return os.path.join(self.root, relative)
