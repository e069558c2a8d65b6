"""
Tests for the local media store
"""

import os
import re
from unittest.mock import patch

from services.media_store import InboundMedia, LocalMediaStore, build_media_filename


class TestInboundMedia:

    def test_base64_payload_is_decoded(self):
        assert InboundMedia(filename='a.txt', mimetype='text/plain', data='aGVsbG8=').content() == b'hello'

    def test_raw_bytes_are_kept(self):
        assert InboundMedia(filename=None, mimetype='image/png', data=b'\x89PNG').content() == b'\x89PNG'

    def test_media_type_is_the_mime_family(self):
        assert InboundMedia(filename=None, mimetype='audio/ogg; codecs=opus', data=b'').media_type == 'audio'
        assert InboundMedia(filename=None, mimetype='', data=b'').media_type == 'application'


class TestBuildMediaFilename:

    def test_keeps_extension_and_adds_suffix(self):
        assert re.fullmatch(r'invoice_2024\.[0-9a-f]{6}\.pdf', build_media_filename('invoice 2024.pdf', 'application/pdf'))

    def test_path_components_are_stripped(self):
        name = build_media_filename('../../etc/passwd.txt', 'text/plain')
        assert '/' not in name
        assert name.endswith('.txt')

    def test_extension_from_mimetype_when_missing(self):
        assert build_media_filename(None, 'audio/ogg; codecs=opus').endswith('.ogg')
        assert build_media_filename('voice', None).endswith('.bin')


class TestLocalMediaStore:

    def test_save_writes_under_tenant_directory(self, tmp_path):
        store = LocalMediaStore(str(tmp_path))

        relative = store.save(7, InboundMedia(filename='photo.jpg', mimetype='image/jpeg', data=b'jpeg-bytes'))

        assert relative.startswith('7/photo.')
        with open(store.path_for(relative), 'rb') as handle:
            assert handle.read() == b'jpeg-bytes'

    @patch('services.media_store.sentry_sdk.capture_exception')
    def test_write_failure_still_returns_a_name(self, mock_capture, tmp_path):
        store = LocalMediaStore(str(tmp_path))

        with patch('services.media_store.os.makedirs', side_effect=OSError("read-only file system")):
            relative = store.save(7, InboundMedia(filename='photo.jpg', mimetype='image/jpeg', data=b'x'))

        assert relative.startswith('7/photo.')
        assert not os.path.exists(store.path_for(relative))
        mock_capture.assert_called_once()
