"""Unit tests for data URI and upload conversions."""
# pylint: disable=missing-function-docstring

import base64
import io
import os
import tempfile
import unittest

from PIL import Image

from image_editor import codec
from image_editor.errors import MalformedDataUri, UnsupportedImage


def _image_bytes(fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 3), (200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


class DataUriTests(unittest.TestCase):
    """encode/decode behaviour."""

    def test_encode_embeds_mime_and_payload(self):
        artifact = codec.ImageArtifact(data=b"imgbytes", mime_type="image/jpeg")
        uri = codec.encode(artifact)
        self.assertEqual(uri, "data:image/jpeg;base64," + base64.b64encode(b"imgbytes").decode("utf-8"))

    def test_decode_reverses_encode(self):
        artifact = codec.ImageArtifact(data=_image_bytes(), mime_type="image/png")
        decoded = codec.decode(codec.encode(artifact), "photo.png")
        self.assertEqual(decoded.data, artifact.data)
        self.assertEqual(decoded.mime_type, "image/png")
        self.assertEqual(decoded.filename, "photo.png")

    def test_round_trip_keeps_unusual_mime_types(self):
        for mime in ("Image/PNG", "image/x_portable", "IMAGE/svg+xml"):
            artifact = codec.ImageArtifact(data=b"payload", mime_type=mime)
            decoded = codec.decode(codec.encode(artifact))
            self.assertEqual(decoded.mime_type, mime)
            self.assertEqual(decoded.data, b"payload")

    def test_extension_from_uppercase_mime_type(self):
        uri = "data:IMAGE/JPEG;base64," + base64.b64encode(b"jpg").decode("utf-8")
        self.assertEqual(codec.decode(uri, "shot").filename, "shot.jpg")

    def test_decode_adds_extension_from_mime_type(self):
        uri = "data:image/webp;base64," + base64.b64encode(b"webp").decode("utf-8")
        self.assertEqual(codec.decode(uri, "edited-v2").filename, "edited-v2.webp")

    def test_decode_without_filename_hint(self):
        uri = "data:image/gif;base64," + base64.b64encode(b"gif").decode("utf-8")
        self.assertIsNone(codec.decode(uri).filename)

    def test_decode_rejects_non_image_uri(self):
        with self.assertRaises(MalformedDataUri):
            codec.decode("data:text/plain;base64,aGVsbG8=", "x")

    def test_decode_rejects_missing_base64_marker(self):
        with self.assertRaises(MalformedDataUri):
            codec.decode("data:image/png,rawdata", "x")

    def test_decode_rejects_invalid_base64(self):
        with self.assertRaises(MalformedDataUri):
            codec.decode("data:image/png;base64,not*base64!", "x")

    def test_decode_rejects_empty_payload(self):
        with self.assertRaises(MalformedDataUri):
            codec.decode("data:image/png;base64,", "x")

    def test_decode_rejects_plain_text(self):
        with self.assertRaises(MalformedDataUri):
            codec.decode("hello", "x")

    def test_malformed_data_uri_is_a_value_error(self):
        with self.assertRaises(ValueError):
            codec.decode("", "x")


class UploadTests(unittest.TestCase):
    """Reading uploaded blobs and files."""

    def test_read_upload_sniffs_png(self):
        artifact = codec.read_upload(_image_bytes("PNG"), "a.bin")
        self.assertEqual(artifact.mime_type, "image/png")
        self.assertEqual(artifact.filename, "a.bin")

    def test_read_upload_sniffs_jpeg(self):
        self.assertEqual(codec.read_upload(_image_bytes("JPEG")).mime_type, "image/jpeg")

    def test_read_upload_rejects_non_image(self):
        with self.assertRaises(UnsupportedImage):
            codec.read_upload(b"definitely not an image")

    def test_read_upload_rejects_empty(self):
        with self.assertRaises(UnsupportedImage):
            codec.read_upload(b"")

    def test_read_image_file_validates_extension(self):
        with tempfile.NamedTemporaryFile(suffix=".png", delete=False) as tmp:
            tmp.write(b"data")
            path = tmp.name
        try:
            artifact = codec.read_image_file(path)
            self.assertEqual(artifact.mime_type, "image/png")
            self.assertEqual(artifact.data, b"data")
            self.assertEqual(artifact.filename, os.path.basename(path))
        finally:
            os.remove(path)

    def test_read_image_file_unsupported_extension(self):
        with tempfile.NamedTemporaryFile(suffix=".txt", delete=False) as tmp:
            tmp.write(b"data")
            path = tmp.name
        try:
            with self.assertRaises(UnsupportedImage):
                codec.read_image_file(path)
        finally:
            os.remove(path)

    def test_read_image_file_missing(self):
        with self.assertRaises(FileNotFoundError):
            codec.read_image_file("/nonexistent/image.png")

    def test_infer_extension(self):
        self.assertEqual(codec.infer_extension("image/jpeg"), ".jpg")
        self.assertEqual(codec.infer_extension("IMAGE/WEBP"), ".webp")
        self.assertEqual(codec.infer_extension("image/unknown"), ".png")


if __name__ == "__main__":
    unittest.main()
