"""
Tests for transfer decoding and charset normalization
"""

import base64
import quopri
import unittest

from src.modules.content_decoder import (
    decode_transfer_encoding,
    detect_charset,
    is_valid_utf8,
    mime_type_string,
    normalize_charset_name,
    normalize_to_utf8,
)
from src.modules.email_data import MimePart, PartType, TransferEncoding
from tests.fakes import RecordingSink, text_part


class TestTransferDecoding(unittest.TestCase):

    def test_base64(self):
        raw = base64.encodebytes(b"attachment bytes \x00\xff")
        self.assertEqual(
            decode_transfer_encoding(raw, TransferEncoding.BASE64),
            b"attachment bytes \x00\xff",
        )

    def test_base64_missing_padding_is_repaired(self):
        raw = base64.b64encode(b"ab").rstrip(b"=")
        self.assertEqual(decode_transfer_encoding(raw, TransferEncoding.BASE64), b"ab")

    def test_quoted_printable_round_trip(self):
        original = "Grüße aus Köln = a long line that is longer than seventy-six characters so it wraps"
        encoded = quopri.encodestring(original.encode("utf-8"))
        decoded = decode_transfer_encoding(encoded, TransferEncoding.QUOTED_PRINTABLE)
        self.assertEqual(decoded.decode("utf-8"), original)

    def test_passthrough_encodings(self):
        for encoding in (TransferEncoding.SEVEN_BIT, TransferEncoding.EIGHT_BIT,
                         TransferEncoding.BINARY, TransferEncoding.OTHER):
            self.assertEqual(decode_transfer_encoding(b"as-is", encoding), b"as-is")

    def test_none_gives_empty_bytes(self):
        self.assertEqual(decode_transfer_encoding(None, TransferEncoding.BASE64), b"")

    def test_unknown_encoding_name_maps_to_other(self):
        self.assertEqual(TransferEncoding.from_name("x-uuencode"), TransferEncoding.OTHER)
        self.assertEqual(TransferEncoding.from_name(""), TransferEncoding.SEVEN_BIT)
        self.assertEqual(TransferEncoding.from_name("BASE64"), TransferEncoding.BASE64)


class TestCharsetNormalization(unittest.TestCase):

    def test_declared_latin1(self):
        part = text_part(charset="ISO-8859-1")
        self.assertEqual(normalize_to_utf8("café".encode("latin-1"), part), "café")

    def test_charset_name_is_cleaned(self):
        self.assertEqual(normalize_charset_name(' "utf-8" '), "UTF-8")
        part = text_part(charset='"windows-1252"')
        self.assertEqual(normalize_to_utf8(b"\x93quoted\x94", part), "“quoted”")

    def test_default_alias_means_latin1(self):
        part = text_part(charset="default")
        self.assertEqual(normalize_to_utf8(b"na\xefve", part), "naïve")

    def test_us_ascii_is_not_converted(self):
        part = text_part(charset="us-ascii")
        self.assertEqual(normalize_to_utf8(b"plain", part), "plain")

    def test_charset_from_disposition_parameters(self):
        part = MimePart(
            type=PartType.TEXT,
            subtype="plain",
            disposition_parameters={"charset": "iso-8859-1"},
        )
        self.assertEqual(normalize_to_utf8(b"\xe9t\xe9", part), "été")

    def test_unknown_charset_is_scrubbed_and_reported(self):
        sink = RecordingSink()
        part = text_part(charset="x-no-such-charset")
        result = normalize_to_utf8(b"ok \xff", part, sink)
        self.assertTrue(result.startswith("ok "))
        self.assertTrue(is_valid_utf8(result))
        self.assertEqual(sink.issue_count, 1)

    def test_invalid_utf8_declared_as_utf8_is_scrubbed(self):
        part = text_part(charset="utf-8")
        result = normalize_to_utf8(b"bad \xc3\x28 bytes", part)
        self.assertTrue(is_valid_utf8(result))
        self.assertIn("bytes", result)

    def test_result_is_always_valid_utf8(self):
        samples = [b"\xff\xfe\xfd", b"\xc0\xaf", "日本語".encode("shift_jis"), b"\x80abc"]
        for charset in ("utf-8", "iso-8859-1", "shift_jis", "bogus", None):
            part = text_part(charset=charset)
            for sample in samples:
                self.assertTrue(is_valid_utf8(normalize_to_utf8(sample, part)))

    def test_detection_prefers_utf8(self):
        self.assertEqual(detect_charset("Grüße".encode("utf-8")), "UTF-8")

    def test_detection_without_declared_charset(self):
        part = text_part(charset=None)
        text = "Résumé attached, regards, Zoë " * 4
        self.assertEqual(normalize_to_utf8(text.encode("latin-1"), part), text)

    def test_empty_payload(self):
        self.assertEqual(normalize_to_utf8(b"", text_part()), "")


class TestMimeTypeString(unittest.TestCase):

    def test_regular(self):
        self.assertEqual(mime_type_string(PartType.IMAGE, "PNG"), "image/png")

    def test_other_maps_to_application(self):
        self.assertEqual(mime_type_string(PartType.OTHER, "x-thing"), "application/x-thing")

    def test_missing_subtype(self):
        self.assertEqual(mime_type_string(PartType.APPLICATION, ""), "application/octet-stream")
        self.assertEqual(mime_type_string(PartType.OTHER, None), "application/octet-stream")
        self.assertEqual(mime_type_string(PartType.AUDIO, ""), "audio")


if __name__ == "__main__":
    unittest.main()
