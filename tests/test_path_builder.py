"""
Upstream path tests.

Run:
    pytest tests/test_path_builder.py -v
"""

from imgproxy_relay.config import PathAssemblyMode
from imgproxy_relay.path_builder import build_path, build_unsigned_path
from imgproxy_relay.signer import sign
from imgproxy_relay.source_validator import validate_source

REF = validate_source("bucket/img.png")


class TestLegacyPaths:
    """Token as a literal path segment"""

    def test_no_token(self):
        assert build_path(REF, "") == "/plain/s3://bucket/img.png"
        assert build_path(REF, None) == "/plain/s3://bucket/img.png"

    def test_token_inserted_verbatim(self):
        assert build_path(REF, "t") == "/t/plain/s3://bucket/img.png"

    def test_multi_segment_token(self):
        token = "rs:fill:100:100/bl:10"
        assert build_path(REF, token) == f"/{token}/plain/s3://bucket/img.png"

    def test_nested_object_path(self):
        ref = validate_source("bucket/a/b/c.jpg")
        assert build_path(ref, "t") == "/t/plain/s3://bucket/a/b/c.jpg"


class TestModifierPaths:
    """Token as an imgproxy processing modifier"""

    def test_modifier_token(self):
        path = build_path(REF, "rs:fit:300:300", mode=PathAssemblyMode.MODIFIER)
        assert path == "/rs:fit:300:300/plain/s3://bucket/img.png"

    def test_non_modifier_token_dropped(self):
        path = build_path(REF, "t", mode=PathAssemblyMode.MODIFIER)
        assert path == "/plain/s3://bucket/img.png"

    def test_no_token(self):
        assert build_path(REF, None, mode=PathAssemblyMode.MODIFIER) == "/plain/s3://bucket/img.png"


class TestSignedPaths:

    def test_first_segment_is_signature(self, signing_credential):
        candidate = build_unsigned_path(REF, "t")
        path = build_path(REF, "t", signing_credential)

        signature = path.split("/")[1]
        assert signature == sign(signing_credential, candidate)
        assert path == f"/{signature}{candidate}"

    def test_unsigned_candidate_without_token(self, signing_credential):
        path = build_path(REF, None, signing_credential)
        assert path.endswith("/plain/s3://bucket/img.png")
        assert path.split("/")[1] == sign(signing_credential, "/plain/s3://bucket/img.png")

    def test_modifier_mode_signs_its_own_candidate(self, signing_credential):
        path = build_path(REF, "t", signing_credential, PathAssemblyMode.MODIFIER)
        assert path.split("/")[1] == sign(signing_credential, "/plain/s3://bucket/img.png")


class TestEscaping:
    """Paths are percent-encoded before signing"""

    def test_reserved_and_non_ascii_in_reference(self):
        ref = validate_source("bucket/dir/a b?c#d%é.png")
        assert build_path(ref) == "/plain/s3://bucket/dir/a%20b%3Fc%23d%25%C3%A9.png"

    def test_path_safe_characters_kept(self):
        ref = validate_source("bucket/a:b@c+d=e,f!(g)~h.png")
        assert build_path(ref) == "/plain/s3://bucket/a:b@c+d=e,f!(g)~h.png"

    def test_token_escapes_kept(self):
        path = build_path(REF, "wmt:caf%C3%A9 bar")
        assert path == "/wmt:caf%C3%A9%20bar/plain/s3://bucket/img.png"

    def test_signature_covers_escaped_candidate(self, signing_credential):
        ref = validate_source("bucket/with space.jpg")
        candidate = build_unsigned_path(ref, "rs:fit:300:300")
        assert candidate == "/rs:fit:300:300/plain/s3://bucket/with%20space.jpg"
        assert build_path(ref, "rs:fit:300:300", signing_credential) == (
            f"/{sign(signing_credential, candidate)}{candidate}"
        )
