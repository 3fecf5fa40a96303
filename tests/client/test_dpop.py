from itertools import count

import pytest
from authlib.jose import JsonWebKey, jwt
from authlib.jose.errors import BadSignatureError

from oidcflow.primitives.dpop import DPoPProofFactory, normalize_htu


class TestNormalizeHtu:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://op.example/userinfo", "https://op.example/userinfo"),
            ("https://op.example/userinfo?x=1", "https://op.example/userinfo"),
            ("https://op.example/token#frag", "https://op.example/token"),
        ],
    )
    def test_query_and_fragment_are_stripped(self, url, expected):
        assert normalize_htu(url) == expected


class TestDPoPProofFactory:
    def test_proof_structure(self, key_pair):
        # Arrange
        factory = DPoPProofFactory(clock=lambda: 1_700_000_000.5)

        # Act
        proof, used_key = factory.mint(
            "get", "https://op.example/userinfo?x=1", key_pair
        )

        # Assert
        claims = jwt.decode(proof, key_pair.private_key)
        assert used_key is key_pair
        assert claims.header["typ"] == "dpop+jwt"
        assert claims.header["alg"] == "RS256"
        assert claims.header["jwk"] == key_pair.public_jwk
        assert claims["htm"] == "GET"
        assert claims["htu"] == "https://op.example/userinfo"
        assert claims["iat"] == 1_700_000_000
        assert len(claims["jti"]) == 16  # 12 bytes base64url

    def test_public_jwk_has_no_private_members(self, key_pair):
        jwk = key_pair.public_jwk

        assert jwk["kty"] == "RSA"
        assert {"n", "e"} <= set(jwk)
        assert not {"d", "p", "q", "dp", "dq", "qi"} & set(jwk)

    def test_embedded_key_verifies_the_proof(self, key_pair):
        # Arrange
        proof, _ = DPoPProofFactory().mint("POST", "https://op.example/token", key_pair)
        header = jwt.decode(proof, key_pair.private_key).header

        # Act
        claims = jwt.decode(proof, JsonWebKey.import_key(header["jwk"]))

        # Assert
        assert claims["htm"] == "POST"

    def test_other_key_does_not_verify(self, key_pair):
        # Arrange
        factory = DPoPProofFactory()
        other = factory.generate_key_pair()
        proof, _ = factory.mint("POST", "https://op.example/token", key_pair)

        # Act & Assert
        with pytest.raises(BadSignatureError):
            jwt.decode(proof, other.private_key)

    def test_proofs_differ_but_share_the_key(self, key_pair):
        # Arrange
        ticks = count(1_700_000_000)
        factory = DPoPProofFactory(clock=lambda: next(ticks))

        # Act
        proof1, _ = factory.mint("GET", "https://op.example/userinfo", key_pair)
        proof2, _ = factory.mint("GET", "https://op.example/userinfo", key_pair)

        # Assert
        assert proof1 != proof2
        claims1 = jwt.decode(proof1, key_pair.private_key)
        claims2 = jwt.decode(proof2, key_pair.private_key)
        assert claims1["jti"] != claims2["jti"]
        assert claims1["iat"] != claims2["iat"]
        assert claims1.header["jwk"] == claims2.header["jwk"]

    def test_key_pair_generated_when_not_given(self):
        # Act
        proof, generated = DPoPProofFactory().mint("GET", "https://op.example/x")

        # Assert
        assert generated.algorithm == "RS256"
        assert generated.thumbprint
        claims = jwt.decode(proof, generated.private_key)
        assert claims.header["jwk"] == generated.public_jwk
