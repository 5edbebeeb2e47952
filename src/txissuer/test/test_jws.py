"""
Tests for `txissuer.jws`.
"""
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from josepy.errors import DeserializationError
from testtools import TestCase
from testtools.matchers import (
    Contains, ContainsDict, Equals, Is, Not, KeysEqual)

from txissuer.jws import JWSSigner, decode_envelope, verify
from txissuer.keys import generate_private_key
from txissuer.test.test_client import ACCOUNT_KEY
from txissuer.util import b64url_decode, b64url_encode, json_dumps


URL = u'https://acme.test/new-order'
KID = u'https://acme.test/acct/1'


class SignerTests(TestCase):
    """
    `JWSSigner` builds flattened JWS envelopes.
    """
    def test_jwk(self):
        """
        Without a key-id, the public key is embedded.
        """
        envelope = JWSSigner(ACCOUNT_KEY).sign(URL, {u'a': 1}, u'nonce')
        self.assertThat(
            envelope, KeysEqual(u'protected', u'payload', u'signature'))
        decoded = decode_envelope(envelope)
        self.assertThat(
            decoded.header,
            Equals({u'alg': u'RS256', u'nonce': u'nonce', u'url': URL,
                    u'jwk': ACCOUNT_KEY.jwk()}))
        self.assertThat(decoded.payload, Equals({u'a': 1}))

    def test_kid(self):
        """
        With a key-id, the public key is not embedded.
        """
        decoded = decode_envelope(
            JWSSigner(ACCOUNT_KEY).sign(URL, {}, u'nonce', kid=KID))
        self.assertThat(decoded.header, ContainsDict({u'kid': Equals(KID)}))
        self.assertThat(decoded.header, Not(Contains(u'jwk')))

    def test_post_as_get(self):
        """
        A POST-as-GET has an empty payload, which is not the same as ``{}``.
        """
        signer = JWSSigner(ACCOUNT_KEY)
        envelope = signer.sign(URL, None, u'nonce', kid=KID)
        self.assertThat(envelope[u'payload'], Equals(u''))
        self.assertThat(decode_envelope(envelope).payload, Is(None))
        self.assertThat(
            signer.sign(URL, {}, u'nonce', kid=KID)[u'payload'],
            Equals(u'e30'))

    def test_signing_input(self):
        """
        The signature covers ``protected.payload``.
        """
        envelope = JWSSigner(ACCOUNT_KEY).sign(URL, {}, u'nonce', kid=KID)
        ACCOUNT_KEY.public_key().verify(
            b64url_decode(envelope[u'signature']),
            u'{protected}.{payload}'.format(**envelope).encode('ascii'),
            padding.PKCS1v15(), hashes.SHA256())


class VerifyTests(TestCase):
    """
    `verify` checks envelopes against a JWK.
    """
    def test_keys(self):
        for key in [ACCOUNT_KEY,
                    generate_private_key(u'ec', curve=u'P-256'),
                    generate_private_key(u'ec', curve=u'P-384'),
                    generate_private_key(u'ec', curve=u'P-521')]:
            decoded = decode_envelope(
                JWSSigner(key).sign(URL, {u'a': 1}, u'nonce'))
            self.assertThat(verify(decoded, key.jwk()), Equals(True))

    def test_tampered(self):
        envelope = JWSSigner(ACCOUNT_KEY).sign(URL, {u'a': 1}, u'nonce')
        envelope[u'payload'] = b64url_encode({u'a': 2})
        self.assertThat(
            verify(decode_envelope(envelope), ACCOUNT_KEY.jwk()),
            Equals(False))

    def test_wrong_key(self):
        other = generate_private_key(u'ec')
        decoded = decode_envelope(
            JWSSigner(ACCOUNT_KEY).sign(URL, {}, u'nonce'))
        self.assertThat(verify(decoded, other.jwk()), Equals(False))

    def test_algorithm_mismatch(self):
        """
        An EC signature claiming the wrong algorithm for its curve is not
        accepted.
        """
        key = generate_private_key(u'ec', curve=u'P-384')
        envelope = JWSSigner(key).sign(URL, {}, u'nonce')
        header = decode_envelope(envelope).header
        header[u'alg'] = u'ES256'
        envelope[u'protected'] = b64url_encode(header)
        self.assertThat(
            verify(decode_envelope(envelope), key.jwk()), Equals(False))


class DecodeEnvelopeTests(TestCase):
    def test_bytes(self):
        envelope = JWSSigner(ACCOUNT_KEY).sign(URL, {}, u'nonce')
        self.assertThat(
            decode_envelope(json_dumps(envelope)),
            Equals(decode_envelope(envelope)))

    def test_malformed(self):
        for envelope in [b'not json',
                         b'[]',
                         {u'protected': u'e30', u'payload': u''},
                         {u'protected': b64url_encode(b'[]'),
                          u'payload': u'', u'signature': u''},
                         {u'protected': u'!!!', u'payload': u'',
                          u'signature': u''}]:
            self.assertRaises(
                DeserializationError, decode_envelope, envelope)
