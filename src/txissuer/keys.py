"""
Account and certificate keys.

A key knows its JSON Web Key projection, the JWS algorithm it signs with, and
how to turn the output of its signing primitive into the bytes a JWS carries.
RSA and EC keys are separate types with the same methods, so nothing outside
this module needs to branch on the key type.
"""
import hashlib

import attr
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature, encode_dss_signature)
from cryptography.utils import int_to_bytes
from twisted.python.filepath import FilePath

from txissuer.errors import KeyLoadError
from txissuer.util import b64url_decode, b64url_encode, json_dumps


RSA_KEY_SIZES = (2048, 4096)


@attr.s(frozen=True)
class Curve(object):
    """
    A named curve we can sign with.

    :ivar str name: The JWK ``crv`` name.
    :ivar curve: The Cryptography curve type.
    :ivar hash: The Cryptography hash type used for signatures.
    :ivar str algorithm: The JWS ``alg`` name.
    """
    name = attr.ib()
    curve = attr.ib()
    hash = attr.ib()
    algorithm = attr.ib()

    @property
    def size(self):
        """
        Width in bytes of one coordinate, or of one half of a signature.
        """
        return (self.curve.key_size + 7) // 8


CURVES = {
    curve.name: curve for curve in [
        Curve(u'P-256', ec.SECP256R1, hashes.SHA256, u'ES256'),
        Curve(u'P-384', ec.SECP384R1, hashes.SHA384, u'ES384'),
        # Named after the SHA-512 digest, not the 521-bit field.
        Curve(u'P-521', ec.SECP521R1, hashes.SHA512, u'ES512'),
        ]}


def curve_for(curve):
    """
    Look up the `Curve` for a Cryptography curve instance.

    :raises KeyLoadError: For curves we cannot sign with.
    """
    for candidate in CURVES.values():
        if candidate.curve.name == curve.name:
            return candidate
    raise KeyLoadError(u'Unsupported elliptic curve: {}'.format(curve.name))


def encode_coordinate(value, curve):
    """
    Encode a curve coordinate (or signature half) as fixed-width big-endian
    bytes.

    :param int value: The value to encode.
    :param Curve curve: The curve that fixes the width.

    :raises ValueError: If ``value`` does not fit.
    :rtype: bytes
    """
    if value < 0 or value.bit_length() > curve.size * 8:
        raise ValueError(
            '{} does not fit in {} bytes'.format(value, curve.size))
    return int_to_bytes(value, curve.size)


def decode_coordinate(data, curve):
    """
    Decode a fixed-width big-endian curve coordinate.

    :raises ValueError: If ``data`` has the wrong width.
    :rtype: int
    """
    if len(data) != curve.size:
        raise ValueError(
            'Expected {} bytes for {}, got {}'.format(
                curve.size, curve.name, len(data)))
    return int.from_bytes(data, 'big')


def der_to_raw_signature(der, curve):
    """
    Convert a DER ``SEQUENCE { r INTEGER, s INTEGER }`` ECDSA signature to the
    JWS form: ``r`` and ``s`` as fixed-width big-endian bytes, concatenated.
    """
    r, s = decode_dss_signature(der)
    return encode_coordinate(r, curve) + encode_coordinate(s, curve)


def raw_to_der_signature(raw, curve):
    """
    Convert a JWS ECDSA signature back to DER.
    """
    if len(raw) != curve.size * 2:
        raise ValueError(
            'Expected a {}-byte signature, got {}'.format(
                curve.size * 2, len(raw)))
    return encode_dss_signature(
        decode_coordinate(raw[:curve.size], curve),
        decode_coordinate(raw[curve.size:], curve))


def jwk_thumbprint(jwk):
    """
    Compute the RFC 7638 thumbprint of a public JWK.

    ``jwk`` must hold only the required members for its key type, as
    produced by ``jwk()``; they are serialized in sorted order.

    :rtype: str
    """
    return b64url_encode(hashlib.sha256(json_dumps(jwk)).digest())


def public_key_from_jwk(jwk):
    """
    Load a Cryptography public key from a JWK.

    :raises ValueError: If the JWK is not an RSA or supported EC key.
    """
    kty = jwk.get(u'kty')
    if kty == u'RSA':
        return rsa.RSAPublicNumbers(
            e=int.from_bytes(b64url_decode(jwk[u'e']), 'big'),
            n=int.from_bytes(b64url_decode(jwk[u'n']), 'big'),
            ).public_key()
    if kty == u'EC':
        try:
            curve = CURVES[jwk[u'crv']]
        except KeyError:
            raise ValueError('Unsupported curve: {!r}'.format(jwk.get(u'crv')))
        return ec.EllipticCurvePublicNumbers(
            x=decode_coordinate(b64url_decode(jwk[u'x']), curve),
            y=decode_coordinate(b64url_decode(jwk[u'y']), curve),
            curve=curve.curve(),
            ).public_key()
    raise ValueError('Unsupported key type: {!r}'.format(kty))


class _SigningKey(object):
    """
    Behaviour shared by the key types.
    """
    def thumbprint(self):
        """
        The RFC 7638 thumbprint of this key's JWK.
        """
        return jwk_thumbprint(self.jwk())

    def public_key(self):
        return self.key.public_key()

    def private_bytes(self):
        """
        Serialize the private key as unencrypted PEM.
        """
        return self.key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption())


@attr.s(frozen=True)
class RSAKey(_SigningKey):
    """
    An RSA key, signing with ``RS256``.
    """
    key = attr.ib(validator=attr.validators.instance_of(rsa.RSAPrivateKey))

    key_type = u'rsa'
    algorithm = u'RS256'

    def jwk(self):
        numbers = self.key.public_key().public_numbers()
        return {
            u'kty': u'RSA',
            u'n': b64url_encode(int_to_bytes(numbers.n)),
            u'e': b64url_encode(int_to_bytes(numbers.e)),
            }

    def sign(self, data):
        """
        Sign with PKCS#1 v1.5 and SHA-256.
        """
        return self.key.sign(data, padding.PKCS1v15(), hashes.SHA256())

    def encode_signature(self, signature):
        return signature


@attr.s(frozen=True)
class ECKey(_SigningKey):
    """
    An elliptic curve key on one of the `CURVES`.
    """
    key = attr.ib(
        validator=attr.validators.instance_of(ec.EllipticCurvePrivateKey))

    key_type = u'ec'

    @key.validator
    def _check_curve(self, attribute, value):
        curve_for(value.curve)

    @property
    def curve(self):
        return curve_for(self.key.curve)

    @property
    def algorithm(self):
        return self.curve.algorithm

    def jwk(self):
        curve = self.curve
        numbers = self.key.public_key().public_numbers()
        return {
            u'kty': u'EC',
            u'crv': curve.name,
            u'x': b64url_encode(encode_coordinate(numbers.x, curve)),
            u'y': b64url_encode(encode_coordinate(numbers.y, curve)),
            }

    def sign(self, data):
        """
        Sign with ECDSA; the result is the DER-encoded ``(r, s)`` pair.
        """
        return self.key.sign(data, ec.ECDSA(self.curve.hash()))

    def encode_signature(self, signature):
        return der_to_raw_signature(signature, self.curve)


def wrap_key(private_key):
    """
    Wrap a Cryptography private key in the matching key type.

    :raises KeyLoadError: For unsupported key types or curves.
    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        return RSAKey(key=private_key)
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return ECKey(key=private_key)
    raise KeyLoadError(
        u'Unsupported key type: {}'.format(type(private_key).__name__))


def load_key(source, key_type=None):
    """
    Load a private key from PEM.

    :param source: PEM ``bytes``, a path, or a
        ``twisted.python.filepath.FilePath``.
    :param str key_type: ``rsa`` or ``ec`` to require a particular key type,
        or ``None`` to accept either.

    :raises KeyLoadError: If the key cannot be read, parsed, or is of the wrong
        type.

    :rtype: `RSAKey` or `ECKey`
    """
    if isinstance(source, str):
        source = FilePath(source)
    if isinstance(source, FilePath):
        try:
            source = source.getContent()
        except (IOError, OSError) as error:
            raise KeyLoadError(
                u'Unable to read key {}: {}'.format(source.path, error))
    try:
        private_key = serialization.load_pem_private_key(source, password=None)
    except (TypeError, ValueError, UnsupportedAlgorithm) as error:
        raise KeyLoadError(u'Unable to parse key: {}'.format(error))
    key = wrap_key(private_key)
    if key_type is not None and key.key_type != key_type:
        raise KeyLoadError(
            u'Expected an {} key, got {}'.format(key_type, key.key_type))
    return key


def generate_private_key(key_type, bits=2048, curve=u'P-256'):
    """
    Generate a random private key using sensible parameters.

    :param str key_type: The type of key to generate. One of: ``rsa``,
        ``ec``.
    :param int bits: The RSA modulus size, 2048 or 4096.
    :param str curve: The EC curve name: ``P-256``, ``P-384`` or ``P-521``.

    :rtype: `RSAKey` or `ECKey`
    """
    if key_type == u'rsa':
        if bits not in RSA_KEY_SIZES:
            raise ValueError('Unsupported RSA key size: {!r}'.format(bits))
        return RSAKey(key=rsa.generate_private_key(
            public_exponent=65537, key_size=bits))
    if key_type == u'ec':
        if curve not in CURVES:
            raise ValueError('Unsupported curve: {!r}'.format(curve))
        return ECKey(key=ec.generate_private_key(CURVES[curve].curve()))
    raise ValueError(key_type)


def load_or_create_key(pem_path, key_type=u'rsa', **kwargs):
    """
    Load a key from a PEM file, creating the file if it does not exist.

    :type pem_path: ``twisted.python.filepath.FilePath``
    :param pem_path: The key file.
    :param str key_type: The type of key to create, and to require when
        loading.
    :param kwargs: Passed on to `generate_private_key`.
    """
    if pem_path.exists():
        return load_key(pem_path, key_type=key_type)
    key = generate_private_key(key_type, **kwargs)
    pem_path.setContent(key.private_bytes())
    return key


__all__ = [
    'CURVES', 'Curve', 'ECKey', 'RSAKey', 'RSA_KEY_SIZES', 'curve_for',
    'decode_coordinate', 'der_to_raw_signature', 'encode_coordinate',
    'generate_private_key', 'jwk_thumbprint', 'load_key',
    'load_or_create_key', 'public_key_from_jwk', 'raw_to_der_signature',
    'wrap_key']
