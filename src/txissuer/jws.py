"""
JSON Web Signature envelopes, in the flattened JSON serialization ACME uses.
"""
import attr
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from josepy.errors import DeserializationError

from txissuer.keys import CURVES, public_key_from_jwk, raw_to_der_signature
from txissuer.logging import LOG_JWS_SIGN
from txissuer.util import b64url_decode, b64url_encode, json_loads


@attr.s(frozen=True)
class JWSSigner(object):
    """
    Sign request bodies with an account key.

    :param key: An `~txissuer.keys.RSAKey` or `~txissuer.keys.ECKey`.
    """
    key = attr.ib()

    def protected_header(self, url, nonce, kid=None):
        """
        Build the protected header.

        Requests made before the account exists (``kid`` is ``None``) embed
        the public key instead.
        """
        header = {u'alg': self.key.algorithm, u'nonce': nonce, u'url': url}
        if kid is None:
            header[u'jwk'] = self.key.jwk()
        else:
            header[u'kid'] = kid
        return header

    def sign(self, url, payload, nonce, kid=None):
        """
        Build a signed envelope.

        :param str url: The request URL.
        :param payload: The JSON body, or ``None`` for a POST-as-GET.
        :param str nonce: A fresh nonce.
        :param str kid: The account URL, if registered.

        :rtype: dict
        :return: The ``protected``, ``payload`` and ``signature`` members.
        """
        with LOG_JWS_SIGN(key_type=self.key.key_type,
                          alg=self.key.algorithm,
                          nonce=nonce, kid=kid, url=url):
            protected = b64url_encode(self.protected_header(url, nonce, kid))
            if payload is None:
                encoded = u''
            else:
                encoded = b64url_encode(payload)
            signing_input = u'{}.{}'.format(protected, encoded).encode('ascii')
            signature = self.key.encode_signature(self.key.sign(signing_input))
            return {
                u'protected': protected,
                u'payload': encoded,
                u'signature': b64url_encode(signature),
                }


@attr.s(frozen=True)
class DecodedJWS(object):
    """
    A parsed envelope.

    :ivar dict header: The protected header.
    :ivar payload: The parsed JSON payload, or ``None`` for an empty payload.
    :ivar bytes signature: The raw signature.
    :ivar bytes signing_input: The bytes the signature covers.
    """
    header = attr.ib()
    payload = attr.ib()
    signature = attr.ib()
    signing_input = attr.ib()


def decode_envelope(envelope):
    """
    Parse a flattened JWS JSON envelope.

    :param envelope: A ``dict``, or its JSON encoding.

    :raises josepy.errors.DeserializationError: If it is malformed.
    :rtype: `DecodedJWS`
    """
    if isinstance(envelope, (bytes, str)):
        try:
            envelope = json_loads(envelope)
        except ValueError as error:
            raise DeserializationError(error)
    try:
        protected = envelope[u'protected']
        payload = envelope[u'payload']
        signature = envelope[u'signature']
    except (KeyError, TypeError):
        raise DeserializationError('Not a flattened JWS envelope')
    try:
        header = json_loads(b64url_decode(protected))
        body = json_loads(b64url_decode(payload)) if payload else None
    except ValueError as error:
        raise DeserializationError(error)
    if not isinstance(header, dict):
        raise DeserializationError('Protected header is not a JSON object')
    return DecodedJWS(
        header=header,
        payload=body,
        signature=b64url_decode(signature),
        signing_input=u'{}.{}'.format(protected, payload).encode('ascii'))


def verify(decoded, jwk):
    """
    Check the signature of a decoded envelope against a public JWK.

    :rtype: bool
    """
    try:
        public_key = public_key_from_jwk(jwk)
    except (KeyError, ValueError, DeserializationError):
        return False
    alg = decoded.header.get(u'alg')
    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            if alg != u'RS256':
                return False
            public_key.verify(
                decoded.signature, decoded.signing_input,
                padding.PKCS1v15(), hashes.SHA256())
        else:
            curve = CURVES[jwk[u'crv']]
            if alg != curve.algorithm:
                return False
            public_key.verify(
                raw_to_der_signature(decoded.signature, curve),
                decoded.signing_input,
                ec.ECDSA(curve.hash()))
    except (InvalidSignature, ValueError):
        return False
    return True


__all__ = ['JWSSigner', 'DecodedJWS', 'decode_envelope', 'verify']
