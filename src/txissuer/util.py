"""
Utility functions that may prove useful when writing an ACME client.
"""
import hashlib
import json
from datetime import datetime, timezone
from functools import wraps

from josepy.b64 import b64decode, b64encode
from josepy.errors import DeserializationError

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from twisted.internet.defer import maybeDeferred
from twisted.python.url import URL


def json_dumps(obj):
    """
    Serialize a JSON value with sorted member names and no whitespace.

    Every JSON document we sign or hash goes through here, so the same value
    always produces the same bytes; JWK thumbprints depend on it.

    :rtype: bytes
    """
    return json.dumps(
        obj, sort_keys=True, separators=(',', ':'),
        ensure_ascii=False).encode('utf-8')


def json_loads(data):
    """
    Parse a JSON document from bytes or text.
    """
    if isinstance(data, bytes):
        data = data.decode('utf-8')
    return json.loads(data)


def b64url_encode(data):
    """
    Encode as Base64url without padding.

    :param data: Bytes, text (encoded as UTF-8) or a ``dict``/``list`` which is
        serialized with `json_dumps` first.

    :rtype: str
    """
    if isinstance(data, (dict, list)):
        data = json_dumps(data)
    elif isinstance(data, str):
        data = data.encode('utf-8')
    return b64encode(data).decode('ascii')


def b64url_decode(data):
    """
    Decode unpadded Base64url.

    :raises josepy.errors.DeserializationError: If ``data`` is not valid.

    :rtype: bytes
    """
    try:
        return b64decode(data)
    except (TypeError, ValueError) as error:
        raise DeserializationError(error)


def key_authorization(token, thumbprint):
    """
    Build the key authorization for a challenge token.
    """
    return u'{}.{}'.format(token, thumbprint)


def dns01_validation(key_authz):
    """
    Get the ``TXT`` record value for a ``dns-01`` key authorization.
    """
    return b64url_encode(hashlib.sha256(key_authz.encode('utf-8')).digest())


def validation_domain_name(server_name):
    """
    Get the name of the ``TXT`` record used to validate ``server_name``.

    Wildcard names are validated on their base domain.
    """
    if server_name.startswith(u'*.'):
        server_name = server_name[2:]
    return u'_acme-challenge.' + server_name.rstrip(u'.')


def domain_filename(server_name):
    """
    Get the base filename for the key and certificate of ``server_name``.

    ``*.example.com`` becomes ``wildcard-example-com``.
    """
    return server_name.replace(u'.', u'-').replace(u'*', u'wildcard', 1)


def csr_for_names(names, key):
    """
    Generate a certificate signing request for the given names and private key.

    The names all go in the subjectAltName extension; the subject is left
    empty, since CAs ignore (or reject) a Common Name.

    :param ``List[str]``: One or more names (subjectAltName) for which to
        request a certificate.
    :param key: A Cryptography private key object.

    :rtype: `cryptography.x509.CertificateSigningRequest`
    :return: The certificate request message.
    """
    if len(names) == 0:
        raise ValueError('Must have at least one name')
    return (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([]))
        .add_extension(
            x509.SubjectAlternativeName(list(map(x509.DNSName, names))),
            critical=False)
        .sign(key, hashes.SHA256()))


def encode_csr(csr):
    """
    Encode CSR as JOSE Base-64 DER.

    :param cryptography.x509.CertificateSigningRequest csr: The CSR.

    :rtype: str
    """
    return b64url_encode(csr.public_bytes(serialization.Encoding.DER))


def decode_csr(b64der):
    """
    Decode JOSE Base-64 DER-encoded CSR.

    :param str b64der: The encoded CSR.

    :rtype: `cryptography.x509.CertificateSigningRequest`
    :return: The decoded CSR.
    """
    try:
        return x509.load_der_x509_csr(b64url_decode(b64der))
    except ValueError as error:
        raise DeserializationError(error)


def tap(f):
    """
    "Tap" a Deferred callback chain with a function whose return value is
    ignored.
    """
    @wraps(f)
    def _cb(res, *a, **kw):
        d = maybeDeferred(f, res, *a, **kw)
        d.addCallback(lambda ignored: res)
        return d
    return _cb


def clock_now(clock):
    """
    Get a datetime representing the current time.

    :param clock: An ``IReactorTime`` provider.

    :rtype: `~datetime.datetime`
    :return: A timezone-aware datetime representing the current time.
    """
    return datetime.fromtimestamp(clock.seconds(), timezone.utc)


def check_directory_url_type(url):
    """
    Check that ``url`` is a ``twisted.python.url.URL`` instance, raising
    `TypeError` if it isn't.
    """
    if not isinstance(url, URL):
        raise TypeError(
            'ACME directory URL should be a twisted.python.url.URL, '
            'got {!r} instead'.format(url))


def const(x):
    """
    Return a constant function.
    """
    return lambda: x


__all__ = [
    'json_dumps', 'json_loads', 'b64url_encode', 'b64url_decode',
    'key_authorization', 'dns01_validation', 'validation_domain_name',
    'domain_filename', 'csr_for_names', 'encode_csr', 'decode_csr', 'tap',
    'clock_now', 'check_directory_url_type', 'const']
