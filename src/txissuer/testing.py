"""
Utilities for testing with txissuer.
"""
from datetime import datetime, timedelta, timezone
from itertools import count

import attr
import pyrfc3339
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from josepy.errors import DeserializationError
from testtools import TestCase
from twisted.internet import reactor
from twisted.internet.defer import fail, succeed
from zope.interface import implementer

from txissuer.client import JOSE_CONTENT_TYPE, PEM_CHAIN_TYPE
from txissuer.interfaces import (
    ICertificateStore, IDNS01Provisioner, IHTTP01Provisioner, IHTTPTransport)
from txissuer.jws import decode_envelope, verify
from txissuer.keys import jwk_thumbprint
from txissuer.messages import (
    CHALLENGE_DNS01, CHALLENGE_HTTP01, STATUS_INVALID, STATUS_PENDING,
    STATUS_PROCESSING, STATUS_READY, STATUS_VALID, Problem)
from txissuer.transport import Response
from txissuer.util import (
    clock_now, decode_csr, json_dumps, key_authorization)


class TXIssuerTestCase(TestCase):
    """
    Common code for all tests for the txissuer project.
    """

    def tearDown(self):
        super(TXIssuerTestCase, self).tearDown()

        # Make sure the main reactor is clean after each test.
        junk = []
        for delayed_call in reactor.getDelayedCalls():
            junk.append(delayed_call.func)
            delayed_call.cancel()
        if junk:
            raise AssertionError(
                'Reactor is not clean. DelayedCalls: %s' % (junk,))


@implementer(IHTTP01Provisioner)
@attr.s
class RecordingHTTP01Provisioner(object):
    """
    An ``http-01`` provisioner that only remembers what it is serving.

    :ivar dict served: Maps ``(server_name, token)`` to the key authorization.
    :ivar list events: ``(method, server_name, token)`` for every call.
    """
    challenge_type = CHALLENGE_HTTP01

    served = attr.ib(default=attr.Factory(dict))
    events = attr.ib(default=attr.Factory(list))

    def provision_http(self, server_name, token, key_authorization):
        self.events.append((u'provision', server_name, token))
        self.served[server_name, token] = key_authorization

    def teardown_http(self, server_name, token):
        self.events.append((u'teardown', server_name, token))
        self.served.pop((server_name, token), None)


@implementer(IDNS01Provisioner)
@attr.s
class RecordingDNS01Provisioner(object):
    """
    A ``dns-01`` provisioner that only remembers its records.

    :ivar dict records: Maps each live handle to ``(record_name,
        record_value)``.
    :ivar list events: Every call, in order.
    :ivar propagation_error: An exception `wait_for_propagation` fails with,
        or ``None``.
    """
    challenge_type = CHALLENGE_DNS01

    propagation_error = attr.ib(default=None)
    records = attr.ib(default=attr.Factory(dict))
    events = attr.ib(default=attr.Factory(list))
    _handles = attr.ib(default=attr.Factory(count), init=False)

    def provision_dns(self, record_name, record_value):
        handle = next(self._handles)
        self.events.append((u'provision', record_name, record_value))
        self.records[handle] = (record_name, record_value)
        return succeed(handle)

    def teardown_dns(self, record_handle):
        record_name, record_value = self.records.pop(record_handle)
        self.events.append((u'teardown', record_name, record_value))
        return succeed(None)

    def wait_for_propagation(self, record_name, expected_value):
        self.events.append((u'propagation', record_name, expected_value))
        if self.propagation_error is not None:
            return fail(self.propagation_error)
        return succeed(None)

    def has_record(self, record_name, record_value):
        return (record_name, record_value) in self.records.values()


@implementer(ICertificateStore)
class MemoryStore(object):
    """
    A certificate store that keeps certificates in memory only.
    """
    def __init__(self, certs=None):
        if certs is None:
            self._store = {}
        else:
            self._store = dict(certs)

    def get(self, server_name):
        try:
            return succeed(self._store[server_name])
        except KeyError:
            return fail()

    def store(self, server_name, pem_objects):
        self._store[server_name] = pem_objects
        return succeed(None)

    def as_dict(self):
        return succeed(self._store)


@attr.s(frozen=True)
class RecordedRequest(object):
    """
    A request received by `FakeACMEServer`.

    :ivar header: The protected header of a signed request, else ``None``.
    :ivar payload: The decoded payload of a signed request, else ``None``.
    """
    method = attr.ib()
    url = attr.ib()
    header = attr.ib(default=None)
    payload = attr.ib(default=None)


class _Problem(Exception):
    def __init__(self, code, detail, status=400):
        Exception.__init__(self, code, detail, status)
        self.problem = Problem(
            typ=u'urn:ietf:params:acme:error:' + code,
            detail=detail, status=status)


def _csr_names(csr):
    try:
        san = csr.extensions.get_extension_for_class(
            x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return set()
    return set(san.value.get_values_for_type(x509.DNSName))


@implementer(IHTTPTransport)
@attr.s(eq=False)
class FakeACMEServer(object):
    """
    An in-memory ACME CA, speaking to the client as its HTTP transport.

    Every signed request is checked like a real CA would: nonce, URL and
    signature. The knobs below make it misbehave in specific ways.

    :param clock: The ``IReactorTime`` used for order expiry.
    :param str base: The URL prefix of every resource.
    :param str terms_of_service: Advertised in the directory if not ``None``.
    :param int bad_nonces: Reject this many signed requests with
        ``badNonce`` regardless of their nonce.
    :param bool omit_nonce: Never send a ``Replay-Nonce``.
    :param rejected_contact_domains: Email domains refused with
        ``invalidContact``.
    :param int challenge_polls: How many polls of an answered challenge
        report ``processing`` before its outcome.
    :param int finalize_polls: Likewise for a finalized order.
    :param str challenge_outcome: The status answered challenges end up in.
    :param Problem challenge_error: The error of an invalid challenge.
    :param float order_lifetime: Seconds until new orders expire.
    :param validation_check: Called with the challenge type, the
        authorization's name, the token and the expected key authorization
        when a challenge is answered; a false result fails the challenge.
    """
    clock = attr.ib()
    base = attr.ib(default=u'https://acme.test')
    terms_of_service = attr.ib(default=None)
    bad_nonces = attr.ib(default=0)
    omit_nonce = attr.ib(default=False)
    rejected_contact_domains = attr.ib(default=())
    challenge_polls = attr.ib(default=0)
    finalize_polls = attr.ib(default=0)
    challenge_outcome = attr.ib(default=STATUS_VALID)
    challenge_error = attr.ib(default=None)
    order_lifetime = attr.ib(default=7 * 24 * 3600.0)
    validation_check = attr.ib(default=None)

    requests = attr.ib(default=attr.Factory(list), init=False)
    accounts = attr.ib(default=attr.Factory(dict), init=False)
    orders = attr.ib(default=attr.Factory(dict), init=False)
    authorizations = attr.ib(default=attr.Factory(dict), init=False)
    challenges = attr.ib(default=attr.Factory(dict), init=False)
    certificates = attr.ib(default=attr.Factory(dict), init=False)
    stopped = attr.ib(default=False, init=False)
    _nonces = attr.ib(default=attr.Factory(set), init=False)
    _ids = attr.ib(default=attr.Factory(lambda: count(1)), init=False)
    _ca = attr.ib(default=None, init=False)

    @property
    def directory_url(self):
        return self.base + u'/directory'

    def _url(self, *segments):
        return u'/'.join((self.base,) + segments)

    def directory(self):
        jobj = {
            u'newNonce': self._url(u'new-nonce'),
            u'newAccount': self._url(u'new-account'),
            u'newOrder': self._url(u'new-order'),
            u'revokeCert': self._url(u'revoke-cert'),
            u'keyChange': self._url(u'key-change'),
            }
        if self.terms_of_service is not None:
            jobj[u'meta'] = {u'termsOfService': self.terms_of_service}
        return jobj

    def requests_to(self, url, method=u'POST'):
        """
        The recorded requests for one URL.
        """
        return [
            r for r in self.requests if r.url == url and r.method == method]

    # Responses

    def _headers(self, content_type=None, location=None):
        headers = {}
        if not self.omit_nonce:
            nonce = u'nonce-{}'.format(next(self._ids))
            self._nonces.add(nonce)
            headers[b'replay-nonce'] = [nonce.encode('ascii')]
        if content_type is not None:
            headers[b'content-type'] = [content_type.encode('ascii')]
        if location is not None:
            headers[b'location'] = [location.encode('ascii')]
        return headers

    def _json(self, code, jobj, location=None):
        return Response(
            code=code,
            headers=self._headers(u'application/json', location),
            body=json_dumps(jobj))

    def _problem(self, error):
        return Response(
            code=error.problem.status,
            headers=self._headers(u'application/problem+json'),
            body=json_dumps(error.problem.to_json()))

    # IHTTPTransport

    def get(self, url):
        self.requests.append(RecordedRequest(method=u'GET', url=url))
        if url == self.directory_url:
            return succeed(self._json(200, self.directory()))
        return succeed(self._problem(
            _Problem(u'malformed', u'Use POST-as-GET', status=405)))

    def head(self, url):
        self.requests.append(RecordedRequest(method=u'HEAD', url=url))
        if url == self._url(u'new-nonce'):
            return succeed(Response(code=200, headers=self._headers()))
        return succeed(Response(code=405, headers=self._headers()))

    def post(self, url, body, headers):
        try:
            decoded = decode_envelope(body)
        except DeserializationError:
            self.requests.append(RecordedRequest(method=u'POST', url=url))
            return succeed(self._problem(
                _Problem(u'malformed', u'Not a JWS')))
        self.requests.append(RecordedRequest(
            method=u'POST', url=url,
            header=decoded.header, payload=decoded.payload))
        try:
            return succeed(self._dispatch(url, decoded, headers))
        except _Problem as error:
            return succeed(self._problem(error))

    def stop(self):
        self.stopped = True
        return succeed(None)

    # Request handling

    def _authenticate(self, url, decoded, headers):
        content_type = headers.get(b'content-type')
        if content_type != JOSE_CONTENT_TYPE.encode('ascii'):
            raise _Problem(
                u'malformed', u'Content-Type must be application/jose+json',
                status=415)
        header = decoded.header
        nonce = header.get(u'nonce')
        if self.bad_nonces > 0:
            self.bad_nonces -= 1
            self._nonces.discard(nonce)
            raise _Problem(
                u'badNonce', u'JWS has an invalid anti-replay nonce')
        if nonce not in self._nonces:
            raise _Problem(
                u'badNonce', u'JWS has an invalid anti-replay nonce')
        self._nonces.remove(nonce)
        if header.get(u'url') != url:
            raise _Problem(u'unauthorized', u'JWS header URL does not match')
        if (u'jwk' in header) == (u'kid' in header):
            raise _Problem(u'malformed', u'Exactly one of jwk and kid needed')
        if url == self._url(u'new-account'):
            if u'jwk' not in header:
                raise _Problem(u'malformed', u'newAccount requires a jwk')
            jwk = header[u'jwk']
            account = None
        else:
            if u'kid' not in header:
                raise _Problem(u'malformed', u'Requests need a kid')
            account = self._account_by_url(header[u'kid'])
            jwk = account[u'jwk']
        if not verify(decoded, jwk):
            raise _Problem(u'malformed', u'JWS verification error')
        return jwk, account

    def _account_by_url(self, url):
        for account in self.accounts.values():
            if account[u'url'] == url:
                return account
        raise _Problem(
            u'accountDoesNotExist', u'No account at {}'.format(url),
            status=400)

    def _dispatch(self, url, decoded, headers):
        jwk, account = self._authenticate(url, decoded, headers)
        payload = decoded.payload
        if url == self._url(u'new-account'):
            return self._new_account(jwk, payload)
        if account is not None and url == account[u'url']:
            return self._update_account(account, payload)
        if url == self._url(u'new-order'):
            return self._new_order(account, payload)
        if url in self.orders:
            return self._json(200, self._order_json(self._poll_order(url)))
        if url in self.authorizations:
            return self._json(200, self._authz_json(url))
        if url in self.challenges:
            return self._challenge(url, account, payload)
        for order_url, order in self.orders.items():
            if url == order[u'finalize']:
                return self._finalize(order_url, payload)
        if url in self.certificates:
            return Response(
                code=200,
                headers=self._headers(PEM_CHAIN_TYPE),
                body=self.certificates[url])
        raise _Problem(u'malformed', u'No such resource', status=404)

    def _check_contact(self, contact):
        for uri in contact:
            domain = uri.rsplit(u'@', 1)[-1]
            if domain in self.rejected_contact_domains:
                raise _Problem(
                    u'invalidContact',
                    u'Error creating new account :: contact email {!r} has '
                    u'forbidden domain {!r}'.format(uri, domain))

    def _account_json(self, account):
        return {
            u'status': account[u'status'],
            u'contact': account[u'contact'],
            u'orders': account[u'url'] + u'/orders',
            }

    def _new_account(self, jwk, payload):
        thumbprint = jwk_thumbprint(jwk)
        existing = self.accounts.get(thumbprint)
        if existing is not None:
            return self._json(
                200, self._account_json(existing), location=existing[u'url'])
        if (self.terms_of_service is not None and
                not payload.get(u'termsOfServiceAgreed')):
            raise _Problem(
                u'userActionRequired', u'Terms of service must be agreed to',
                status=403)
        contact = payload.get(u'contact', [])
        self._check_contact(contact)
        account = {
            u'url': self._url(u'acct', str(next(self._ids))),
            u'jwk': jwk,
            u'thumbprint': thumbprint,
            u'status': STATUS_VALID,
            u'contact': contact,
            }
        self.accounts[thumbprint] = account
        return self._json(
            201, self._account_json(account), location=account[u'url'])

    def _update_account(self, account, payload):
        if payload and u'contact' in payload:
            self._check_contact(payload[u'contact'])
            account[u'contact'] = payload[u'contact']
        return self._json(200, self._account_json(account))

    def _new_order(self, account, payload):
        identifiers = payload[u'identifiers']
        order_url = self._url(u'order', str(next(self._ids)))
        expires = clock_now(self.clock) + timedelta(
            seconds=self.order_lifetime)
        authz_urls = []
        for identifier in identifiers:
            value = identifier[u'value']
            wildcard = value.startswith(u'*.')
            if wildcard:
                value = value[2:]
                types = [CHALLENGE_DNS01]
            else:
                types = [CHALLENGE_HTTP01, CHALLENGE_DNS01, u'tls-alpn-01']
            authz_url = self._url(u'authz', str(next(self._ids)))
            challenge_urls = []
            for typ in types:
                challenge_url = self._url(u'chall', str(next(self._ids)))
                self.challenges[challenge_url] = {
                    u'type': typ,
                    u'url': challenge_url,
                    u'status': STATUS_PENDING,
                    u'token': u'token-{}'.format(next(self._ids)),
                    u'error': None,
                    u'authorization': authz_url,
                    u'polls': 0,
                    u'outcome': None,
                    }
                challenge_urls.append(challenge_url)
            self.authorizations[authz_url] = {
                u'identifier': {u'type': u'dns', u'value': value},
                u'status': STATUS_PENDING,
                u'wildcard': wildcard,
                u'expires': expires,
                u'challenges': challenge_urls,
                u'order': order_url,
                u'account': account[u'url'],
                }
            authz_urls.append(authz_url)
        self.orders[order_url] = {
            u'status': STATUS_PENDING,
            u'identifiers': identifiers,
            u'authorizations': authz_urls,
            u'finalize': order_url + u'/finalize',
            u'certificate': None,
            u'expires': expires,
            u'error': None,
            u'polls': 0,
            }
        return self._json(
            201, self._order_json(order_url), location=order_url)

    def _order_json(self, order_url):
        order = self.orders[order_url]
        jobj = {
            u'status': order[u'status'],
            u'identifiers': order[u'identifiers'],
            u'authorizations': order[u'authorizations'],
            u'finalize': order[u'finalize'],
            u'expires': pyrfc3339.generate(order[u'expires']),
            }
        if order[u'certificate'] is not None:
            jobj[u'certificate'] = order[u'certificate']
        if order[u'error'] is not None:
            jobj[u'error'] = order[u'error'].to_json()
        return jobj

    def _authz_json(self, authz_url):
        authz = self.authorizations[authz_url]
        return {
            u'identifier': authz[u'identifier'],
            u'status': authz[u'status'],
            u'expires': pyrfc3339.generate(authz[u'expires']),
            u'wildcard': authz[u'wildcard'],
            u'challenges': [
                self._challenge_json(url) for url in authz[u'challenges']],
            }

    def _challenge_json(self, challenge_url):
        challenge = self.challenges[challenge_url]
        jobj = {
            u'type': challenge[u'type'],
            u'url': challenge_url,
            u'status': challenge[u'status'],
            u'token': challenge[u'token'],
            }
        if challenge[u'error'] is not None:
            jobj[u'error'] = challenge[u'error'].to_json()
        return jobj

    def _challenge(self, challenge_url, account, payload):
        challenge = self.challenges[challenge_url]
        if payload is not None and challenge[u'status'] == STATUS_PENDING:
            authz = self.authorizations[challenge[u'authorization']]
            outcome = self.challenge_outcome
            if self.validation_check is not None:
                expected = key_authorization(
                    challenge[u'token'], account[u'thumbprint'])
                name = authz[u'identifier'][u'value']
                if authz[u'wildcard']:
                    name = u'*.' + name
                if not self.validation_check(
                        challenge[u'type'], name, challenge[u'token'],
                        expected):
                    outcome = STATUS_INVALID
            challenge[u'outcome'] = outcome
            challenge[u'status'] = STATUS_PROCESSING
            challenge[u'polls'] = self.challenge_polls
            if challenge[u'polls'] == 0:
                self._resolve_challenge(challenge)
        elif payload is None and challenge[u'status'] == STATUS_PROCESSING:
            challenge[u'polls'] -= 1
            if challenge[u'polls'] <= 0:
                self._resolve_challenge(challenge)
        return self._json(200, self._challenge_json(challenge_url))

    def _resolve_challenge(self, challenge):
        authz = self.authorizations[challenge[u'authorization']]
        order = self.orders[authz[u'order']]
        challenge[u'status'] = challenge[u'outcome']
        if challenge[u'status'] == STATUS_VALID:
            authz[u'status'] = STATUS_VALID
            if all(self.authorizations[url][u'status'] == STATUS_VALID
                   for url in order[u'authorizations']):
                order[u'status'] = STATUS_READY
        else:
            error = self.challenge_error
            if error is None:
                error = Problem(
                    typ=u'urn:ietf:params:acme:error:unauthorized',
                    detail=u'Incorrect validation response', status=403)
            challenge[u'error'] = error
            authz[u'status'] = STATUS_INVALID
            order[u'status'] = STATUS_INVALID
            order[u'error'] = error

    def _poll_order(self, order_url):
        order = self.orders[order_url]
        if order[u'status'] == STATUS_PROCESSING:
            order[u'polls'] -= 1
            if order[u'polls'] <= 0:
                self._issue(order_url)
        return order_url

    def _finalize(self, order_url, payload):
        order = self.orders[order_url]
        if order[u'status'] != STATUS_READY:
            raise _Problem(
                u'orderNotReady',
                u'Order is {}, not ready'.format(order[u'status']),
                status=403)
        try:
            csr = decode_csr(payload[u'csr'])
        except (DeserializationError, KeyError, TypeError):
            raise _Problem(u'badCSR', u'Unable to parse CSR')
        requested = {i[u'value'] for i in order[u'identifiers']}
        if _csr_names(csr) != requested:
            raise _Problem(
                u'badCSR', u'CSR names do not match the order identifiers')
        order[u'csr'] = csr
        order[u'status'] = STATUS_PROCESSING
        order[u'polls'] = self.finalize_polls
        if order[u'polls'] == 0:
            self._issue(order_url)
        return self._json(200, self._order_json(order_url))

    def _ca_key_and_cert(self):
        if self._ca is None:
            key = ec.generate_private_key(ec.SECP256R1())
            name = x509.Name(
                [x509.NameAttribute(NameOID.COMMON_NAME, u'txissuer test CA')])
            now = datetime.now(timezone.utc)
            cert = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - timedelta(days=1))
                .not_valid_after(now + timedelta(days=3650))
                .add_extension(
                    x509.BasicConstraints(ca=True, path_length=None),
                    critical=True)
                .sign(key, hashes.SHA256()))
            self._ca = (key, cert)
        return self._ca

    def _issue(self, order_url):
        order = self.orders[order_url]
        ca_key, ca_cert = self._ca_key_and_cert()
        csr = order[u'csr']
        now = datetime.now(timezone.utc)
        names = [i[u'value'] for i in order[u'identifiers']]
        cert = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([]))
            .issuer_name(ca_cert.subject)
            .public_key(csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(hours=1))
            .not_valid_after(now + timedelta(days=90))
            .add_extension(
                x509.SubjectAlternativeName(
                    [x509.DNSName(name) for name in names]),
                critical=True)
            .sign(ca_key, hashes.SHA256()))
        cert_url = self._url(u'cert', str(next(self._ids)))
        self.certificates[cert_url] = (
            cert.public_bytes(serialization.Encoding.PEM) +
            ca_cert.public_bytes(serialization.Encoding.PEM))
        order[u'certificate'] = cert_url
        order[u'status'] = STATUS_VALID


__all__ = [
    'FakeACMEServer', 'MemoryStore', 'RecordedRequest',
    'RecordingDNS01Provisioner', 'RecordingHTTP01Provisioner',
    'TXIssuerTestCase']
