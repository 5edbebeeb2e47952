"""
ACME client API implementation for Twisted.

Extracted from RFC 8555

                              directory
                                  |
                                  +--> newNonce
                                  |
      +----------+----------+-----+-----+------------+
      |          |          |           |            |
      |          |          |           |            |
      V          V          V           V            V
 newAccount   newAuthz   newOrder   revokeCert   keyChange
      |          |          |
      |          |          |
      V          |          V
   account       |        order --+--> finalize
                 |          |     |
                 |          |     +--> cert
                 |          V
                 +---> authorization
                           | ^
                           | | "up"
                           V |
                         challenge

                 ACME Resources and Relationships

   +-------------------+--------------------------------+--------------+
   | Action            | Request                        | Response     |
   +-------------------+--------------------------------+--------------+
   |1.Get directory    | GET  directory                 | 200          |
   |                   |                                |              |
   |2.Get nonce        | HEAD newNonce                  | 200          |
   |                   |                                |              |
   |3.Create account   | POST newAccount                | 201 ->       |
   |                   |                                | account      |
   |                   |                                |              |
   |4.Submit order     | POST newOrder                  | 201 -> order |
   |                   |                                |              |
   |5.Fetch challenges | POST-as-GET order's            | 200          |
   |                   | authorization urls             |              |
   |                   |                                |              |
   |6.Respond to       | POST authorization challenge   | 200          |
   | challenges        | urls                           |              |
   |                   |                                |              |
   |7.Poll for status  | POST-as-GET challenge          | 200          |
   |                   |                                |              |
   |8.Finalize order   | POST order's finalize url      | 200          |
   |                   |                                |              |
   |9.Poll for status  | POST-as-GET order              | 200          |
   |                   |                                |              |
   |10.Download        | POST-as-GET order's            | 200          |
   | certificate       | certificate url                |              |
   +-------------------+--------------------------------+--------------+

1. client = Client.from_url(reactor, DIRECTORY_URL, key)
2. done as part of Client.from_url() and automatically for each request
3. client.register(email) - creates or updates an account.
4. order = client.submit_order([list, of, domains])
5. client.fetch_authorization(url) for each of order.authorizations
6. answer_challenge(authorization, client, provisioner, clock)
7. poll as part of answer_challenge
8. and 9. get_certificate(order, client, clock, key)
10. also part of get_certificate; issue_certificate() does all of the above.
"""
from functools import partial

import attr
import pem
from eliot.twisted import DeferredContext
from twisted.internet.defer import (
    CancelledError, inlineCallbacks, maybeDeferred, succeed, fail)
from twisted.internet.task import deferLater
from twisted.logger import Logger
from twisted.web import http

from txissuer.errors import (
    BadNonceError, ChallengeFailedError, ChallengeUnsupportedError,
    ClientError, DirectoryUnreachableError, OrderExpiredError,
    PollTimeoutError, RegistrationError, ServerError,
    UnexpectedOrderStatusError)
from txissuer.jws import JWSSigner
from txissuer.keys import generate_private_key
from txissuer.logging import (
    LOG_ACME_ANSWER_CHALLENGE, LOG_ACME_CONSUME_DIRECTORY,
    LOG_ACME_CREATE_ORDER, LOG_ACME_FETCH_AUTHORIZATION,
    LOG_ACME_FETCH_CERTIFICATE, LOG_ACME_FINALIZE, LOG_ACME_POLL,
    LOG_ACME_REGISTER, LOG_ACME_UPDATE_REGISTRATION, LOG_JWS_BAD_NONCE,
    LOG_JWS_CHECK_RESPONSE, LOG_JWS_GET, LOG_JWS_POST)
from txissuer.messages import (
    Account, Authorization, Challenge, CHALLENGE_DNS01, CHALLENGE_HTTP01,
    Directory, Order, Problem, STATUS_INVALID, STATUS_PENDING,
    STATUS_READY, STATUS_VALID, fqdn_identifier)
from txissuer.nonce import NonceManager
from txissuer.transport import DEFAULT_TIMEOUT, TreqTransport
from txissuer.util import (
    check_directory_url_type, clock_now, csr_for_names, dns01_validation,
    encode_csr, json_dumps, key_authorization, tap, validation_domain_name)


log = Logger()

JSON_CONTENT_TYPE = u'application/json'
JOSE_CONTENT_TYPE = u'application/jose+json'
JSON_ERROR_CONTENT_TYPE = u'application/problem+json'
PEM_CHAIN_TYPE = u'application/pem-certificate-chain'

SUPPORTED_CHALLENGES = (CHALLENGE_HTTP01, CHALLENGE_DNS01)

POLL_INTERVAL = 2.0
POLL_TIMEOUT = 300.0


def _json_or_none(response):
    try:
        return response.json()
    except ValueError:
        return None


class JWSClient(object):
    """
    HTTP client using JWS-signed messages for ACME.

    :param transport: An `~txissuer.interfaces.IHTTPTransport`.
    :param key: The account key.
    :param nonces: A `~txissuer.nonce.NonceManager`, or ``None`` to make one
        on ``transport``.
    """
    def __init__(self, transport, key, nonces=None):
        self._transport = transport
        self._key = key
        self._signer = JWSSigner(key)
        if nonces is None:
            nonces = NonceManager(transport)
        self._nonces = nonces
        self._kid = None

    @property
    def key(self):
        return self._key

    @property
    def nonces(self):
        return self._nonces

    @property
    def kid(self):
        return self._kid

    @kid.setter
    def kid(self, value):
        self._kid = value

    @classmethod
    def _check_response(cls, response, content_type=JSON_CONTENT_TYPE):
        """
        Check response content and its type.

        :param str content_type: Expected Content-Type response header.  If
            the response Content-Type does not match, :exc:`ClientError` is
            raised.

        :raises ServerError: If the response carries an ACME problem document.
        :raises ClientError: In case of other protocol errors.
        """
        response_ct = response.content_type
        with LOG_JWS_CHECK_RESPONSE(
                expected_content_type=content_type,
                response_content_type=response_ct,
                code=response.code):
            if 400 <= response.code < 600:
                jobj = _json_or_none(response)
                if (response_ct is not None and
                        response_ct.startswith(
                            (JSON_ERROR_CONTENT_TYPE, JSON_CONTENT_TYPE)) and
                        isinstance(jobj, dict)):
                    raise ServerError(Problem.from_json(jobj), response)
                raise ClientError(
                    'Response {} is not a problem document'.format(
                        response.code))
            if response_ct is None or not response_ct.startswith(
                    content_type):
                raise ClientError(
                    'Unexpected response Content-Type: {0!r}. '
                    'Expecting {1!r}.'.format(response_ct, content_type))
            if (content_type == JSON_CONTENT_TYPE and
                    not isinstance(_json_or_none(response), dict)):
                raise ClientError('Missing JSON body.')
            return response

    def _observe_nonce(self, response):
        self._nonces.observe(response.headers)
        return response

    def start(self, directory_url):
        """
        Fetch the directory and point the nonce manager at ``newNonce``.

        :param str directory_url: The URL of the ACME v2 directory.

        :rtype: ``Deferred[Directory]``
        """
        def cb_parse_directory(response):
            directory = Directory.from_json(response.json())
            self._nonces.url = directory.new_nonce
            return directory
        return self.get(directory_url).addCallback(cb_parse_directory)

    def stop(self):
        """
        Stops the operation.

        This cancels pending operations and does cleanup.

        :return: A deferred which fires when the client is stopped.
        """
        return self._transport.stop()

    def get(self, url, content_type=JSON_CONTENT_TYPE):
        """
        Send an unsigned GET request and check the response.

        :raises ServerError: If the response carries an ACME problem document.
        :raises ClientError: In case of other protocol errors.
        """
        with LOG_JWS_GET(url=url).context():
            return (
                DeferredContext(self._transport.get(url))
                .addCallback(self._observe_nonce)
                .addCallback(self._check_response, content_type=content_type)
                .addActionFinish())

    def _post(self, url, payload, response_type, kid):
        def cb_sign(nonce):
            return json_dumps(self._signer.sign(url, payload, nonce, kid=kid))

        def cb_send(body):
            return self._transport.post(
                url, body,
                {b'content-type': JOSE_CONTENT_TYPE.encode('ascii')})

        with LOG_JWS_POST(url=url).context():
            return (
                DeferredContext(self._nonces.take())
                .addCallback(cb_sign)
                .addCallback(cb_send)
                .addCallback(self._observe_nonce)
                .addCallback(self._check_response, content_type=response_type)
                .addActionFinish())

    def post(self, url, payload, response_type=JSON_CONTENT_TYPE, kid=None,
             use_jwk=False):
        """
        POST a signed payload and check the response. Retry once with a
        freshly fetched nonce if a ``badNonce`` error is received.

        :param str url: The URL to request.
        :param payload: The JSON payload, or ``None`` for a POST-as-GET.
        :param str response_type: The expected content type of the response.
        :param str kid: Sign with this key-id instead of the account's.
        :param bool use_jwk: Embed the public key instead of a key-id, as
            required for ``newAccount``.

        :raises ServerError: If the response carries an ACME problem document.
        :raises BadNonceError: If the retry is rejected for its nonce too.
        :raises ClientError: In case of other protocol errors.
        """
        if use_jwk:
            kid = None
        elif kid is None:
            kid = self._kid

        def eb_retry_bad_nonce(f):
            f.trap(ServerError)
            if f.value.code != u'badNonce':
                return f
            LOG_JWS_BAD_NONCE(
                url=url, detail=f.value.problem.detail or u'').write()
            # The cached nonce came from the rejected response; start over.
            self._nonces.discard()
            return (
                self._post(url, payload, response_type, kid)
                .addErrback(eb_give_up))

        def eb_give_up(f):
            f.trap(ServerError)
            if f.value.code == u'badNonce':
                raise BadNonceError(url=url, problem=f.value.problem)
            return f

        return (
            self._post(url, payload, response_type, kid)
            .addErrback(eb_retry_bad_nonce))


class Client(object):
    """
    ACME client interface.

    Requests are made one at a time; this is due to the nonce handling.

    Should be initialized with `Client.from_url`.
    """
    def __init__(self, directory, reactor, key, jws_client):
        self._client = jws_client
        self._clock = reactor
        self.directory = directory
        self.key = key

    @classmethod
    def from_url(cls, reactor, url, key, transport=None,
                 timeout=DEFAULT_TIMEOUT, jws_client=None):
        """
        Construct a client from an ACME directory at a given URL.

        At construct time, it validates the ACME directory.

        :param reactor: The Twisted reactor to use.
        :param url: The ``twisted.python.url.URL`` to fetch the directory from.
            See `txissuer.urls` for constants for various well-known public
            directories.
        :param key: The account key; see `txissuer.keys`.
        :param transport: The `~txissuer.interfaces.IHTTPTransport` to use, or
            ``None`` to construct a `~txissuer.transport.TreqTransport`.
        :param timeout: Number of seconds to wait for an HTTP response
            during ACME server interaction.
        :param JWSClient jws_client: The underlying client to use, or ``None``
            to construct one.

        :raises TypeError: If ``url`` is not a URL object.
        :raises DirectoryUnreachableError: If the directory cannot be used.

        :rtype: ``Deferred[Client]``
        """
        check_directory_url_type(url)
        if jws_client is None:
            if transport is None:
                transport = TreqTransport.create(reactor, timeout=timeout)
            jws_client = JWSClient(transport, key)

        def eb_unreachable(f):
            if f.check(CancelledError):
                return f
            raise DirectoryUnreachableError(url=url.asText(), reason=f.value)

        action = LOG_ACME_CONSUME_DIRECTORY(
            url=url, key_type=key.key_type, alg=key.algorithm)
        with action.context():
            return (
                DeferredContext(jws_client.start(url.asText()))
                .addErrback(eb_unreachable)
                .addCallback(
                    tap(lambda d: action.add_success_fields(directory=d)))
                .addCallback(cls, reactor, key, jws_client)
                .addActionFinish())

    @property
    def kid(self):
        """
        The account URL, once registered.
        """
        return self._client.kid

    def stop(self):
        """
        Stops the client operation.

        This cancels pending operations and does cleanup.

        :rtype: ``Deferred[None]``
        """
        return self._client.stop()

    def key_authorization(self, token):
        """
        The key authorization for a challenge token under our account key.
        """
        return key_authorization(token, self.key.thumbprint())

    @classmethod
    def _expect_response(cls, response, codes):
        """
        Ensure we got one of the expected response codes.
        """
        if response.code not in codes:
            raise ClientError(
                'Expected {!r} response but got {!r}'.format(
                    codes, response.code))
        return response

    @classmethod
    def _location(cls, response):
        location = response.header(b'location')
        if location is None:
            raise ClientError('Location header missing')
        return location

    def register(self, email=None, terms_of_service_agreed=True):
        """
        Create a new account with the ACME server, or find the existing one
        for our key.

        :param str email: Comma separated contact emails used by the account;
            if the account already exists, its contacts are updated.
        :param bool terms_of_service_agreed: Whether the operator agrees to
            the CA's terms of service.

        :raises RegistrationError: If the CA refuses the account.

        :rtype: ``Deferred[Account]``
        """
        contact = []
        if email is not None:
            contact = [
                u'mailto:' + address.strip()
                for address in email.split(u',') if address.strip()]
        terms = self.directory.terms_of_service
        if terms is not None and not terms_of_service_agreed:
            return fail(RegistrationError(
                detail=u'Terms of service at {} were not agreed to'.format(
                    terms)))

        payload = {u'termsOfServiceAgreed': terms_of_service_agreed}
        if contact:
            payload[u'contact'] = contact
        action = LOG_ACME_REGISTER(
            contact=contact, terms_of_service_agreed=terms_of_service_agreed)
        with action.context():
            return (
                DeferredContext(
                    self._client.post(
                        self.directory.new_account, payload, use_jwk=True))
                .addCallback(self._cb_check_existing_account, contact)
                .addCallback(self._cb_check_registration)
                .addErrback(self._eb_registration_failed)
                .addCallback(
                    tap(lambda a: action.add_success_fields(account=a)))
                .addActionFinish())

    def _cb_check_existing_account(self, response, contact):
        """
        An account that already exists (200) keeps its old contacts unless we
        update them with a request signed by its key-id.
        """
        self._expect_response(response, [http.OK, http.CREATED])
        uri = self._location(response)
        if response.code == http.OK and contact:
            action = LOG_ACME_UPDATE_REGISTRATION(contact=contact, uri=uri)
            with action.context():
                return (
                    DeferredContext(
                        self._client.post(uri, {u'contact': contact}, kid=uri))
                    .addCallback(self._expect_response, [http.OK])
                    .addCallback(lambda r: Account.from_json(r.json(), uri))
                    .addActionFinish())
        return Account.from_json(response.json(), uri)

    def _cb_check_registration(self, account):
        if account.status != STATUS_VALID:
            raise RegistrationError(
                detail=u'Account is {}'.format(account.status))
        self._client.kid = account.url
        return account

    @classmethod
    def _eb_registration_failed(cls, f):
        f.trap(ServerError)
        problem = f.value.problem
        raise RegistrationError(
            detail=problem.detail or str(problem), problem=problem)

    def submit_order(self, names):
        """
        Create a new order for the given names.

        :param List[str] names: The DNS names for which to request a
            certificate; wildcards such as ``*.example.com`` are allowed.

        :rtype: ``Deferred[Order]``
        """
        identifiers = [fqdn_identifier(name) for name in names]
        payload = {u'identifiers': [i.to_json() for i in identifiers]}
        action = LOG_ACME_CREATE_ORDER(names=list(names))
        with action.context():
            return (
                DeferredContext(
                    self._client.post(self.directory.new_order, payload))
                .addCallback(self._expect_response, [http.CREATED])
                .addCallback(self._parse_order, identifiers)
                .addCallback(
                    tap(lambda o: action.add_success_fields(order=o)))
                .addActionFinish())

    @classmethod
    def _parse_order(cls, response, identifiers):
        order = Order.from_json(response.json(), cls._location(response))
        if set(order.identifiers) != set(identifiers):
            raise ClientError(
                'Order identifiers {!r} do not match the request'.format(
                    [i.value for i in order.identifiers]))
        return order

    def _post_as_get(self, url, codes=(http.OK,)):
        return (
            self._client.post(url, None)
            .addCallback(self._expect_response, codes))

    def fetch_authorization(self, url):
        """
        Fetch an authorization with its challenges.

        :rtype: ``Deferred[Authorization]``
        """
        action = LOG_ACME_FETCH_AUTHORIZATION(url=url)
        with action.context():
            return (
                DeferredContext(self._post_as_get(url))
                .addCallback(
                    lambda r: Authorization.from_json(r.json(), url))
                .addCallback(
                    tap(lambda a: action.add_success_fields(
                        authorization=a)))
                .addActionFinish())

    def answer_challenge(self, challenge):
        """
        Tell the server a challenge is ready to be validated.

        This sends a POST with the empty object ``{}`` as the payload.

        :rtype: ``Deferred[Challenge]``
        :return: The updated challenge; a challenge which is not pending is
            returned as-is, without a request.
        """
        if challenge.status != STATUS_PENDING:
            return succeed(challenge)
        action = LOG_ACME_ANSWER_CHALLENGE(challenge=challenge)
        with action.context():
            return (
                DeferredContext(self._client.post(challenge.url, {}))
                .addCallback(self._expect_response, [http.OK])
                .addCallback(lambda r: Challenge.from_json(r.json()))
                .addCallback(self._check_challenge, challenge)
                .addCallback(
                    tap(lambda c: action.add_success_fields(challenge=c)))
                .addActionFinish())

    @classmethod
    def _check_challenge(cls, challenge, expected):
        if challenge.url != expected.url:
            raise ClientError(
                'Got challenge {!r}, expected {!r}'.format(
                    challenge.url, expected.url))
        return challenge

    def _poll(self, url, parse):
        action = LOG_ACME_POLL(url=url)
        with action.context():
            return (
                DeferredContext(self._post_as_get(url))
                .addCallback(parse)
                .addCallback(
                    tap(lambda r: action.add_success_fields(status=r.status)))
                .addActionFinish())

    def check_challenge(self, challenge):
        """
        Re-fetch a challenge.

        :rtype: ``Deferred[Challenge]``
        """
        return self._poll(
            challenge.url,
            lambda r: self._check_challenge(
                Challenge.from_json(r.json()), challenge))

    def check_order(self, order):
        """
        Re-fetch an order.

        :rtype: ``Deferred[Order]``
        """
        return self._poll(
            order.url, lambda r: Order.from_json(r.json(), order.url))

    def finalize(self, order, csr):
        """
        Submit the CSR for an order whose authorizations are all valid.

        :param Order order: The order to finalize.
        :param cryptography.x509.CertificateSigningRequest csr: The CSR.

        :rtype: ``Deferred[Order]``
        """
        action = LOG_ACME_FINALIZE(url=order.finalize)
        with action.context():
            return (
                DeferredContext(
                    self._client.post(
                        order.finalize, {u'csr': encode_csr(csr)}))
                .addCallback(self._expect_response, [http.OK])
                .addCallback(lambda r: Order.from_json(r.json(), order.url))
                .addCallback(
                    tap(lambda o: action.add_success_fields(status=o.status)))
                .addActionFinish())

    def fetch_certificate(self, url):
        """
        Download a certificate chain.

        :rtype: ``Deferred[bytes]``
        :return: The PEM chain, leaf first.
        """
        action = LOG_ACME_FETCH_CERTIFICATE(url=url)
        with action.context():
            return (
                DeferredContext(
                    self._client.post(url, None, response_type=PEM_CHAIN_TYPE))
                .addCallback(self._expect_response, [http.OK])
                .addCallback(lambda r: r.body)
                .addCallback(
                    tap(lambda b: action.add_success_fields(length=len(b))))
                .addActionFinish())


def select_challenge(authorization, challenge_type):
    """
    Find the challenge of the preferred type in an authorization.

    No request is made, so an unusable authorization is rejected before any
    challenge is provisioned.

    :raises ChallengeUnsupportedError: If the type is not implemented, not
        offered by the server, or not allowed for a wildcard name.

    :rtype: `Challenge`
    """
    server_name = authorization.server_name
    if challenge_type not in SUPPORTED_CHALLENGES:
        raise ChallengeUnsupportedError(
            identifier=server_name, challenge_type=challenge_type,
            reason=u'not implemented')
    wildcard = authorization.wildcard or authorization.identifier.wildcard
    if wildcard and challenge_type != CHALLENGE_DNS01:
        raise ChallengeUnsupportedError(
            identifier=server_name, challenge_type=challenge_type,
            reason=u'wildcard names can only be validated with dns-01')
    for challenge in authorization.challenges:
        if challenge.typ == challenge_type:
            return challenge
    raise ChallengeUnsupportedError(
        identifier=server_name, challenge_type=challenge_type,
        reason=u'not offered by the server')


@inlineCallbacks
def _poll(fetch, resource, clock, final, interval, timeout, expires):
    """
    Re-fetch ``resource`` every ``interval`` seconds until its status is in
    ``final``.
    """
    started = clock.seconds()
    while resource.status not in final:
        waited = clock.seconds() - started
        if expires is not None and clock_now(clock) >= expires:
            raise OrderExpiredError(
                url=resource.url, status=resource.status, waited=waited,
                expires=expires)
        if waited >= timeout:
            raise PollTimeoutError(
                url=resource.url, status=resource.status, waited=waited)
        yield deferLater(clock, interval, lambda: None)
        resource = yield fetch(resource)
    return resource


@inlineCallbacks
def poll_challenge(client, challenge, clock, identifier=None,
                   interval=POLL_INTERVAL, timeout=POLL_TIMEOUT, expires=None):
    """
    Wait for the server to validate a challenge.

    :param Client client: The ACME client.
    :param Challenge challenge: The answered challenge.
    :param clock: The ``IReactorTime`` implementation to use; usually the
        reactor, when not testing.
    :param str identifier: The name being validated, for error reporting.
    :param float interval: Seconds between polls.
    :param float timeout: Maximum time to poll in seconds, before giving up.
    :param ~datetime.datetime expires: When the order expires, if known.

    :raises ChallengeFailedError: If the challenge was not validated.
    :raises PollTimeoutError: After ``timeout`` seconds.
    :raises OrderExpiredError: Once ``expires`` has passed.

    :rtype: ``Deferred[Challenge]``
    """
    challenge = yield _poll(
        client.check_challenge, challenge, clock,
        final=(STATUS_VALID, STATUS_INVALID),
        interval=interval, timeout=timeout, expires=expires)
    if challenge.status != STATUS_VALID:
        raise ChallengeFailedError(
            identifier=identifier, status=challenge.status,
            problem=challenge.error)
    return challenge


def poll_order(client, order, clock, interval=POLL_INTERVAL,
               timeout=POLL_TIMEOUT):
    """
    Wait for a finalized order to leave the ``ready`` and ``processing``
    states.

    :rtype: ``Deferred[Order]``
    """
    return _poll(
        client.check_order, order, clock,
        final=(STATUS_PENDING, STATUS_VALID, STATUS_INVALID),
        interval=interval, timeout=timeout, expires=order.expires)


@inlineCallbacks
def answer_challenge(authorization, client, provisioner, clock,
                     challenge=None, interval=POLL_INTERVAL,
                     timeout=POLL_TIMEOUT, expires=None):
    """
    Complete an authorization using a provisioner.

    The challenge is provisioned, announced to the server and polled until
    the server reaches a verdict. Whatever was provisioned is torn down
    again, whether or not validation succeeded.

    :param Authorization authorization: The authorization to complete.
    :param Client client: The ACME client.
    :param provisioner: An `~txissuer.interfaces.IHTTP01Provisioner` or
        `~txissuer.interfaces.IDNS01Provisioner`.
    :param clock: The ``IReactorTime`` implementation to use.
    :param Challenge challenge: The challenge to answer, or ``None`` to
        select one of the provisioner's type.

    :raises ChallengeUnsupportedError: Before anything is provisioned, if the
        provisioner's challenge type cannot be used.
    :raises ChallengeFailedError: If the challenge was not validated.

    :rtype: ``Deferred[Challenge]``
    """
    if challenge is None:
        challenge = select_challenge(
            authorization, provisioner.challenge_type)
    server_name = authorization.server_name
    key_authz = client.key_authorization(challenge.token)
    teardown = None
    try:
        if challenge.typ == CHALLENGE_DNS01:
            record_name = validation_domain_name(server_name)
            record_value = dns01_validation(key_authz)
            log.info(
                u'Provisioning {record_name} for {server_name}',
                record_name=record_name, server_name=server_name)
            handle = yield maybeDeferred(
                provisioner.provision_dns, record_name, record_value)
            teardown = partial(provisioner.teardown_dns, handle)
            yield maybeDeferred(
                provisioner.wait_for_propagation, record_name, record_value)
        else:
            log.info(
                u'Serving http-01 token {token} for {server_name}',
                token=challenge.token, server_name=server_name)
            teardown = partial(
                provisioner.teardown_http, server_name, challenge.token)
            yield maybeDeferred(
                provisioner.provision_http,
                server_name, challenge.token, key_authz)
        challenge = yield client.answer_challenge(challenge)
        challenge = yield poll_challenge(
            client, challenge, clock, identifier=server_name,
            interval=interval, timeout=timeout, expires=expires)
    finally:
        if teardown is not None:
            yield maybeDeferred(teardown)
    log.info(u'{server_name} validated', server_name=server_name)
    return challenge


@inlineCallbacks
def get_certificate(order, client, clock, key, interval=POLL_INTERVAL,
                    timeout=POLL_TIMEOUT):
    """
    Finalize the order and return the associated certificate chain.

    It assumes all authorizations were already validated.::

        pending --------------+
           |                  |
           | All authz        |
           | "valid"          |
           V                  |
         ready ---------------+
           |                  |
           | Receive          |
           | finalize         |
           | request          |
           V                  |
       processing ------------+
           |                  |
           | Certificate      | Error or
           | issued           | Authorization failure
           V                  V
         valid             invalid

    :param Order order: The order to finalize.
    :param Client client: The ACME client.
    :param clock: The ``IReactorTime`` implementation to use.
    :param key: The certificate key; see `txissuer.keys`.

    :raises UnexpectedOrderStatusError: If the order is not ``ready`` before
        finalization, or does not become ``valid`` after.

    :rtype: ``Deferred[Tuple[Order, bytes]]``
    :return: The valid order and the PEM chain.
    """
    order = yield client.check_order(order)
    if order.status != STATUS_READY:
        raise UnexpectedOrderStatusError(
            url=order.url, expected=STATUS_READY, status=order.status,
            problem=order.error)
    csr = csr_for_names([i.value for i in order.identifiers], key.key)
    order = yield client.finalize(order, csr)
    order = yield poll_order(
        client, order, clock, interval=interval, timeout=timeout)
    if order.status != STATUS_VALID or order.certificate is None:
        raise UnexpectedOrderStatusError(
            url=order.url, expected=STATUS_VALID, status=order.status,
            problem=order.error)
    chain = yield client.fetch_certificate(order.certificate)
    return order, chain


@attr.s(frozen=True)
class IssuedCertificate(object):
    """
    The result of a successful issuance.

    :ivar List[str] names: The names requested.
    :ivar key: The certificate key.
    :ivar bytes chain: The PEM chain, leaf first.
    :ivar Order order: The valid order.
    """
    names = attr.ib(converter=tuple)
    key = attr.ib()
    chain = attr.ib()
    order = attr.ib()

    def pem_objects(self):
        """
        The key followed by the chain, as :ref:`pem-objects`.
        """
        return pem.parse(self.key.private_bytes()) + pem.parse(self.chain)


def _default_generate_key():
    return generate_private_key(u'rsa')


@inlineCallbacks
def issue_certificate(client, names, provisioner, clock,
                      generate_key=_default_generate_key,
                      interval=POLL_INTERVAL, timeout=POLL_TIMEOUT):
    """
    Obtain a certificate for ``names`` with a registered client.

    Authorizations are fetched and their challenges selected before any of
    them is provisioned; they are then completed one at a time.

    :param Client client: A registered ACME client.
    :param List[str] names: The names for the certificate.
    :param provisioner: The challenge provisioner.
    :param clock: The ``IReactorTime`` implementation to use.
    :param generate_key: A 0-arg callable returning the certificate key.

    :rtype: ``Deferred[IssuedCertificate]``
    """
    names = list(names)
    order = yield client.submit_order(names)
    log.info(u'Placed order {url} for {names}', url=order.url, names=names)
    authorizations = []
    for url in order.authorizations:
        authorization = yield client.fetch_authorization(url)
        authorizations.append(authorization)

    pending = []
    for authorization in authorizations:
        if authorization.status == STATUS_VALID:
            continue
        if authorization.status != STATUS_PENDING:
            raise ChallengeFailedError(
                identifier=authorization.server_name,
                status=authorization.status)
        pending.append(
            (authorization,
             select_challenge(authorization, provisioner.challenge_type)))

    for authorization, challenge in pending:
        yield answer_challenge(
            authorization, client, provisioner, clock, challenge=challenge,
            interval=interval, timeout=timeout, expires=order.expires)

    key = generate_key()
    order, chain = yield get_certificate(
        order, client, clock, key, interval=interval, timeout=timeout)
    log.info(u'Issued certificate for {names}', names=names)
    return IssuedCertificate(names=names, key=key, chain=chain, order=order)


__all__ = [
    'Client', 'JWSClient', 'IssuedCertificate', 'JSON_CONTENT_TYPE',
    'JOSE_CONTENT_TYPE', 'JSON_ERROR_CONTENT_TYPE', 'PEM_CHAIN_TYPE',
    'POLL_INTERVAL', 'POLL_TIMEOUT', 'answer_challenge', 'get_certificate',
    'issue_certificate', 'poll_challenge', 'poll_order', 'select_challenge']
