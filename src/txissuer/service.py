from functools import partial

import attr
from twisted.application.service import Service
from twisted.internet.defer import (
    Deferred, DeferredLock, fail, inlineCallbacks, succeed)
from twisted.logger import Logger
from twisted.python.failure import Failure

from txissuer.client import POLL_INTERVAL, POLL_TIMEOUT, issue_certificate
from txissuer.keys import generate_private_key


log = Logger()


def _maybe_call(maybe_callable):
    if callable(maybe_callable):
        return maybe_callable()
    return maybe_callable


@attr.s(eq=False, hash=False)
class AcmeIssuer(Service):
    """
    A service issuing certificates with an ACME server.

    :type cert_store: `~txissuer.interfaces.ICertificateStore`
    :param cert_store: Where issued keys and chains are stored.

    :type client: `txissuer.client.Client`
    :param client: A client, a Deferred of a client, or a 0-arg callable
        returning either; for example, ``partial(Client.from_url,
        reactor=reactor, url=LETSENCRYPT_STAGING_DIRECTORY, key=acme_key)``.

        When the service is stopped, it will automatically call the stop method
        on the client.

    :param clock: ``IReactorTime`` provider; usually the reactor, when not
        testing.

    :param provisioner: The `~txissuer.interfaces.IHTTP01Provisioner` or
        `~txissuer.interfaces.IDNS01Provisioner` completing challenges.
    :param str email: An (optional) email address to use during registration.
    :param bool terms_of_service_agreed: Whether the operator agrees to the
        CA's terms of service.
    :param generate_key: A 0-arg callable used to generate a private key for a
        new cert.  Normally you would not pass this unless you have specialized
        key generation requirements.
    :param float poll_interval: Seconds between status checks.
    :param float poll_timeout: Seconds to wait for a challenge or order before
        giving up.
    """
    cert_store = attr.ib()
    _client = attr.ib(converter=_maybe_call)
    _clock = attr.ib()
    _provisioner = attr.ib()
    _email = attr.ib(default=None)
    _terms_of_service_agreed = attr.ib(default=True)
    _generate_key = attr.ib(default=partial(generate_private_key, u'rsa'))
    poll_interval = attr.ib(default=POLL_INTERVAL)
    poll_timeout = attr.ib(default=POLL_TIMEOUT)

    _issuing = attr.ib(default=attr.Factory(dict), init=False)
    _lock = attr.ib(default=attr.Factory(DeferredLock), init=False)
    _cached_client = attr.ib(default=None, init=False)
    _client_failure = attr.ib(default=None, init=False)
    account = attr.ib(default=None, init=False)

    def _get_client(self):
        """
        Get the client, cache it if it's ready.
        """
        if self._cached_client is not None:
            return succeed(self._cached_client)
        if self._client_failure is not None:
            return fail(self._client_failure)
        d = Deferred()

        def got_client(client):
            self._cached_client = client
            d.callback(client)
            return client

        def client_failed(f):
            self._client_failure = f
            d.errback(f)

        if isinstance(self._client, Deferred):
            self._client.addCallbacks(got_client, client_failed)
        else:
            got_client(self._client)
        return d

    @inlineCallbacks
    def _register(self):
        """
        Register the account, unless that happened already.

        Must be called with the lock held.
        """
        client = yield self._get_client()
        if self.account is None:
            self.account = yield client.register(
                email=self._email,
                terms_of_service_agreed=self._terms_of_service_agreed)
            log.info(u'Registered ACME account {kid}', kid=self.account.url)
        return client

    def start(self):
        """
        Like startService, but will return a deferred once the account is
        registered.
        """
        Service.startService(self)
        return self._lock.run(self._register)

    def startService(self):
        """
        Start operating the service.
        """
        self.start().addErrback(
            lambda f: log.failure(u'Unable to register ACME account', f))

    @inlineCallbacks
    def stop(self):
        """
        Stop the service and the client.
        """
        if self.running:
            Service.stopService(self)
        client = yield self._get_client()
        yield client.stop()

    def stopService(self):
        return self.stop()

    def issue_cert(self, server_names):
        """
        Issue a new cert for a particular list of FQDNs.

        If an existing cert exists, it will be replaced with the new cert.  If
        issuing is already in progress for the given name, a second issuing
        process will *not* be started.

        :param str server_names: The comma separated list of names to issue a
            cert for.

        :rtype: ``Deferred[txissuer.client.IssuedCertificate]``
        :return: A deferred that fires when issuing is complete.
        """
        try:
            canonical_names = self._canonicalNames(server_names)
        except ValueError:
            return fail()

        def finish(result):
            _, waiting = self._issuing.pop(canonical_names)
            for d in waiting:
                if isinstance(result, Failure):
                    d.errback(result)
                else:
                    d.callback(result)

        # d_issue is assigned below, in the conditional, since we may be
        # creating it or using the existing one.
        d = Deferred(lambda _: d_issue.cancel())
        if canonical_names in self._issuing:
            d_issue, waiting = self._issuing[canonical_names]
            waiting.append(d)
        else:
            d_issue = self._lock.run(self._issue_cert, canonical_names)
            waiting = [d]
            self._issuing[canonical_names] = (d_issue, waiting)
            # Add the callback afterwards in case the issuance completed
            # synchronously.
            d_issue.addBoth(finish)
        return d

    @staticmethod
    def _canonicalNames(server_names):
        """
        Return the canonical representation for `server_names`.

        :raises ValueError: If no names are left.
        """
        names = [n.strip() for n in server_names.split(',')]
        names = [n for n in names if n]
        if not names:
            raise ValueError(
                'No server names in {!r}'.format(server_names))
        return ','.join(names)

    @inlineCallbacks
    def _issue_cert(self, server_names):
        """
        Issue a new cert for the list of server_names.

        `server_names` is already canonized.
        """
        names = server_names.split(',')
        client = yield self._register()
        log.info(
            'Requesting a certificate for {server_names!r}.',
            server_names=server_names)
        issued = yield issue_certificate(
            client, names, self._provisioner, self._clock,
            generate_key=self._generate_key,
            interval=self.poll_interval, timeout=self.poll_timeout)
        yield self.cert_store.store(server_names, issued.pem_objects())
        return issued


__all__ = ['AcmeIssuer']
