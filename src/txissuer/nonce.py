"""
Replay-Nonce bookkeeping.

Every signed request consumes exactly one nonce. The server hands a fresh one
back on (nearly) every response, so in steady state no extra round trips are
needed; only when nothing is cached do we ``HEAD`` the ``newNonce`` resource.
"""
import attr
from eliot.twisted import DeferredContext
from twisted.internet.defer import DeferredLock, fail, succeed

from txissuer.errors import NonceUnavailableError
from txissuer.logging import LOG_NONCE_OBSERVE, LOG_NONCE_TAKE
from txissuer.util import tap


REPLAY_NONCE_HEADER = b'replay-nonce'


def nonce_from_headers(headers):
    """
    Get the ``Replay-Nonce`` from response headers.

    :param twisted.web.http_headers.Headers headers: The headers.

    :rtype: str
    :return: The nonce, or ``None`` if there is no (non-empty) nonce.
    """
    raw = headers.getRawHeaders(REPLAY_NONCE_HEADER, [b''])[0]
    if isinstance(raw, bytes):
        raw = raw.decode('ascii')
    return raw.strip() or None


@attr.s(eq=False)
class NonceManager(object):
    """
    Hold at most one nonce, and fetch another when it runs out.

    :param transport: The `~txissuer.interfaces.IHTTPTransport` used to reach
        the ``newNonce`` resource.
    :param str url: The ``newNonce`` URL; usually set once the directory has
        been fetched.
    :param int attempts: How many ``HEAD`` requests to make before giving up
        on a server that does not return a nonce.
    """
    _transport = attr.ib()
    url = attr.ib(default=None)
    attempts = attr.ib(default=2)
    _nonce = attr.ib(default=None, init=False)
    _lock = attr.ib(default=attr.Factory(DeferredLock), init=False)

    @property
    def cached(self):
        """
        The nonce on hand, if any.
        """
        return self._nonce

    def take(self):
        """
        Consume a nonce.

        Callers are served one at a time, so two signed requests never share
        a nonce.

        :rtype: ``Deferred[str]``
        """
        return self._lock.run(self._take)

    def _take(self):
        nonce, self._nonce = self._nonce, None
        action = LOG_NONCE_TAKE(cached=nonce is not None)
        with action.context():
            if nonce is not None:
                d = succeed(nonce)
            else:
                d = self._fetch(self.attempts)
            return (
                DeferredContext(d)
                .addCallback(
                    tap(lambda n: action.add_success_fields(nonce=n)))
                .addActionFinish())

    def _fetch(self, attempts):
        if self.url is None:
            return fail(NonceUnavailableError(url=None))

        def got_response(response):
            nonce = nonce_from_headers(response.headers)
            if nonce is not None:
                return nonce
            if attempts > 1:
                return self._fetch(attempts - 1)
            raise NonceUnavailableError(url=self.url)
        return self._transport.head(self.url).addCallback(got_response)

    def observe(self, headers):
        """
        Cache the nonce from a response, replacing any nonce on hand.

        Error responses carry usable nonces too, so this is called for every
        response regardless of its status.
        """
        nonce = nonce_from_headers(headers)
        if nonce is not None:
            LOG_NONCE_OBSERVE(nonce=nonce).write()
            self._nonce = nonce

    def discard(self):
        """
        Forget the nonce on hand.
        """
        self._nonce = None


__all__ = ['NonceManager', 'REPLAY_NONCE_HEADER', 'nonce_from_headers']
