"""
Tests for `txissuer.nonce`.
"""
from eliot.testing import LoggedAction, assertHasMessage, capture_logging
from testtools import TestCase
from testtools.matchers import (
    Equals, HasLength, Is, IsInstance, MatchesAll, MatchesStructure)
from testtools.twistedsupport import has_no_result, succeeded
from twisted.internet.defer import Deferred, succeed
from twisted.web.http_headers import Headers
from zope.interface import implementer

from txissuer.errors import NonceUnavailableError
from txissuer.interfaces import IHTTPTransport
from txissuer.logging import LOG_NONCE_OBSERVE, LOG_NONCE_TAKE
from txissuer.nonce import NonceManager, nonce_from_headers
from txissuer.test.test_client import failed_with
from txissuer.transport import Response


NEW_NONCE = u'https://acme.test/new-nonce'


def _unavailable(url):
    return MatchesAll(
        IsInstance(NonceUnavailableError),
        MatchesStructure(url=Equals(url)))


def _nonce_headers(nonce):
    return Headers({b'replay-nonce': [nonce.encode('ascii')]})


@implementer(IHTTPTransport)
class NonceTransport(object):
    """
    Answers ``HEAD`` requests with the queued nonces.

    A queued ``None`` is a response without a nonce; a queued ``Deferred`` is
    returned as-is.
    """
    def __init__(self, nonces):
        self.nonces = list(nonces)
        self.heads = []

    def head(self, url):
        self.heads.append(url)
        nonce = self.nonces.pop(0)
        if isinstance(nonce, Deferred):
            return nonce
        headers = {}
        if nonce is not None:
            headers[b'replay-nonce'] = [nonce.encode('ascii')]
        return succeed(Response(code=200, headers=headers))


class NonceFromHeadersTests(TestCase):
    def test_present(self):
        self.assertThat(
            nonce_from_headers(_nonce_headers(u'abc')), Equals(u'abc'))

    def test_missing(self):
        self.assertThat(nonce_from_headers(Headers()), Is(None))

    def test_empty(self):
        self.assertThat(
            nonce_from_headers(Headers({b'replay-nonce': [b' ']})), Is(None))


class NonceManagerTests(TestCase):
    """
    `NonceManager` hands out each nonce once.
    """
    def test_cached(self):
        """
        A nonce seen on a response is used without a request.
        """
        transport = NonceTransport([])
        nonces = NonceManager(transport, url=NEW_NONCE)
        nonces.observe(_nonce_headers(u'one'))
        self.assertThat(nonces.take(), succeeded(Equals(u'one')))
        self.assertThat(transport.heads, Equals([]))
        self.assertThat(nonces.cached, Is(None))

    def test_fetch(self):
        """
        With nothing cached, each take fetches a new nonce.
        """
        transport = NonceTransport([u'one', u'two'])
        nonces = NonceManager(transport, url=NEW_NONCE)
        self.assertThat(nonces.take(), succeeded(Equals(u'one')))
        self.assertThat(nonces.take(), succeeded(Equals(u'two')))
        self.assertThat(transport.heads, Equals([NEW_NONCE, NEW_NONCE]))

    def test_observe_replaces(self):
        nonces = NonceManager(NonceTransport([]), url=NEW_NONCE)
        nonces.observe(_nonce_headers(u'one'))
        nonces.observe(_nonce_headers(u'two'))
        nonces.observe(Headers())
        self.assertThat(nonces.cached, Equals(u'two'))

    def test_discard(self):
        transport = NonceTransport([u'fresh'])
        nonces = NonceManager(transport, url=NEW_NONCE)
        nonces.observe(_nonce_headers(u'stale'))
        nonces.discard()
        self.assertThat(nonces.take(), succeeded(Equals(u'fresh')))

    def test_retry_missing(self):
        """
        A response without a nonce is retried.
        """
        transport = NonceTransport([None, u'one'])
        nonces = NonceManager(transport, url=NEW_NONCE)
        self.assertThat(nonces.take(), succeeded(Equals(u'one')))
        self.assertThat(transport.heads, HasLength(2))

    def test_unavailable(self):
        """
        If no attempt yields a nonce, taking one fails.
        """
        transport = NonceTransport([None, None, u'late'])
        nonces = NonceManager(transport, url=NEW_NONCE)
        self.assertThat(
            nonces.take(),
            failed_with(_unavailable(NEW_NONCE)))
        self.assertThat(transport.heads, HasLength(2))

    def test_no_url(self):
        nonces = NonceManager(NonceTransport([]))
        self.assertThat(
            nonces.take(),
            failed_with(_unavailable(None)))

    def test_serialized(self):
        """
        Concurrent takes are served one at a time.
        """
        pending = Deferred()
        transport = NonceTransport([pending, u'two'])
        nonces = NonceManager(transport, url=NEW_NONCE)
        first = nonces.take()
        second = nonces.take()
        self.assertThat(first, has_no_result())
        self.assertThat(second, has_no_result())
        self.assertThat(transport.heads, HasLength(1))
        pending.callback(
            Response(code=200, headers=_nonce_headers(u'one')))
        self.assertThat(first, succeeded(Equals(u'one')))
        self.assertThat(second, succeeded(Equals(u'two')))

    def test_failure_releases(self):
        """
        A failed take does not block the next one.
        """
        transport = NonceTransport([None, None, u'one'])
        nonces = NonceManager(transport, url=NEW_NONCE)
        self.assertThat(
            nonces.take(), failed_with(IsInstance(NonceUnavailableError)))
        self.assertThat(nonces.take(), succeeded(Equals(u'one')))

    @capture_logging(None)
    def test_logging(self, logger):
        nonces = NonceManager(NonceTransport([u'fetched']), url=NEW_NONCE)
        nonces.observe(_nonce_headers(u'seen'))
        self.assertThat(nonces.take(), succeeded(Equals(u'seen')))
        self.assertThat(nonces.take(), succeeded(Equals(u'fetched')))
        assertHasMessage(self, logger, LOG_NONCE_OBSERVE, {u'nonce': u'seen'})
        actions = LoggedAction.ofType(logger.messages, LOG_NONCE_TAKE)
        self.assertThat(
            [(a.start_message[u'cached'], a.end_message[u'nonce'])
             for a in actions],
            Equals([(True, u'seen'), (False, u'fetched')]))
