"""
HTTP transport for the ACME client, built on ``treq``.
"""
import attr
import treq
from eliot.twisted import DeferredContext
from treq.client import HTTPClient
from twisted.internet.defer import CancelledError, fail, succeed
from twisted.python.failure import Failure
from twisted.web.client import Agent, HTTPConnectionPool, ResponseNeverReceived
from twisted.web.http_headers import Headers
from zope.interface import implementer

from txissuer import __version__
from txissuer.interfaces import IHTTPTransport
from txissuer.logging import LOG_HTTP_REQUEST
from txissuer.util import json_loads, tap


DEFAULT_TIMEOUT = 40

USER_AGENT = u'txissuer/{}'.format(__version__)


def _to_headers(headers):
    if isinstance(headers, Headers):
        return headers
    return Headers({
        name: value if isinstance(value, list) else [value]
        for name, value in (headers or {}).items()})


@attr.s(frozen=True)
class Response(object):
    """
    A fully read HTTP response.

    :ivar int code: The status code.
    :ivar headers: The response headers, as
        ``twisted.web.http_headers.Headers``; a ``dict`` is converted.
    :ivar bytes body: The response body.
    """
    code = attr.ib()
    headers = attr.ib(converter=_to_headers, default=None)
    body = attr.ib(default=b'')

    def header(self, name):
        """
        Get the first value of a header, decoded, or ``None``.
        """
        value = self.headers.getRawHeaders(name, [None])[0]
        if isinstance(value, bytes):
            value = value.decode('latin-1')
        return value

    @property
    def content_type(self):
        value = self.header(b'content-type')
        if value is not None:
            value = value.lower()
        return value

    def json(self):
        """
        Parse the body as JSON.

        :raises ValueError: If it is not JSON.
        """
        return json_loads(self.body)


@implementer(IHTTPTransport)
@attr.s(eq=False)
class TreqTransport(object):
    """
    An `~txissuer.interfaces.IHTTPTransport` making one request at a time
    through a ``treq`` client.

    :param client: A ``treq.client.HTTPClient`` (or anything with the same
        ``request`` method, such as ``treq.testing.StubTreq``).
    :param pool: The ``HTTPConnectionPool`` behind ``client``, closed on
        `stop`.
    :param str user_agent: The ``User-Agent`` sent with every request.
    :param timeout: Seconds to wait for a response, or ``None``.
    """
    _client = attr.ib()
    _pool = attr.ib(default=None)
    user_agent = attr.ib(default=USER_AGENT)
    timeout = attr.ib(default=DEFAULT_TIMEOUT)
    _current_request = attr.ib(default=None, init=False)

    @classmethod
    def create(cls, reactor, timeout=DEFAULT_TIMEOUT, user_agent=USER_AGENT):
        """
        Make a transport with its own persistent connection pool.
        """
        pool = HTTPConnectionPool(reactor)
        client = HTTPClient(agent=Agent(reactor, pool=pool))
        return cls(
            client=client, pool=pool, user_agent=user_agent, timeout=timeout)

    def _request(self, method, url, data=None, headers=None):
        if self._current_request is not None:
            return fail(RuntimeError('Overlapped HTTP request'))

        request_headers = Headers(
            {b'user-agent': [self.user_agent.encode('ascii')]})
        for name, value in (headers or {}).items():
            request_headers.setRawHeaders(name, [value])
        kwargs = {u'headers': request_headers}
        if data is not None:
            kwargs[u'data'] = data
        if self.timeout is not None:
            kwargs[u'timeout'] = self.timeout

        def read_body(response):
            return treq.content(response).addCallback(
                lambda body: Response(
                    code=response.code, headers=response.headers, body=body))

        def cancelled(failure):
            failure.trap(ResponseNeverReceived)
            if any(reason.check(CancelledError)
                   for reason in failure.value.reasons):
                return Failure(CancelledError())
            return failure

        def request_done(result):
            self._current_request = None
            return result

        action = LOG_HTTP_REQUEST(method=method, url=url)
        with action.context():
            self._current_request = self._client.request(
                method, url, **kwargs)
            return (
                DeferredContext(self._current_request)
                .addCallback(read_body)
                .addErrback(cancelled)
                .addBoth(request_done)
                .addCallback(
                    tap(lambda r: action.add_success_fields(
                        code=r.code, content_type=r.content_type)))
                .addActionFinish())

    def get(self, url):
        return self._request(u'GET', url)

    def head(self, url):
        return self._request(u'HEAD', url)

    def post(self, url, body, headers):
        return self._request(u'POST', url, data=body, headers=headers)

    def stop(self):
        """
        Cancel the pending request, if any, and close cached connections.
        """
        if self._current_request is not None:
            current, self._current_request = self._current_request, None
            current.cancel()
        if self._pool is not None:
            return self._pool.closeCachedConnections()
        return succeed(None)


__all__ = ['DEFAULT_TIMEOUT', 'Response', 'TreqTransport', 'USER_AGENT']
