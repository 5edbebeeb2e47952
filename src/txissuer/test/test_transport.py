"""
Tests for `txissuer.transport`.
"""
from treq.testing import StubTreq
from twisted.internet.defer import CancelledError, fail
from twisted.internet.error import ConnectionLost
from twisted.python.failure import Failure
from twisted.trial.unittest import TestCase
from twisted.web.client import ResponseNeverReceived
from twisted.web.http_headers import Headers
from twisted.web.resource import Resource
from twisted.web.server import NOT_DONE_YET
from zope.interface.verify import verifyObject

from txissuer.interfaces import IHTTPTransport
from txissuer.transport import Response, TreqTransport, USER_AGENT
from txissuer.util import json_dumps


URL = u'https://acme.test/resource'


class EchoResource(Resource):
    """
    Describes every request it gets in a JSON response.
    """
    isLeaf = True

    def render(self, request):
        request.setHeader(b'content-type', b'application/json')
        request.setHeader(b'replay-nonce', b'nonce')
        content_type = request.getHeader(b'content-type') or b''
        return json_dumps({
            u'method': request.method.decode('ascii'),
            u'user-agent': request.getHeader(b'user-agent').decode('ascii'),
            u'content-type': content_type.decode('ascii'),
            u'body': request.content.read().decode('utf-8'),
            })


class HangingResource(Resource):
    """
    Never answers by itself.
    """
    isLeaf = True

    def __init__(self):
        Resource.__init__(self)
        self.requests = []

    def render(self, request):
        self.requests.append(request)
        return NOT_DONE_YET


class FailingClient(object):
    """
    A treq client whose requests never get a response.
    """
    def __init__(self, reason):
        self.reason = reason

    def request(self, method, url, **kwargs):
        return fail(ResponseNeverReceived([Failure(self.reason)]))


class TreqTransportTests(TestCase):
    """
    `TreqTransport` makes requests through treq and reads the whole body.
    """
    def test_interface(self):
        transport = TreqTransport(client=StubTreq(EchoResource()))
        verifyObject(IHTTPTransport, transport)

    def test_get(self):
        transport = TreqTransport(
            client=StubTreq(EchoResource()), timeout=None)
        response = self.successResultOf(transport.get(URL))
        self.assertEqual(200, response.code)
        self.assertEqual(u'application/json', response.content_type)
        self.assertEqual(u'nonce', response.header(b'replay-nonce'))
        jobj = response.json()
        self.assertEqual(u'GET', jobj[u'method'])
        self.assertEqual(USER_AGENT, jobj[u'user-agent'])

    def test_post(self):
        """
        The body and headers are sent as given.
        """
        transport = TreqTransport(
            client=StubTreq(EchoResource()), timeout=None,
            user_agent=u'test-agent/1.0')
        response = self.successResultOf(transport.post(
            URL, b'{"a":1}',
            {b'content-type': b'application/jose+json'}))
        self.assertEqual(
            {u'method': u'POST',
             u'user-agent': u'test-agent/1.0',
             u'content-type': u'application/jose+json',
             u'body': u'{"a":1}'},
            response.json())

    def test_head(self):
        transport = TreqTransport(
            client=StubTreq(EchoResource()), timeout=None)
        response = self.successResultOf(transport.head(URL))
        self.assertEqual(200, response.code)
        self.assertEqual(u'nonce', response.header(b'replay-nonce'))

    def test_overlapped(self):
        """
        Only one request is made at a time.
        """
        resource = HangingResource()
        stub = StubTreq(resource)
        transport = TreqTransport(client=stub, timeout=None)
        first = transport.get(URL)
        self.assertNoResult(first)
        self.failureResultOf(transport.get(URL), RuntimeError)

        [request] = resource.requests
        request.setHeader(b'content-type', b'text/plain')
        request.write(b'done')
        request.finish()
        stub.flush()
        self.assertEqual(b'done', self.successResultOf(first).body)

        self.assertNoResult(transport.get(URL))

    def test_stop(self):
        """
        Stopping cancels the pending request.
        """
        transport = TreqTransport(
            client=StubTreq(HangingResource()), timeout=None)
        d = transport.get(URL)
        self.assertIsNone(self.successResultOf(transport.stop()))
        self.failureResultOf(d, CancelledError)

    def test_cancelled_before_response(self):
        """
        A request cancelled while waiting for the response fails with
        `CancelledError` rather than `ResponseNeverReceived`.
        """
        transport = TreqTransport(
            client=FailingClient(CancelledError()), timeout=None)
        self.failureResultOf(transport.get(URL), CancelledError)

    def test_connection_lost(self):
        transport = TreqTransport(
            client=FailingClient(ConnectionLost()), timeout=None)
        f = self.failureResultOf(transport.get(URL), ResponseNeverReceived)
        self.assertTrue(f.value.reasons[0].check(ConnectionLost))


class ResponseTests(TestCase):
    def test_headers_converted(self):
        response = Response(code=200, headers={b'location': b'/a'})
        self.assertIsInstance(response.headers, Headers)
        self.assertEqual(u'/a', response.header(b'location'))
        self.assertIsNone(response.header(b'missing'))

    def test_content_type_lowercased(self):
        response = Response(
            code=200, headers={b'content-type': [b'Application/JSON']})
        self.assertEqual(u'application/json', response.content_type)
        self.assertIsNone(Response(code=204).content_type)

    def test_json(self):
        self.assertEqual(
            {u'a': 1}, Response(code=200, body=b'{"a": 1}').json())
        self.assertRaises(ValueError, Response(code=200, body=b'<>').json)
