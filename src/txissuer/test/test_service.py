"""
Tests for `txissuer.service`.
"""
from cryptography import x509
from pem import Certificate, Key
from testtools.assertions import assert_that
from twisted.internet.defer import CancelledError, fail, succeed
from twisted.python.url import URL
from twisted.trial.unittest import TestCase

from txissuer.client import Client
from txissuer.errors import ChallengeUnsupportedError, RegistrationError
from txissuer.service import AcmeIssuer
from txissuer.test.matchers import ValidForName
from txissuer.test.test_client import ACCOUNT_KEY, CERT_KEY, ClientTestMixin
from txissuer.testing import (
    MemoryStore, RecordingDNS01Provisioner, RecordingHTTP01Provisioner)


class AcmeIssuerTests(ClientTestMixin, TestCase):
    """
    `AcmeIssuer` registers once and stores what it issues.
    """
    def make_issuer(self, client=None, provisioner=None, **kwargs):
        if provisioner is None:
            provisioner = RecordingHTTP01Provisioner()
        if not hasattr(self, 'server'):
            self.http_server(provisioner)
        if client is None:
            client = self.make_client()
        self.cert_store = MemoryStore()
        self.provisioner = provisioner
        issuer = AcmeIssuer(
            cert_store=self.cert_store,
            client=client,
            clock=self.clock,
            provisioner=provisioner,
            generate_key=lambda: CERT_KEY,
            **kwargs)
        self.addCleanup(lambda: issuer.running and issuer.stopService())
        return issuer

    def new_orders(self):
        return self.server.requests_to(self.server.base + u'/new-order')

    def test_issue(self):
        """
        The key and chain are stored under the canonical names, and the
        account is registered on first use.
        """
        issuer = self.make_issuer(email=u'admin@example.com')
        issued = self.successResultOf(
            issuer.issue_cert(u' example.com , www.example.com,'))
        self.assertEqual((u'example.com', u'www.example.com'), issued.names)
        self.assertEqual(
            (u'mailto:admin@example.com',), issuer.account.contact)

        stored = self.successResultOf(self.cert_store.as_dict())
        self.assertEqual([u'example.com,www.example.com'], list(stored))
        [key, leaf, ca] = stored[u'example.com,www.example.com']
        self.assertIsInstance(key, Key)
        self.assertIsInstance(leaf, Certificate)
        assert_that(
            x509.load_pem_x509_certificate(leaf.as_bytes()),
            ValidForName(u'www.example.com'))

    def test_no_names(self):
        """
        A name list that is empty once blanks are dropped fails without
        contacting the server.
        """
        issuer = self.make_issuer()
        for server_names in [u'', u' , ']:
            self.failureResultOf(issuer.issue_cert(server_names), ValueError)
        self.assertEqual([], self.new_orders())
        self.assertEqual({}, self.successResultOf(self.cert_store.as_dict()))

    def test_register_once(self):
        issuer = self.make_issuer()
        self.successResultOf(issuer.start())
        self.successResultOf(issuer.issue_cert(u'example.com'))
        self.successResultOf(issuer.issue_cert(u'example.org'))
        self.assertEqual(
            1,
            len(self.server.requests_to(self.server.base + u'/new-account')))
        self.assertEqual(2, len(self.new_orders()))

    def test_same_names_coalesced(self):
        """
        While a name is being issued for, asking again waits for the same
        issuance.
        """
        provisioner = RecordingHTTP01Provisioner()
        self.http_server(provisioner, challenge_polls=1)
        issuer = self.make_issuer(provisioner=provisioner)
        d1 = issuer.issue_cert(u'example.com')
        d2 = issuer.issue_cert(u'example.com')
        self.assertNoResult(d1)
        self.assertNoResult(d2)
        self.clock.pump([2.0] * 2)
        self.assertIs(self.successResultOf(d1), self.successResultOf(d2))
        self.assertEqual(1, len(self.new_orders()))

    def test_different_names_serialized(self):
        """
        Issuances for different names run one after the other.
        """
        provisioner = RecordingHTTP01Provisioner()
        self.http_server(provisioner, challenge_polls=1)
        issuer = self.make_issuer(provisioner=provisioner)
        d1 = issuer.issue_cert(u'example.com')
        d2 = issuer.issue_cert(u'example.org')
        self.assertEqual(1, len(self.new_orders()))
        self.clock.advance(2.0)
        self.successResultOf(d1)
        self.assertNoResult(d2)
        self.assertEqual(2, len(self.new_orders()))
        self.clock.advance(2.0)
        self.successResultOf(d2)
        stored = self.successResultOf(self.cert_store.as_dict())
        self.assertEqual({u'example.com', u'example.org'}, set(stored))

    def test_cancel(self):
        """
        Cancelling an issuance fails every waiter and stores nothing; the
        next request starts afresh.
        """
        provisioner = RecordingHTTP01Provisioner()
        self.http_server(provisioner, challenge_polls=1)
        issuer = self.make_issuer(provisioner=provisioner)
        d1 = issuer.issue_cert(u'example.com')
        d2 = issuer.issue_cert(u'example.com')
        d1.cancel()
        self.failureResultOf(d1, CancelledError)
        self.failureResultOf(d2, CancelledError)
        self.assertEqual({}, self.successResultOf(self.cert_store.as_dict()))
        self.assertEqual({}, provisioner.served)

        d3 = issuer.issue_cert(u'example.com')
        self.clock.pump([2.0] * 2)
        self.successResultOf(d3)
        self.assertEqual(2, len(self.new_orders()))

    def test_client_deferred(self):
        """
        The client may be given as a Deferred.
        """
        client = self.make_client()
        issuer = self.make_issuer(client=succeed(client))
        self.successResultOf(issuer.issue_cert(u'example.com'))

    def test_client_callable(self):
        """
        The client may be given as a callable returning a Deferred.
        """
        self.make_server()
        issuer = self.make_issuer(client=lambda: Client.from_url(
            self.clock, URL.fromText(self.server.directory_url), ACCOUNT_KEY,
            transport=self.server))
        self.successResultOf(issuer.issue_cert(u'example.com'))

    def test_client_failed(self):
        """
        If the client cannot be created, issuing fails with the same error.
        """
        issuer = self.make_issuer(client=fail(RuntimeError('no client')))
        self.failureResultOf(issuer.issue_cert(u'example.com'), RuntimeError)
        self.failureResultOf(issuer.issue_cert(u'example.com'), RuntimeError)

    def test_unsupported_challenge(self):
        """
        A wildcard cannot be issued with ``http-01``; nothing is stored.
        """
        issuer = self.make_issuer()
        self.failureResultOf(
            issuer.issue_cert(u'*.example.com'), ChallengeUnsupportedError)
        self.assertEqual({}, self.successResultOf(self.cert_store.as_dict()))
        self.assertEqual([], self.provisioner.events)

    def test_wildcard_dns01(self):
        provisioner = RecordingDNS01Provisioner()
        self.dns_server(provisioner)
        issuer = self.make_issuer(provisioner=provisioner)
        self.successResultOf(issuer.issue_cert(u'*.example.com'))
        stored = self.successResultOf(self.cert_store.as_dict())
        self.assertEqual([u'*.example.com'], list(stored))
        self.assertEqual({}, provisioner.records)

    def test_start_registers(self):
        issuer = self.make_issuer(terms_of_service_agreed=True)
        issuer.startService()
        self.assertTrue(issuer.running)
        self.assertEqual(
            1,
            len(self.server.requests_to(self.server.base + u'/new-account')))
        self.assertIsNotNone(issuer.account)

    def test_start_registration_failure(self):
        """
        A failure to register at start up is logged; the service keeps
        running.
        """
        self.make_server(rejected_contact_domains=[u'example.com'])
        issuer = self.make_issuer(email=u'admin@example.com')
        issuer.startService()
        self.assertTrue(issuer.running)
        self.assertIsNone(issuer.account)
        self.assertEqual(1, len(self.flushLoggedErrors(RegistrationError)))

    def test_stop(self):
        """
        Stopping the service stops the client.
        """
        issuer = self.make_issuer()
        self.successResultOf(issuer.start())
        self.successResultOf(issuer.stop())
        self.assertFalse(issuer.running)
        self.assertTrue(self.server.stopped)
