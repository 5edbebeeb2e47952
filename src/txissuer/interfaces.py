# -*- coding: utf-8 -*-
"""
Interface definitions for txissuer.
"""
from zope.interface import Attribute, Interface


class IHTTPTransport(Interface):
    """
    Makes HTTP requests on behalf of the ACME client.

    Every method returns a ``Deferred`` firing with a
    `txissuer.transport.Response` whose body has been read completely.
    """
    def get(url):
        """
        Send a GET request.

        :param str url: The URL to request.
        """

    def head(url):
        """
        Send a HEAD request.

        :param str url: The URL to request.
        """

    def post(url, body, headers):
        """
        Send a POST request.

        :param str url: The URL to request.
        :param bytes body: The request body.
        :param dict headers: Extra request headers, mapping ``bytes`` names to
            ``bytes`` values.
        """

    def stop():
        """
        Cancel any pending request and close persistent connections.

        :rtype: ``Deferred``
        """


class IChallengeProvisioner(Interface):
    """
    Completes ACME challenges of one type out-of-band.

    The actual responder may exist somewhere else (a web server, a DNS
    provider); this interface is merely for an object that knows how to
    configure it.
    """
    challenge_type = Attribute(
        """
        The type of challenge this provisioner is able to complete; for
        example, ``u'http-01'``.
        """)


class IHTTP01Provisioner(IChallengeProvisioner):
    """
    Serves ``http-01`` key authorizations.
    """
    def provision_http(server_name, token, key_authorization):
        """
        Start serving ``key_authorization`` at
        ``http://<server_name>/.well-known/acme-challenge/<token>``.

        :rtype: ``Deferred``
        :return: A deferred firing when the challenge is ready to be verified.
        """

    def teardown_http(server_name, token):
        """
        Stop serving the key authorization for ``token``.

        Must be a noop if nothing is being served for ``token``.
        """


class IDNS01Provisioner(IChallengeProvisioner):
    """
    Publishes ``dns-01`` validation records.
    """
    def provision_dns(record_name, record_value):
        """
        Create a ``TXT`` record.

        :param str record_name: The fully qualified record name, for example
            ``_acme-challenge.example.com``.
        :param str record_value: The record content.

        :rtype: ``Deferred``
        :return: A deferred firing with an opaque handle for `teardown_dns`.
        """

    def teardown_dns(record_handle):
        """
        Delete a record created by `provision_dns`.

        :rtype: ``Deferred``
        """

    def wait_for_propagation(record_name, expected_value):
        """
        Wait until the record is visible in DNS.

        :rtype: ``Deferred``
        :return: A deferred firing once ``record_name`` resolves to a ``TXT``
            record containing ``expected_value``.
        """


class ICertificateStore(Interface):
    """
    A store of certificate keys and chains.
    """
    def get(server_name):
        """
        Retrieve the current PEM objects for the given server name.

        :param str server_name: The server name.

        :raises KeyError: if the given name does not exist in the store.

        :return: ``Deferred[List[:ref:`pem-objects`]]``
        """

    def store(server_name, pem_objects):
        """
        Store PEM objects for the given server name.

        :param str server_name: The server name to update; a comma separated
            list of names for multi-name certificates.
        :param pem_objects: A list of :ref:`pem-objects`; must contain exactly
            one private key, a certificate corresponding to that private key,
            and zero or more chain certificates.

        :rtype: ``Deferred``
        """


__all__ = [
    'IHTTPTransport', 'IChallengeProvisioner', 'IHTTP01Provisioner',
    'IDNS01Provisioner', 'ICertificateStore']
