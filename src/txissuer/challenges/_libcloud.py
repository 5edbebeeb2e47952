from threading import Thread

import attr
from libcloud.dns.providers import get_driver
from twisted._threads import pool
from twisted.internet.defer import Deferred
from twisted.names import client
from twisted.python.failure import Failure
from zope.interface import implementer

from txissuer.challenges._dnsutil import wait_for_txt_record
from txissuer.errors import NotInZone, ZoneNotFound
from txissuer.interfaces import IDNS01Provisioner
from txissuer.util import const


def _daemon_thread(*a, **kw):
    """
    Create a `threading.Thread`, but always set ``daemon``.
    """
    thread = Thread(*a, **kw)
    thread.daemon = True
    return thread


def _defer_to_worker(deliver, worker, work, *args, **kwargs):
    """
    Run a task in a worker, delivering the result as a ``Deferred`` in the
    reactor thread.
    """
    deferred = Deferred()

    def wrapped_work():
        try:
            result = work(*args, **kwargs)
        except BaseException:
            f = Failure()
            deliver(lambda: deferred.errback(f))
        else:
            deliver(lambda: deferred.callback(result))
    worker.do(wrapped_work)
    return deferred


def _split_zone(record_name, zone_name):
    """
    Split the zone portion off from a DNS label.

    :param str record_name: The full DNS label.
    :param str zone_name: The zone name suffix.
    """
    record_name = record_name.rstrip(u'.')
    zone_name = zone_name.rstrip(u'.')
    if not (record_name == zone_name or
            record_name.endswith(u'.' + zone_name)):
        raise NotInZone(server_name=record_name, zone_name=zone_name)
    return record_name[:-len(zone_name)].rstrip(u'.')


def _find_zone(driver, zone_name, record_name):
    """
    Find the zone a record belongs in: the configured one, or else the
    longest zone at the provider that is a suffix of the record name.
    """
    if zone_name is None:
        zones = sorted(
            (z for z
             in driver.list_zones()
             if record_name.rstrip(u'.')
                .endswith(u'.' + z.domain.rstrip(u'.'))),
            key=lambda z: len(z.domain),
            reverse=True)
        if len(zones) == 0:
            raise NotInZone(server_name=record_name, zone_name=None)
    else:
        zones = [
            z for z
            in driver.list_zones()
            if z.domain.rstrip(u'.') == zone_name.rstrip(u'.')]
        if len(zones) == 0:
            raise ZoneNotFound(zone_name=zone_name)
    return zones[0]


def _get_existing(driver, zone_name, record_name, record_value):
    """
    Get existing validation records.
    """
    zone = _find_zone(driver, zone_name, record_name)
    subdomain = _split_zone(record_name, zone.domain)
    existing = [
        record for record
        in zone.list_records()
        if record.name == subdomain and
        record.type == 'TXT' and
        record.data == record_value]
    return zone, existing, subdomain


@attr.s(hash=False)
@implementer(IDNS01Provisioner)
class LibcloudDNSProvisioner(object):
    """
    A ``dns-01`` provisioner using libcloud.

    ..  warning:: Some libcloud backends are broken with regard to TXT records
        at the time of writing; the Route 53 backend, for example. This makes
        them unusable with this provisioner.

    ..  note:: This implementation relies on invoking libcloud in a thread, so
        may not be entirely production quality.
    """
    challenge_type = u'dns-01'

    _reactor = attr.ib()
    _thread_pool = attr.ib()
    _driver = attr.ib()
    _resolver = attr.ib()
    zone_name = attr.ib(default=None)
    propagation_interval = attr.ib(default=5.0)
    propagation_timeout = attr.ib(default=600.0)

    @classmethod
    def create(cls, reactor, driver_name, username, password, zone_name=None,
               resolver=None, propagation_timeout=600.0):
        """
        Create a provisioner.

        :param reactor: The Twisted reactor to use for threading support.
        :param str driver_name: The name of the libcloud DNS driver to use.
        :param str username: The username to authenticate with (the meaning of
            this is driver-specific).
        :param str password: The username to authenticate with (the meaning of
            this is driver-specific).
        :param str zone_name: The zone name to respond in, or ``None`` to
            automatically detect zones.  Usually auto-detection should be fine,
            unless restricting responses to a single specific zone is desired.
        :param resolver: The ``IResolver`` used to check that records have
            propagated, or ``None`` for the system resolver.
        :param float propagation_timeout: The time, in seconds, to allow for
            the DNS provider to propagate record changes.
        """
        if resolver is None:
            resolver = client.createResolver(reactor=reactor)
        return cls(
            reactor=reactor,
            thread_pool=pool(const(1), threadFactory=_daemon_thread),
            driver=get_driver(driver_name)(username, password),
            resolver=resolver,
            zone_name=zone_name,
            propagation_timeout=propagation_timeout)

    def _defer(self, f, *args):
        """
        Run a function in our private thread pool.
        """
        return _defer_to_worker(
            self._reactor.callFromThread, self._thread_pool, f, *args)

    def provision_dns(self, record_name, record_value):
        """
        Install a TXT challenge response record, unless an identical one
        exists already.

        :return: A deferred firing with the libcloud ``Record``.
        """
        _driver = self._driver

        def _go():
            zone, existing, subdomain = _get_existing(
                _driver, self.zone_name, record_name, record_value)
            if existing:
                return existing[0]
            return zone.create_record(
                name=subdomain, type='TXT', data=record_value)
        return self._defer(_go)

    def teardown_dns(self, record_handle):
        """
        Remove a TXT challenge response record.
        """
        return self._defer(record_handle.delete)

    def wait_for_propagation(self, record_name, expected_value):
        return wait_for_txt_record(
            self._resolver, self._reactor, record_name, expected_value,
            interval=self.propagation_interval,
            timeout=self.propagation_timeout)


__all__ = ['LibcloudDNSProvisioner']
