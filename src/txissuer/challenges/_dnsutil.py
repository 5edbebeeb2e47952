"""
DNS propagation checks for ``dns-01``.
"""
from twisted.internet.defer import TimeoutError, inlineCallbacks
from twisted.internet.task import deferLater
from twisted.logger import Logger
from twisted.names import dns
from twisted.names.error import DomainError

from txissuer.errors import PollTimeoutError


log = Logger()


def lookup_txt(resolver, name):
    """
    Look up the ``TXT`` values of a name.

    A missing name, or a query that timed out, yields no values.

    :param resolver: A ``twisted.internet.interfaces.IResolver``.

    :rtype: ``Deferred[List[str]]``
    """
    def cb_values(result):
        answers, authority, additional = result
        return [
            b''.join(answer.payload.data).decode('utf-8')
            for answer in answers
            if answer.type == dns.TXT]

    def eb_missing(f):
        f.trap(DomainError, TimeoutError)
        log.debug(u'No TXT record for {name} yet: {error}',
                  name=name, error=f.value)
        return []
    return (
        resolver.lookupText(name)
        .addCallbacks(cb_values, eb_missing))


@inlineCallbacks
def wait_for_txt_record(resolver, clock, name, value, interval=5.0,
                        timeout=600.0):
    """
    Wait until ``name`` has a ``TXT`` record containing ``value``.

    :param resolver: A ``twisted.internet.interfaces.IResolver``.
    :param clock: The ``IReactorTime`` implementation to use.
    :param str name: The record name.
    :param str value: The expected record value.
    :param float interval: Seconds between lookups.
    :param float timeout: Seconds before giving up.

    :raises PollTimeoutError: If the record does not show up in time.
    """
    started = clock.seconds()
    while True:
        values = yield lookup_txt(resolver, name)
        if value in values:
            return
        waited = clock.seconds() - started
        if waited >= timeout:
            raise PollTimeoutError(url=name, status=u'missing', waited=waited)
        yield deferLater(clock, interval, lambda: None)


__all__ = ['lookup_txt', 'wait_for_txt_record']
