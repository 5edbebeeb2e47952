"""
Exception types for txissuer.
"""
import attr


def _detail(problem):
    """
    Get the ``detail`` text of a problem document, if there is one.
    """
    if problem is None:
        return None
    return problem.detail


@attr.s(auto_exc=True)
class KeyLoadError(ValueError):
    """
    A key could not be loaded: the file is missing, malformed, or holds a key
    of an unsupported or unexpected type.
    """
    message = attr.ib()

    def __str__(self):
        return self.message


@attr.s(auto_exc=True)
class DirectoryUnreachableError(Exception):
    """
    The ACME directory could not be fetched, or is not a usable directory.
    """
    url = attr.ib()
    reason = attr.ib()

    def __str__(self):
        return 'Unable to use ACME directory {0.url!r}: {0.reason}'.format(
            self)


class ServerError(Exception):
    """
    The server answered with an ACME problem document.

    Wraps the parsed `~txissuer.messages.Problem` and the response it came
    from, so that callers can look at the headers (for example the fresh
    ``Replay-Nonce``).
    """
    def __init__(self, problem, response):
        Exception.__init__(self, problem, response)
        self.problem = problem
        self.response = response

    @property
    def code(self):
        return self.problem.code

    def __repr__(self):
        return 'ServerError({!r})'.format(self.problem)

    def __str__(self):
        return str(self.problem)


@attr.s(auto_exc=True)
class ClientError(Exception):
    """
    The server answered in a way the protocol does not allow: an unexpected
    status code, content type or body.
    """
    message = attr.ib()

    def __str__(self):
        return self.message


@attr.s(auto_exc=True)
class RegistrationError(Exception):
    """
    The CA refused to register (or update) the account.
    """
    detail = attr.ib()
    problem = attr.ib(default=None)

    def __str__(self):
        return 'Account registration failed: {}'.format(self.detail)


@attr.s(auto_exc=True)
class NonceUnavailableError(Exception):
    """
    The server did not hand out a ``Replay-Nonce``.
    """
    url = attr.ib()

    def __str__(self):
        return 'No Replay-Nonce returned by {!r}'.format(self.url)


@attr.s(auto_exc=True)
class BadNonceError(Exception):
    """
    A request was still rejected with ``badNonce`` after being retried with a
    fresh nonce.
    """
    url = attr.ib()
    problem = attr.ib()

    @property
    def detail(self):
        return _detail(self.problem)

    def __str__(self):
        return 'Nonce rejected twice for {0.url!r}: {0.detail}'.format(self)


@attr.s(auto_exc=True)
class ChallengeUnsupportedError(Exception):
    """
    The preferred challenge type cannot be used for an identifier: it is not
    implemented, not offered by the CA, or not allowed for a wildcard name.
    """
    identifier = attr.ib()
    challenge_type = attr.ib()
    reason = attr.ib()

    def __str__(self):
        return 'Cannot use {0.challenge_type!r} for {0.identifier!r}: ' \
            '{0.reason}'.format(self)


@attr.s(auto_exc=True)
class ChallengeFailedError(Exception):
    """
    The CA resolved a challenge to a status other than ``valid``.
    """
    identifier = attr.ib()
    status = attr.ib()
    problem = attr.ib(default=None)

    @property
    def detail(self):
        return _detail(self.problem)

    def __str__(self):
        return 'Challenge for {0.identifier!r} is {0.status}: {0.detail}' \
            .format(self)


@attr.s(auto_exc=True)
class PollTimeoutError(Exception):
    """
    We gave up waiting for a resource to reach a final status.
    """
    url = attr.ib()
    status = attr.ib()
    waited = attr.ib()

    def __str__(self):
        return 'Gave up on {0.url!r} after {0.waited:.1f}s ' \
            '(last status {0.status!r})'.format(self)


@attr.s(auto_exc=True)
class OrderExpiredError(PollTimeoutError):
    """
    The order expired while we were waiting on one of its resources.
    """
    expires = attr.ib(default=None)

    def __str__(self):
        return 'Order expired at {0.expires} while waiting on {0.url!r} ' \
            '(last status {0.status!r})'.format(self)


@attr.s(auto_exc=True)
class UnexpectedOrderStatusError(Exception):
    """
    An order is not in the status the protocol requires at this point.
    """
    url = attr.ib()
    expected = attr.ib()
    status = attr.ib()
    problem = attr.ib(default=None)

    @property
    def detail(self):
        return _detail(self.problem)

    def __str__(self):
        return 'Order {0.url!r} is {0.status!r}, expected ' \
            '{0.expected!r}'.format(self)


@attr.s(auto_exc=True)
class NotInZone(ValueError):
    """
    The given domain name is not in the configured zone.
    """
    server_name = attr.ib()
    zone_name = attr.ib()

    def __str__(self):
        return repr(self)


@attr.s(auto_exc=True)
class ZoneNotFound(ValueError):
    """
    The configured zone was not found in the zones at the configured provider.
    """
    zone_name = attr.ib()

    def __str__(self):
        return repr(self)


__all__ = [
    'KeyLoadError', 'DirectoryUnreachableError', 'ServerError', 'ClientError',
    'RegistrationError', 'NonceUnavailableError', 'BadNonceError',
    'ChallengeUnsupportedError', 'ChallengeFailedError', 'PollTimeoutError',
    'OrderExpiredError', 'UnexpectedOrderStatusError', 'NotInZone',
    'ZoneNotFound']
