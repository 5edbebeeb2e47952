"""
``http-01`` challenge implementations.
"""
import attr
from twisted.python.filepath import FilePath
from twisted.web.resource import Resource
from twisted.web.static import Data
from zope.interface import implementer

from txissuer.interfaces import IHTTP01Provisioner


@implementer(IHTTP01Provisioner)
class HTTP01Responder(object):
    """
    An ``http-01`` provisioner serving key authorizations from a
    ``twisted.web`` resource.

    Mount `resource` at ``/.well-known/acme-challenge`` on the site answering
    for the names being validated.
    """
    challenge_type = u'http-01'

    def __init__(self):
        self.resource = Resource()

    def provision_http(self, server_name, token, key_authorization):
        """
        Add the child resource.
        """
        self.resource.putChild(
            token.encode('ascii'),
            Data(key_authorization.encode('ascii'), 'text/plain'))

    def teardown_http(self, server_name, token):
        """
        Remove the child resource.
        """
        encoded_token = token.encode('ascii')
        if self.resource.getStaticEntity(encoded_token) is not None:
            self.resource.delEntity(encoded_token)


@implementer(IHTTP01Provisioner)
@attr.s(hash=False)
class WebrootHTTP01Provisioner(object):
    """
    An ``http-01`` provisioner writing key authorizations below the document
    root of some other web server.

    :param webroot: The document root, as a ``FilePath`` or a path.
    """
    challenge_type = u'http-01'

    webroot = attr.ib(
        converter=lambda p: p if isinstance(p, FilePath) else FilePath(p))

    def _challenge_dir(self):
        return self.webroot.child(u'.well-known').child(u'acme-challenge')

    def provision_http(self, server_name, token, key_authorization):
        """
        Write ``<webroot>/.well-known/acme-challenge/<token>``.
        """
        challenge_dir = self._challenge_dir()
        if not challenge_dir.isdir():
            challenge_dir.makedirs(ignoreExistingDirectory=True)
        challenge_dir.child(token).setContent(
            key_authorization.encode('ascii'))

    def teardown_http(self, server_name, token):
        """
        Remove the token file, if it is there.
        """
        path = self._challenge_dir().child(token)
        if path.exists():
            path.remove()


__all__ = ['HTTP01Responder', 'WebrootHTTP01Provisioner']
