"""
``txissuer.interfaces.ICertificateStore`` implementations.
"""
import attr
import pem
from twisted.internet.defer import maybeDeferred
from twisted.python.filepath import FilePath
from zope.interface import implementer

from txissuer.interfaces import ICertificateStore
from txissuer.util import domain_filename


def _first_name(server_name):
    return server_name.split(u',')[0].strip()


@attr.s
@implementer(ICertificateStore)
class DirectoryStore(object):
    """
    A certificate store that keeps certificates in a directory on disk.

    The key and the chain for ``*.example.com`` (or for ``*.example.com,
    example.com``) live in ``wildcard-example-com.key`` and
    ``wildcard-example-com-cert.pem``.
    """
    path = attr.ib(
        converter=lambda p: p if isinstance(p, FilePath) else FilePath(p))

    def _paths(self, server_name):
        base = domain_filename(_first_name(server_name))
        return (
            self.path.child(base + u'.key'),
            self.path.child(base + u'-cert.pem'))

    def _get(self, server_name):
        """
        Synchronously retrieve an entry.
        """
        key_path, cert_path = self._paths(server_name)
        if not (key_path.isfile() and cert_path.isfile()):
            raise KeyError(server_name)
        return pem.parse(key_path.getContent()) + pem.parse(
            cert_path.getContent())

    def get(self, server_name):
        return maybeDeferred(self._get, server_name)

    def _store(self, server_name, pem_objects):
        keys = [o for o in pem_objects if isinstance(o, pem.Key)]
        certs = [o for o in pem_objects if isinstance(o, pem.Certificate)]
        if len(keys) != 1 or not certs:
            raise ValueError(
                'Expected one key and at least one certificate, got {} '
                'and {}'.format(len(keys), len(certs)))
        if not self.path.isdir():
            self.path.makedirs(ignoreExistingDirectory=True)
        key_path, cert_path = self._paths(server_name)
        key_path.setContent(keys[0].as_bytes())
        key_path.chmod(0o600)
        cert_path.setContent(b''.join(c.as_bytes() for c in certs))

    def store(self, server_name, pem_objects):
        return maybeDeferred(self._store, server_name, pem_objects)


__all__ = ['DirectoryStore']
