"""
ACME protocol messages.

The resources an ACME server hands out, parsed from the server's JSON and
never cached beyond one issuance flow.
"""
import josepy as jose

from txissuer import fields


STATUS_PENDING = u'pending'
STATUS_PROCESSING = u'processing'
STATUS_READY = u'ready'
STATUS_VALID = u'valid'
STATUS_INVALID = u'invalid'

IDENTIFIER_DNS = u'dns'

CHALLENGE_HTTP01 = u'http-01'
CHALLENGE_DNS01 = u'dns-01'


class Problem(jose.JSONObjectWithFields):
    """
    An ACME problem document (RFC 7807).
    """
    typ = jose.Field(u'type', default=u'about:blank', omitempty=True)
    detail = jose.Field(u'detail', omitempty=True)
    status = jose.Field(u'status', omitempty=True)
    subproblems = jose.Field(u'subproblems', default=(), omitempty=True)

    @subproblems.decoder
    def subproblems(value):
        return tuple(Problem.from_json(sub) for sub in value)

    @property
    def code(self):
        """
        The error code, without the ``urn:ietf:params:acme:error:`` (or older
        ``urn:acme:error:``) namespace.
        """
        return self.typ.split(u':')[-1]

    def __str__(self):
        return u'{} :: {}'.format(self.typ, self.detail)


class Identifier(jose.JSONObjectWithFields):
    """
    An identifier to be authorized; only DNS names are supported.
    """
    typ = jose.Field(u'type', default=IDENTIFIER_DNS)
    value = jose.Field(u'value')

    @property
    def wildcard(self):
        return self.value.startswith(u'*.')


def fqdn_identifier(fqdn):
    """
    Construct an identifier from an FQDN.

    Trivial implementation, just saves on typing.

    :param str fqdn: The domain name.

    :rtype: `Identifier`
    """
    return Identifier(value=fqdn, typ=IDENTIFIER_DNS)


class _Located(jose.JSONObjectWithFields):
    """
    A resource whose URL comes from the response that carried it rather than
    from its body.
    """
    url = jose.Field(u'url', omitempty=True)

    @classmethod
    def from_json(cls, jobj, url=None):
        resource = super(_Located, cls).from_json(jobj)
        if url is not None:
            resource = resource.update(url=url)
        return resource


class DirectoryMeta(jose.JSONObjectWithFields):
    terms_of_service = jose.Field(u'termsOfService', omitempty=True)
    website = jose.Field(u'website', omitempty=True)
    caa_identities = jose.Field(u'caaIdentities', default=(), omitempty=True)
    external_account_required = jose.Field(
        u'externalAccountRequired', default=False, omitempty=True)


class Directory(jose.JSONObjectWithFields):
    """
    The ACME directory: where to find each of the server's resources.
    """
    new_nonce = jose.Field(u'newNonce')
    new_account = jose.Field(u'newAccount')
    new_order = jose.Field(u'newOrder')
    revoke_cert = jose.Field(u'revokeCert', omitempty=True)
    key_change = jose.Field(u'keyChange', omitempty=True)
    meta = jose.Field(
        u'meta', default=DirectoryMeta(), omitempty=True,
        decoder=DirectoryMeta.from_json)

    @property
    def terms_of_service(self):
        return self.meta.terms_of_service

    @classmethod
    def from_json(cls, jobj):
        if not isinstance(jobj, dict):
            raise jose.DeserializationError('Directory is not a JSON object')
        return super(Directory, cls).from_json(jobj)


class Account(_Located):
    """
    An ACME account; ``url`` is the key-id (``kid``) used to sign requests.
    """
    status = jose.Field(u'status')
    contact = jose.Field(u'contact', default=(), omitempty=True)
    orders = jose.Field(u'orders', omitempty=True)


class Challenge(jose.JSONObjectWithFields):
    """
    One way of proving control over an identifier.
    """
    typ = jose.Field(u'type')
    url = jose.Field(u'url')
    status = jose.Field(u'status')
    token = jose.Field(u'token', omitempty=True)
    error = jose.Field(
        u'error', omitempty=True, decoder=Problem.from_json)


class Authorization(_Located):
    """
    The server's record of our proof of control over one identifier.
    """
    identifier = jose.Field(u'identifier', decoder=Identifier.from_json)
    status = jose.Field(u'status')
    challenges = fields.objects(Challenge, u'challenges')
    expires = fields.rfc3339(u'expires', omitempty=True)
    wildcard = jose.Field(
        u'wildcard', default=False, omitempty=True, decoder=bool)

    @property
    def server_name(self):
        """
        The name being authorized, with the ``*.`` prefix of wildcard orders.
        """
        if self.wildcard and not self.identifier.wildcard:
            return u'*.' + self.identifier.value
        return self.identifier.value


class Order(_Located):
    """
    A request for a certificate covering a set of identifiers.
    """
    status = jose.Field(u'status')
    identifiers = fields.objects(Identifier, u'identifiers')
    authorizations = jose.Field(u'authorizations')
    finalize = jose.Field(u'finalize')
    certificate = jose.Field(u'certificate', omitempty=True)
    expires = fields.rfc3339(u'expires', omitempty=True)
    error = jose.Field(
        u'error', omitempty=True, decoder=Problem.from_json)


__all__ = [
    'Account', 'Authorization', 'Challenge', 'Directory', 'DirectoryMeta',
    'Identifier', 'Order', 'Problem', 'fqdn_identifier', 'STATUS_PENDING',
    'STATUS_PROCESSING', 'STATUS_READY', 'STATUS_VALID', 'STATUS_INVALID',
    'CHALLENGE_HTTP01', 'CHALLENGE_DNS01', 'IDENTIFIER_DNS']
