"""
JSON fields for ACME messages.
"""
import josepy as jose
import pyrfc3339


class RFC3339Field(jose.Field):
    """
    A timestamp, as an aware `~datetime.datetime` in Python and an RFC 3339
    string in JSON.
    """
    @classmethod
    def default_encoder(cls, value):
        return pyrfc3339.generate(value)

    @classmethod
    def default_decoder(cls, value):
        try:
            return pyrfc3339.parse(value)
        except (TypeError, ValueError) as error:
            raise jose.DeserializationError(error)


def rfc3339(json_name, omitempty=False):
    return RFC3339Field(json_name, omitempty=omitempty)


def objects(cls, json_name, omitempty=False):
    """
    A field holding a list of ``cls`` objects, decoded to a tuple.
    """
    def decode(value):
        if not isinstance(value, (list, tuple)):
            raise jose.DeserializationError(
                'Expected a list for {!r}'.format(json_name))
        return tuple(cls.from_json(item) for item in value)
    return jose.Field(
        json_name, default=(), omitempty=omitempty, decoder=decode)


__all__ = ['RFC3339Field', 'objects', 'rfc3339']
