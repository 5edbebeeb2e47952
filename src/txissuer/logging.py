"""
Eliot message and action definitions.
"""
from operator import methodcaller

from eliot import ActionType, Field, MessageType, fields

NONCE = Field.for_types(u'nonce', [str], u'A nonce value')

KID = Field.for_types(u'kid', [str, None], u'The account key-id, if known')

CONTENT_TYPE = Field.for_types(
    u'content_type', [str, None], u'Content-Type header field')

LOG_JWS_SIGN = ActionType(
    u'txissuer:jws:sign',
    fields(NONCE, KID, key_type=str, alg=str, url=str),
    fields(),
    u'Signing a message with JWS')

LOG_JWS_GET = ActionType(
    u'txissuer:jws:http:get',
    fields(url=str),
    fields(),
    u'A JWSClient GET request')

LOG_JWS_POST = ActionType(
    u'txissuer:jws:http:post',
    fields(url=str),
    fields(),
    u'A JWSClient POST request')

LOG_JWS_BAD_NONCE = MessageType(
    u'txissuer:jws:bad-nonce',
    fields(url=str, detail=str),
    u'A request was rejected for its nonce and will be retried')

LOG_HTTP_REQUEST = ActionType(
    u'txissuer:http:request',
    fields(method=str, url=str),
    fields(CONTENT_TYPE, code=int),
    u'An HTTP request')

LOG_JWS_CHECK_RESPONSE = ActionType(
    u'txissuer:jws:http:check-response',
    fields(Field.for_types(u'response_content_type',
                           [str, None],
                           u'Content-Type header field'),
           expected_content_type=str,
           code=int),
    fields(),
    u'Checking a JWSClient response')

LOG_NONCE_TAKE = ActionType(
    u'txissuer:nonce:take',
    fields(cached=bool),
    fields(NONCE),
    u'Consuming a nonce')

LOG_NONCE_OBSERVE = MessageType(
    u'txissuer:nonce:observe',
    fields(NONCE),
    u'Caching a nonce from a response')

DIRECTORY = Field(u'directory', methodcaller('to_json'), u'An ACME directory')

URL = Field(u'url', methodcaller('asText'), u'A URL object')

LOG_ACME_CONSUME_DIRECTORY = ActionType(
    u'txissuer:acme:client:from-url',
    fields(URL, key_type=str, alg=str),
    fields(DIRECTORY),
    u'Creating an ACME client from a remote directory')

LOG_ACME_REGISTER = ActionType(
    u'txissuer:acme:client:registration:create',
    fields(Field.for_types(u'contact', [list], u'Contact URIs'),
           terms_of_service_agreed=bool),
    fields(Field(u'account',
                 methodcaller('to_json'),
                 u'The resulting account')),
    u'Registering with an ACME server')

LOG_ACME_UPDATE_REGISTRATION = ActionType(
    u'txissuer:acme:client:registration:update',
    fields(Field.for_types(u'contact', [list], u'Contact URIs'),
           uri=str),
    fields(),
    u'Updating the contacts of an existing account')

LOG_ACME_CREATE_ORDER = ActionType(
    u'txissuer:acme:client:order:create',
    fields(Field.for_types(u'names', [list], u'The requested names')),
    fields(Field(u'order',
                 methodcaller('to_json'),
                 u'The new order')),
    u'Placing an order')

LOG_ACME_FETCH_AUTHORIZATION = ActionType(
    u'txissuer:acme:client:authorization:fetch',
    fields(url=str),
    fields(Field(u'authorization',
                 methodcaller('to_json'),
                 u'The authorization')),
    u'Fetching an authorization')

LOG_ACME_ANSWER_CHALLENGE = ActionType(
    u'txissuer:acme:client:challenge:answer',
    fields(Field(u'challenge',
                 methodcaller('to_json'),
                 u'The challenge being answered')),
    fields(Field(u'challenge',
                 methodcaller('to_json'),
                 u'The updated challenge')),
    u'Telling the server a challenge is ready to be validated')

LOG_ACME_POLL = ActionType(
    u'txissuer:acme:client:poll',
    fields(url=str),
    fields(status=str),
    u'Fetching the current state of a resource')

LOG_ACME_FINALIZE = ActionType(
    u'txissuer:acme:client:order:finalize',
    fields(url=str),
    fields(status=str),
    u'Submitting the CSR for an order')

LOG_ACME_FETCH_CERTIFICATE = ActionType(
    u'txissuer:acme:client:certificate:fetch',
    fields(url=str),
    fields(length=int),
    u'Downloading a certificate chain')


__all__ = [
    'LOG_JWS_SIGN', 'LOG_JWS_GET', 'LOG_JWS_POST',
    'LOG_JWS_BAD_NONCE', 'LOG_HTTP_REQUEST', 'LOG_JWS_CHECK_RESPONSE',
    'LOG_NONCE_TAKE', 'LOG_NONCE_OBSERVE', 'LOG_ACME_CONSUME_DIRECTORY',
    'LOG_ACME_REGISTER', 'LOG_ACME_UPDATE_REGISTRATION',
    'LOG_ACME_CREATE_ORDER', 'LOG_ACME_FETCH_AUTHORIZATION',
    'LOG_ACME_ANSWER_CHALLENGE', 'LOG_ACME_POLL', 'LOG_ACME_FINALIZE',
    'LOG_ACME_FETCH_CERTIFICATE']
