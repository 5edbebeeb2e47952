from testtools import TestCase
from testtools.tests.matchers.helpers import TestMatchersInterface

from txissuer.test.matchers import ValidForName
from txissuer.test.test_client import CERT_KEY
from txissuer.util import csr_for_names


def _csr(*names):
    return csr_for_names(list(names), CERT_KEY.key)


class ValidForNameTests(TestMatchersInterface, TestCase):
    """
    `~txissuer.test.matchers.ValidForName` matches if a CSR/cert is valid for
    the given name.
    """
    matches_matcher = ValidForName(u'example.com')
    matches_matches = [
        _csr(u'example.com'),
        _csr(u'example.invalid', u'example.com'),
        _csr(u'example.com', u'example.invalid'),
        ]
    matches_mismatches = [
        _csr(u'example.org'),
        _csr(u'example.net', u'example.info'),
        _csr(u'www.example.com'),
        ]

    str_examples = [
        ('ValidForName({!r})'.format(u'example.com'),
         ValidForName(u'example.com')),
        ]
    describe_examples = []
