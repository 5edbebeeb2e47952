import os
import codecs
import re
from setuptools import setup, find_packages

HERE = os.path.abspath(os.path.dirname(__file__))


def read(*parts):
    with codecs.open(os.path.join(HERE, *parts), 'rb', 'utf-8') as f:
        return f.read()


def version():
    match = re.search(
        r"^__version__ = ['\"]([^'\"]*)['\"]",
        read('src', 'txissuer', '__init__.py'), re.M)
    return match.group(1)


setup(
    version=version(),
    name='txissuer',
    description='ACME certificate issuance core for Twisted',
    license='Expat',
    long_description=read('README.rst'),
    packages=find_packages(where='src'),
    package_dir={'': 'src'},
    zip_safe=True,
    python_requires='>=3.8',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Framework :: Twisted',
        'Intended Audience :: Developers',
        'Natural Language :: English',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: Implementation :: CPython',
        'Programming Language :: Python :: Implementation :: PyPy',
        'Topic :: Software Development :: Libraries :: Python Modules',
        ],
    install_requires=[
        'attrs>=21.3.0',
        'cryptography>=39.0',
        'eliot>=1.13.0',
        'josepy>=1.1.0',
        'pem>=16.1.0',
        'pyrfc3339>=1.0',
        'treq>=20.9.0',
        'twisted[tls]>=21.2.0',
        'zope.interface',
        ],
    extras_require={
        'libcloud': [
            'apache-libcloud',
        ],
        'test': [
            'apache-libcloud',
            'fixtures>=1.4.0',
            'hypothesis>=5.0.0',
            'service_identity>=23.1.0',
            'testtools>=2.4.0',
            ],
        },
    )
