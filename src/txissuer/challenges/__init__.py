from ._dnsutil import lookup_txt, wait_for_txt_record
from ._http import HTTP01Responder, WebrootHTTP01Provisioner


try:
    from ._libcloud import LibcloudDNSProvisioner
except ImportError:
    # libcloud may not be installed
    pass


__all__ = ['HTTP01Responder', 'LibcloudDNSProvisioner',
           'WebrootHTTP01Provisioner', 'lookup_txt', 'wait_for_txt_record']
