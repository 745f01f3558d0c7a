import logging
import requests

from shared.errors import DnsFailure

logger = logging.getLogger(__name__)

CLOUDFLARE_API = 'https://api.cloudflare.com/client/v4'


class DnsCleanup:
    """Removes the public DNS records that point at a server."""

    def remove_records(self, cname_record_id: str, srv_record_id: str):
        raise NotImplementedError


class NullDnsCleanup(DnsCleanup):
    """Used when no DNS provider is configured."""

    def remove_records(self, cname_record_id: str, srv_record_id: str):
        logger.debug("DNS cleanup not configured; nothing to remove")


class CloudflareDnsCleanup(DnsCleanup):
    def __init__(self, api_token: str, zone_id: str, timeout: int = 10):
        self.api_token = api_token
        self.zone_id = zone_id
        self.timeout = timeout

    def _delete_record(self, record_id: str):
        url = f"{CLOUDFLARE_API}/zones/{self.zone_id}/dns_records/{record_id}"
        try:
            resp = requests.delete(
                url,
                headers={'Authorization': f'Bearer {self.api_token}'},
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise DnsFailure(f"Failed to remove DNS record {record_id}", e) from e

        # Already gone counts as removed.
        if resp.status_code == 404:
            logger.info(f"DNS record {record_id} already removed")
            return
        if resp.status_code >= 400:
            raise DnsFailure(f"Failed to remove DNS record {record_id}: HTTP {resp.status_code}")

    def remove_records(self, cname_record_id: str, srv_record_id: str):
        for record_id in (cname_record_id, srv_record_id):
            if record_id:
                self._delete_record(record_id)
                logger.info(f"Removed DNS record {record_id}")


def dns_cleanup_from_config(config) -> DnsCleanup:
    token = config.get('CLOUDFLARE_API_TOKEN')
    zone_id = config.get('CLOUDFLARE_ZONE_ID')
    if token and zone_id:
        return CloudflareDnsCleanup(token, zone_id)
    return NullDnsCleanup()
