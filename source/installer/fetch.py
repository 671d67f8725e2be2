import requests
from pydantic import ValidationError

from installer import log, settings
from installer.errors import InstallerError
from installer.models import CloudInitData, InstallerConfig


def fetch_url(url: str) -> str:
    try:
        resp = requests.get(url, timeout=settings.FETCH_TIMEOUT_S)
        resp.raise_for_status()
    except requests.RequestException as e:
        raise InstallerError(f"GET {url} failed: {e}") from e
    return resp.text


def fetch_installer_config(config_url: str) -> InstallerConfig:
    if not config_url:
        raise InstallerError("config_url not found in kernel command line")
    log.info(f"Config URL: {config_url}")
    body = fetch_url(config_url)
    try:
        return InstallerConfig.model_validate_json(body)
    except ValidationError as e:
        raise InstallerError(f"failed to parse installer config: {e}") from e


def fetch_cloud_init(base_url: str) -> CloudInitData:
    """The three NoCloud documents, kept in memory until the target root exists."""
    log.info("Fetching cloud-init configuration...")
    docs = {}
    for kind in ("meta-data", "user-data", "network-config"):
        log.info(f"Fetching {kind}...")
        try:
            docs[kind] = fetch_url(f"{base_url}/{kind}")
        except InstallerError as e:
            raise InstallerError(f"failed to fetch {kind}: {e}") from e
        log.info(f"{kind} fetched ({len(docs[kind].encode())} bytes)")
    return CloudInitData(
        meta_data=docs["meta-data"],
        user_data=docs["user-data"],
        network_config=docs["network-config"],
    )
