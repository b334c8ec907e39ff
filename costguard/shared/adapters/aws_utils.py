import aioboto3
from typing import Any, Dict, Optional
from botocore.config import Config as BotoConfig

# Standardized boto config with timeouts to prevent indefinite hangs.
# A single botocore attempt: AWSAdapter retries throttling through tenacity.
DEFAULT_BOTO_CONFIG = BotoConfig(
    read_timeout=30,
    connect_timeout=10,
    retries={"max_attempts": 1, "mode": "standard"}
)


def get_boto_session() -> aioboto3.Session:
    """Returns a centralized aioboto3 session (credentials from the default chain)."""
    return aioboto3.Session()


def client_kwargs(service_name: str, region: str, endpoint_url: Optional[str] = None) -> Dict[str, Any]:
    """Keyword arguments for `session.client(...)`."""
    kwargs: Dict[str, Any] = {
        "service_name": service_name,
        "region_name": region,
        "config": DEFAULT_BOTO_CONFIG,
    }
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return kwargs
