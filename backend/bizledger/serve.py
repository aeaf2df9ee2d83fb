import logging
import os
from typing import Dict, Optional

import uvicorn

logger = logging.getLogger(__name__)


def _ssl_options() -> Dict[str, Optional[str]]:
    options: Dict[str, Optional[str]] = {}
    for env_name, option in (
        ("SSL_CERTFILE", "ssl_certfile"),
        ("SSL_KEYFILE", "ssl_keyfile"),
        ("SSL_CA_CERTS", "ssl_ca_certs"),
        ("SSL_KEYFILE_PASSWORD", "ssl_keyfile_password"),
    ):
        value = os.getenv(env_name)
        if value:
            options[option] = value
    return options


def _truthy(value: str) -> bool:
    return value.lower() in {"1", "true", "yes", "on"}


def _proxy_options() -> Dict[str, object]:
    """
    Take client addresses from X-Forwarded-For only when TRUST_FORWARDED_FOR
    is set, and then only from the proxies in FORWARDED_ALLOW_IPS.

    Rate limits key on the client address, so without a trusted proxy the
    header must be ignored.
    """
    if not _truthy(os.getenv("TRUST_FORWARDED_FOR", "false")):
        return {"proxy_headers": False}
    return {
        "proxy_headers": True,
        "forwarded_allow_ips": os.getenv("FORWARDED_ALLOW_IPS", "127.0.0.1"),
    }


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    log_level = os.getenv("LOG_LEVEL", "info")
    logging.basicConfig(level=log_level.upper())

    ssl = _ssl_options()
    logger.info("starting bizledger api on %s:%s (tls=%s)", host, port, bool(ssl))
    uvicorn.run(
        "bizledger.main:app",
        host=host,
        port=port,
        reload=_truthy(os.getenv("RELOAD", "false")),
        log_level=log_level,
        **_proxy_options(),
        **ssl,
    )


if __name__ == "__main__":
    main()
