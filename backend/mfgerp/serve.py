import logging
import os
from typing import Dict, Optional

import uvicorn

logger = logging.getLogger(__name__)


def _ssl_options() -> Dict[str, Optional[str]]:
    certfile = os.getenv("SSL_CERTFILE")
    keyfile = os.getenv("SSL_KEYFILE")

    if not certfile and not keyfile:
        return {}

    options: Dict[str, Optional[str]] = {}
    if certfile:
        options["ssl_certfile"] = certfile
    if keyfile:
        options["ssl_keyfile"] = keyfile
    return options


def _warn_on_multiple_workers(workers: int, reload_enabled: bool) -> None:
    # Item cache and in-process batch locks are per worker.
    if reload_enabled or workers <= 1:
        return
    url = os.getenv("DATABASE_WRITE_URL") or os.getenv("DATABASE_URL") or ""
    if url.startswith("postgresql"):
        logger.info(
            "Running %s workers; ledger writes are serialized per batch by PostgreSQL advisory locks",
            workers,
        )
    else:
        logger.warning(
            "Running %s workers without PostgreSQL; concurrent writes to one batch from different workers are not serialized",
            workers,
        )


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    reload_enabled = os.getenv("RELOAD", "false").lower() in {"1", "true", "yes", "on"}
    log_level = os.getenv("LOG_LEVEL", "info")
    forwarded_allow_ips = os.getenv("FORWARDED_ALLOW_IPS", "*")

    workers = int(os.getenv("WEB_CONCURRENCY", "1"))
    _warn_on_multiple_workers(workers, reload_enabled)

    uvicorn.run(
        "mfgerp.main:app",
        host=host,
        port=port,
        reload=reload_enabled,
        workers=None if reload_enabled else workers,
        log_level=log_level,
        proxy_headers=True,
        forwarded_allow_ips=forwarded_allow_ips,
        **_ssl_options(),
    )


if __name__ == "__main__":
    main()
