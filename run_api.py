"""Launch the negotiation API under uvicorn.

Host, port and reload come from API_HOST, API_PORT and API_RELOAD. TLS is
switched on by TLS_ENABLED with TLS_CERT_PATH / TLS_KEY_PATH.
"""

import os

import uvicorn
from dotenv import load_dotenv
from loguru import logger


def main() -> None:
    load_dotenv()

    from api.security import tls_config

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    options = {
        "reload": os.getenv("API_RELOAD", "false").lower() == "true",
        "log_level": os.getenv("LOG_LEVEL", "info").lower(),
    }
    options.update(tls_config() or {})

    scheme = "https" if "ssl_certfile" in options else "http"
    logger.info(f"Serving negotiator API on {scheme}://{host}:{port}")
    logger.info(f"Join links point at {os.getenv('PUBLIC_BASE_URL', 'http://localhost:8000/join')}")

    uvicorn.run("api.main:app", host=host, port=port, **options)


if __name__ == "__main__":
    main()
