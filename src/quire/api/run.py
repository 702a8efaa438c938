import uvicorn

from quire.core.config import get_settings


def main():  # pragma: no cover
    """Serve the API with a single uvicorn process.

    Background jobs run on workers inside the application process, so scale
    by running more containers rather than uvicorn workers.
    """
    settings = get_settings()
    uvicorn.run(
        "quire.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=1,
        proxy_headers=True,
        # keep the JSON handlers installed by quire.api.main
        log_config=None,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":  # pragma: no cover
    main()
