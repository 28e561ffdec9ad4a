import uvicorn

from clubpass_api.core.settings import settings


def main() -> None:
    """Serve the POS and admin API; auto-reload only while developing."""
    uvicorn.run(
        "clubpass_api.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":
    main()
