import uvicorn

from app.config.settings import settings


def main():
    """run the API with uvicorn (`python -m app` or `treasury-proxy`)"""
    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
