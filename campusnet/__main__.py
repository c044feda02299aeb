import uvicorn

from campusnet.config import settings


def main() -> None:
    uvicorn.run(
        "campusnet.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_config=None,
    )


if __name__ == "__main__":
    main()
