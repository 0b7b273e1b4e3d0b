import uvicorn
from dotenv import load_dotenv

from core.config import settings
from core.logging import get_module_logger
from server import server

load_dotenv()

server_app = server.handler
logger = get_module_logger()


def main():
    """Run the HTTP server."""
    logger.info(
        "server_starting",
        host=settings.server.HOST,
        port=settings.server.PORT,
        git_sha=settings.GIT_SHA,
    )
    uvicorn.run(server_app, host=settings.server.HOST, port=settings.server.PORT)


if __name__ == "__main__":
    main()
