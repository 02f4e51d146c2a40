import logging

from waitress import serve

from app import app, config

logger = logging.getLogger("civicflow.serve")


if __name__ == "__main__":
    logger.info("Serving CivicFlow API on %s:%s (%s)", config.HOST, config.PORT, config.APP_ENV)
    serve(app, host=config.HOST, port=config.PORT)
