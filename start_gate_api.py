"""
Start Gate Engine API Server

Run the Signal Gate Engine REST API (webhook intake) on port 3000.
Settings are read from the environment, after loading a local .env file.
"""

import os
import sys
import logging
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

# Ensure logs directory exists before the file handler opens it
Path("logs").mkdir(exist_ok=True)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('logs/gate_engine_api.log')
    ]
)

logger = logging.getLogger(__name__)


def main():
    """Start Gate Engine API server"""
    load_dotenv()

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "3000"))

    logger.info("=" * 80)
    logger.info("SIGNAL GATE ENGINE API")
    logger.info("=" * 80)
    logger.info(f"Starting server on http://{host}:{port}")
    logger.info(f"Webhook: POST http://{host}:{port}/webhook")
    logger.info(f"Swagger UI: http://{host}:{port}/docs")
    logger.info("=" * 80)

    try:
        uvicorn.run(
            "brainrelay.gate_engine.api:app",
            host=host,
            port=port,
            log_level="info",
            reload=False
        )
    except KeyboardInterrupt:
        logger.info("\nShutting down Gate Engine API...")
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
