import logging
from dotenv import load_dotenv
from database import init_db
from .events import get_publisher
from .scheduler import StatusScheduler

# Load environment variables from .env file
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


if __name__ == "__main__":
    # Initialize database
    init_db()
    logger.info("Database initialized")

    scheduler = StatusScheduler(publisher=get_publisher())
    try:
        scheduler.run_loop()
    except KeyboardInterrupt:
        scheduler.stop()
