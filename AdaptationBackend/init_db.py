# init_db.py
import logging

from database import Base, engine
import models.adaptation  # noqa: F401  (enregistre les tables)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

logger.info("Creating tables...")
Base.metadata.create_all(bind=engine)
logger.info("Tables created")
