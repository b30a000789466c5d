import asyncio
import sys

from backend.app.core.logging import configure_logging
from backend.app.db import init_models

# Usage: python init_db.py [--drop]
# --drop recreates every table - DEV MODE ONLY

if __name__ == "__main__":
    configure_logging()
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(init_models(drop="--drop" in sys.argv))
