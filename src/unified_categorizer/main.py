import os

import uvicorn

from unified_categorizer.core import settings
from unified_categorizer.logger import get_logging_config


def main() -> None:
    host = os.getenv("HOST", "0.0.0.0")
    port = settings.get_env_int("PORT", 8000, min_value=1)
    uvicorn.run(
        "unified_categorizer.app:app",
        host=host,
        port=port,
        log_config=get_logging_config(),
    )


if __name__ == "__main__":
    main()
