from __future__ import annotations

import os

import uvicorn

from taskcal.logging_setup import setup_logging


def main() -> None:
    setup_logging(log_dir=os.getenv("TASKCAL_LOG_DIR") or None)
    host = os.getenv("TASKCAL_HOST", "127.0.0.1")
    port = int(os.getenv("TASKCAL_PORT", "8080"))
    uvicorn.run("taskcal.web_admin:create_app", host=host, port=port, reload=False, factory=True)


if __name__ == "__main__":
    main()
