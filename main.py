"""
main.py
========
Central entry point for the audioscribe service.

Run with:
    uvicorn main:app --reload
"""

import logging

from dotenv import load_dotenv

load_dotenv()  # Load .env before any module reads env vars

# Configure logging for the entire application
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# Keep SDK / transport chatter out of the pipeline log
for _noisy_logger_name in (
    "openai",
    "openai._base_client",
    "httpx",
    "httpcore",
    "urllib3",
    "pydub.converter",
):
    logging.getLogger(_noisy_logger_name).setLevel(logging.WARNING)

from audioscribe.api.upload import app  # noqa: F401, E402

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
