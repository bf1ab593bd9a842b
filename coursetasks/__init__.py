"""Course tasks API: courses, tasks, attempts and grading over a DynamoDB single table."""

from dotenv import load_dotenv

# Modules read their settings from the environment at import time, so a local
# .env file has to be loaded before any of them. Real environment variables win.
load_dotenv()
