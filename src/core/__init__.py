"""Core package - loads environment variables on first import."""

from pathlib import Path

from dotenv import load_dotenv

# API keys and tuning knobs may live in a .env next to the working directory
# or in any parent of it; the nearest one wins.
for _candidate in [Path.cwd() / ".env"] + [p / ".env" for p in Path.cwd().parents]:
    if _candidate.exists():
        load_dotenv(_candidate, override=False)
        break
