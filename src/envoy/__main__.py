"""Entry point for running Envoy as a module.

Usage:
    python -m envoy validate-config
    python -m envoy --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from envoy.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
