"""Entry point for running the action agent as a module.

Usage:
    python -m action_agent validate-config
    python -m action_agent --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from action_agent.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
