"""Allow ``python -m livequery_rest``."""

from .cli import main

if __name__ == "__main__":
    main()
