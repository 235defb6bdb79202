"""Allow ``python -m royalty_indexer``."""

from .cli import main

if __name__ == "__main__":
    main()
