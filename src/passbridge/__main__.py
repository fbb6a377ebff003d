"""Allow ``python -m passbridge``."""

from .cli import main

if __name__ == "__main__":
    main()
