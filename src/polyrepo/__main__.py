"""Allow running as python -m polyrepo."""

from .cli import main

if __name__ == "__main__":
    main()
