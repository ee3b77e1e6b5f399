"""Allow running vmprov with ``python -m vmprov``."""

from vmprov.cli import main

if __name__ == "__main__":
    main()
