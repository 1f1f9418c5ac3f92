"""Entry point for ``python -m captainos_build``."""

from captainos_build.cli import main

if __name__ == "__main__":
    main()
