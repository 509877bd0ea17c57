"""Allows running the CLI as: python -m wgbulk"""

from wgbulk.cli import main

if __name__ == "__main__":
    main()
