"""Main module for the gator CLI.

This module allows the CLI to be run as a Python module using:
python -m gator

It delegates to the CLI application's main function.
"""

from gator.cli.app import main

if __name__ == "__main__":
    main()
