"""
Entry point for running the xwinkit CLI as a module.

Usage: python -m xwinkit [command] [options]
"""

from xwinkit.cli.parser import main

if __name__ == "__main__":
    main()
