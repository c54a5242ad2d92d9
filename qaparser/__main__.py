"""
Module entry point for: python -m qaparser

Allows running the parser directly as a module:
    python -m qaparser parse <pdf_path> [options]
    python -m qaparser batch <directory> [options]
    python -m qaparser lines <path>
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
