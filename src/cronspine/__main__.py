"""Allow ``python -m cronspine``."""

from cronspine.cli.app import app

if __name__ == "__main__":
    app()
