"""Entry point for running as module.

It can be run with: python -m cloudsql_shell INSTANCE [-- COMMAND ...]
"""


def main() -> None:
    """Main entry point."""
    from cloudsql_shell.cli.commands import app
    app()


if __name__ == "__main__":
    main()
