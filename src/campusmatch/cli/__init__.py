"""campusmatch command line interface."""


def main() -> None:
    """CLI entrypoint for the campusmatch console script."""
    from campusmatch.cli.app import app

    app()
