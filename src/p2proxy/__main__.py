"""`python -m p2proxy` and the `p2proxy` console script."""

from p2proxy.cli.app import app


def main() -> None:
    app(prog_name="p2proxy")


if __name__ == "__main__":
    main()
