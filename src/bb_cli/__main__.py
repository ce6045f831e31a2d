"""Entry point: python -m bb_cli."""

from bb_cli.main import main

if __name__ == "__main__":
    main()
