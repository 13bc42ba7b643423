"""Executable entrypoint for `python -m shardmetrics.bot`."""
from .main import main

if __name__ == "__main__":
    main()
