"""Allow ``python -m lablaunch``."""

from lablaunch.cli import main

main()
