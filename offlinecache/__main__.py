"""Allow running as ``python -m offlinecache``."""

from . import main

main()
