"""Allow ``python -m tunnelport``."""

from __future__ import annotations

from tunnelport.cli.main import main

if __name__ == "__main__":
    main()
