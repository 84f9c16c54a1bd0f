"""foreground-child entry point.

Supports: python -m foreground_child program [args...]
"""

from .app import main

if __name__ == "__main__":
    main()
