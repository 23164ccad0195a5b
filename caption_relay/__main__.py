"""Package entry point for ``python -m caption_relay``.

RULES:
- This file must exist for ``python -m caption_relay`` to work
- Delegates to the CLI's main() function
"""

from caption_relay.cli import main

if __name__ == "__main__":
    main()
