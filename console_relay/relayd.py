"""Entry point for serving and talking to a console relay.

Usage:
  python -m console_relay.relayd serve --name myapp
  python -m console_relay.relayd send --name myapp myapp open file.txt
  python -m console_relay.relayd status --name myapp
"""

from __future__ import annotations

from console_relay.cli import relay_cli


def main() -> None:
    relay_cli(standalone_mode=True)


if __name__ == "__main__":
    main()
