"""Entry point for the wm-bridge daemon when run as a module."""

from .daemon import run

if __name__ == "__main__":
    run()
