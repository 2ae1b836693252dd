"""Allow ``python -m hm_remote``."""

from .cli import app

if __name__ == "__main__":
    app(prog_name="hm-remote")
