# tvarchiver/__main__.py
import sys
from .cli import app


def cli(argv=None):
    """Lets ``python -m tvarchiver [args]`` behave like the ``tvarchiver`` script."""
    return app(args=argv if argv is not None else sys.argv[1:], prog_name="tvarchiver")


if __name__ == "__main__":
    sys.exit(cli())
