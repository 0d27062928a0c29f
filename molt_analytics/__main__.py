"""
使用方式:
    python -m molt_analytics collect
    python -m molt_analytics serve
"""

from .main import cli

if __name__ == "__main__":
    cli()
