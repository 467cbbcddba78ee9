"""
Entry point for running StoreForge as a module.

Usage:
    python -m storeforge chat --merchant m1 --store s1
    python -m storeforge --help
"""

from storeforge.app.main import main

if __name__ == "__main__":
    raise SystemExit(main())
