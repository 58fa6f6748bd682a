"""Allow `python -m selfheal`."""
from selfheal.cli import main

raise SystemExit(main())
