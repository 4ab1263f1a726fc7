"""Allow ``python -m release_pipeline``."""

from release_pipeline.cli import main

raise SystemExit(main())
