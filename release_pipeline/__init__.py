"""Release pipeline package.

Automates the release of a two-crate Rust workspace: run the test matrix
across toolchains, tag the current revision with the version from the
version file, then publish the package units to the registry in dependency
order. Every stage gates the next; the first failure ends the run.

Package Structure
-----------------
- `stages/`:
    Headless collaborators: version resolver, toolchain matrix runner, tag
    publisher, registry probe and package publisher.
- `orchestration/`:
    The stage graph orchestrator (state machine), release wiring and Rich
    status rendering.
- `cli.py`: Trigger entry point (`release-pipeline`, `python -m release_pipeline`).
- `settings.py`: Runtime settings from the environment and `.env`.
- `config.py`: Configuration constants, as UPPER_SNAKE_CASE.
- `exceptions.py`: Project-specific exception taxonomy.
- `commands.py`, `locking.py`: Subprocess execution and per-version locks.

Examples
--------
>>> import release_pipeline
>>> release_pipeline.__version__
'0.1.0'
"""

__version__ = "0.1.0"
