# stockcore test suite
#
# Service, route, CLI and concurrency tests (pytest).
#
# Run with: python -m pytest
