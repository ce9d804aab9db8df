"""E2E test fixtures.

These tests drive the real ``cdk`` and ``sam`` CLIs (plus Docker for
bundling) and run only with ``--run-integ``. Point the harness at other
binaries with ``CLI_INTEG_CDK`` / ``CLI_INTEG_SAM``.
"""
