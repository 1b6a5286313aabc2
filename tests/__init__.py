"""Test suites for the wallet analysis packages."""
