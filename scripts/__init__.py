"""
Scripts Package.

Operational scripts for the wallet analyzer.

Scripts:
- analyze_wallet: Run one analysis from the command line
"""
