"""Command line interface modules.

This package provides the command-line tools for:
- Starting the authenticating SOCKS5 proxy server
- Adding users to the credential file
- Printing the per-user traffic ledger

The administrative commands operate on the same state files as the
server and should not be run while it is serving if ledger consistency
matters.
"""
