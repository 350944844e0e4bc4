"""
ca_manager — certificate authority lifecycle manager.

Initializes root and intermediate CAs, issues and revokes host and client
certificates under them, and keeps the serial counter, issued-certificate
ledger and revocation list of each CA consistent.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
