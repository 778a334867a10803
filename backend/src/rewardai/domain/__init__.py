"""
Domain package - Core distribution and funding logic with no I/O.

This package contains pure Python domain models, allocation math,
recipient validation and the invoice state machine. Nothing here
performs I/O; ledger and facilitator access live in the services package.
"""
