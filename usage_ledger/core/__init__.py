"""
Core modules for the usage ledger.

This package contains the error taxonomy, access policies, pricing and
reporting helpers shared by storage, CLI and SDK.
"""
