"""
Account address validation for the XRP Ledger.

Pure predicate with no ledger access, so recipient sets can be checked
before anything touches the network. Decoding and checksum rules are
xrpl-py's address codec; the ledger client uses this same function.
"""

from xrpl.core.addresscodec import is_valid_classic_address


def is_valid_address(value: object) -> bool:
    """
    Check whether a value is a well-formed classic account address.

    Args:
        value: Candidate address (anything; non-strings are rejected)

    Returns:
        True if the address decodes and its checksum matches
    """
    return isinstance(value, str) and is_valid_classic_address(value)
