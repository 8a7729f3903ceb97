# Copyright 2024 the President and Fellows of Harvard College
# Licensed under the MIT License

"""
Decoding DASCH reference-catalog source numbers.

A reference number is a decimal integer whose leading digit identifies the
catalog that the source came from. The remaining digits encode the
identifier within that catalog.
"""

__all__ = ["refnum_to_text"]


def _dasch_apass(prefix: str, text: str) -> str:
    # 15 digits: code, 6 of RA, 1 fractional, sign (1 = +, 2 = -), 6 of dec
    if len(text) != 15:
        return "MALFORMED-DASCH/APASS"

    rest = text[1:]
    sign = {"1": "+", "2": "-"}.get(rest[7])

    if sign is None:
        return "MALFORMED-DASCH/APASS"

    return f"{prefix}{rest[:6]}.{rest[6]}{sign}{rest[8:]}"


def refnum_to_text(refnum: int) -> str:
    """
    Convert a numeric DASCH reference number to its textual form.

    Examples
    ========
    >>> refnum_to_text(0)
    'NONE'
    >>> refnum_to_text(2757614)
    'K757614'
    >>> refnum_to_text(412345671000000)
    'APASS_J123456.7+000000'
    """

    if refnum < 0:
        raise ValueError(f"illegal reference number {refnum!r}")

    if refnum == 0:
        return "NONE"

    text = str(refnum)
    code, rest = text[0], text[1:]

    if code == "1":
        # Guide Star Catalog
        if rest[:1] == "1":
            return "N" + rest[1:]
        if rest[:1] == "2":
            return "S" + rest[1:]
    elif code == "2":
        # Kepler Input Catalog
        return "K" + rest
    elif code == "3":
        # DASCH-internal sources
        return _dasch_apass("DASCH_J", text)
    elif code == "4":
        # APASS DR8
        return _dasch_apass("APASS_J", text)
    elif code == "5":
        # Tycho-2
        return "T" + rest
    elif code == "6":
        # UCAC4
        return "U" + rest
    elif code == "7":
        return "UNHANDLED-GAIA1"
    elif code == "8":
        return "UNHANDLED-GAIA2"
    elif code == "9":
        # ATLAS-refcat2
        return "ATLAS2_" + rest

    return "UNKNOWN"
