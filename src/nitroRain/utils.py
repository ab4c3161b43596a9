import re


def sanitize_filename(filename):
    """Sanitizes a string to be a valid filename."""
    s = str(filename).strip().replace(" ", "_")
    return re.sub(r"(?u)[^-\w.]", "", s)
