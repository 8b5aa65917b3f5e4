import re

DEFAULT_SPACE_NAME: str = "ram"
EXTERNAL_BLOCK_NAME: str = "EXTERNAL"
MAX_NAME_LENGTH: int = 200

PLT_SECTION_NAME: str = ".plt"
GOT_SECTION_NAMES = (".got", ".got.plt")
SPLIT_SUFFIX: str = ".split"

_WHITESPACE_RE = re.compile(r"\s")


def is_valid_name(name: str) -> bool:
    """A name is valid when it is non-empty, contains no whitespace and does
    not exceed ``MAX_NAME_LENGTH`` characters.
    """
    if not isinstance(name, str) or not name:
        return False
    if len(name) > MAX_NAME_LENGTH:
        return False
    return _WHITESPACE_RE.search(name) is None
