from typing import Dict


def parse_curl_cookie(cookie: str) -> Dict[str, str]:
    """Turn a curl ``-b`` style string (``a=1; b=2``) into a name -> value dict."""
    parsed: Dict[str, str] = {}
    for part in cookie.split(";"):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition("=")
        if not sep or not name:
            raise ValueError(f"cookie element {part!r} not in name=value format")
        parsed[name.strip()] = value
    if not parsed:
        raise ValueError("cookie string is empty")
    return parsed
