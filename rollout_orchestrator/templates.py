import re

_ASSIGNMENT = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=")


def _format_value(value):
    value = str(value)
    if value == "" or re.search(r"[\s#'\"]", value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return value


def render_env_file(base, overrides=None, header_lines=()):
    """Render an env file from a base file's text plus per-target overrides.

    Lines and comments of base are kept. An assignment whose key is in
    overrides is replaced in place (every occurrence); override keys the base
    does not define are appended in the order given. Header lines are
    written first as comments.
    """
    overrides = dict(overrides or {})
    out = [f"# {line}" if line else "#" for line in header_lines]
    if out:
        out.append("")

    seen = set()
    for line in base.splitlines():
        match = _ASSIGNMENT.match(line)
        if match and match.group(1) in overrides:
            key = match.group(1)
            out.append(f"{key}={_format_value(overrides[key])}")
            seen.add(key)
        else:
            out.append(line)

    for key, value in overrides.items():
        if key not in seen:
            out.append(f"{key}={_format_value(value)}")

    return "\n".join(out) + "\n"
