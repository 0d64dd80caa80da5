# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/bootstrap/values.py

from __future__ import annotations

import logging
import os
import re
import tempfile
from collections.abc import Hashable
from pathlib import Path
from typing import List, Optional

import yaml

from meshboot.errors import ValuesPatchError

log = logging.getLogger("meshboot")

TRUST_ANCHORS_KEY = "trustAnchorsPEM"
ISSUER_SECRET_KEY = "existingIssuerSecret"
DEFAULT_ISSUER_SECRET = "linkerd-issuer"

_ISSUER_SECRET_LINE = re.compile(r"^(?P<indent>[ \t]*)#?[ \t]*existingIssuerSecret:.*$")
_IDENTITY_LINE = re.compile(r"^identity:[ \t]*(#.*)?$")
_ISSUER_LINE = re.compile(r"^(?P<indent>[ \t]+)issuer:[ \t]*(#.*)?$")


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects repeated mapping keys instead of keeping the last."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if isinstance(key, Hashable) and key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping", node.start_mark,
                    f"found duplicate key {key!r}", key_node.start_mark,
                )
            if isinstance(key, Hashable):
                seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip(" \t"))


def _is_blank(line: str) -> bool:
    return not line.strip()


def _join(lines: List[str], trailing_newline: bool) -> str:
    out = "\n".join(lines)
    return out + "\n" if trailing_newline else out


def _pem_block(indent: str, pem: str) -> List[str]:
    body = [l.rstrip() for l in pem.strip().splitlines()]
    if not body:
        raise ValuesPatchError("Refusing to write an empty trust anchor")
    return [f"{indent}{TRUST_ANCHORS_KEY}: |"] + [f"{indent}  {l}" for l in body]


def set_trust_anchors(text: str, pem: str) -> str:
    """
    Replace the value of the ``trustAnchorsPEM:`` key with a literal block.

    The old value is every following line indented deeper than the key,
    stopping at the first blank line or shallower line, which is kept. A
    missing key is appended at the end of the document.
    """
    pem = pem.replace("\r\n", "\n")
    lines = text.splitlines()
    trailing = text.endswith("\n") or not text

    for i, line in enumerate(lines):
        fields = line.split()
        if not fields or fields[0] != f"{TRUST_ANCHORS_KEY}:":
            continue

        key_indent = _indent(line)
        end = i + 1
        while end < len(lines):
            nxt = lines[end]
            if _is_blank(nxt) or _indent(nxt) <= key_indent:
                break
            end += 1

        block = _pem_block(line[:key_indent], pem)
        return _join(lines[:i] + block + lines[end:], trailing)

    if lines and not _is_blank(lines[-1]):
        lines.append("")
    return _join(lines + _pem_block("", pem), True)


def _child_indent(lines: List[str], parent: int) -> str:
    """Indentation used by the children of lines[parent], or parent + 2 spaces."""
    base = _indent(lines[parent])
    for line in lines[parent + 1:]:
        if _is_blank(line) or line.lstrip().startswith("#"):
            continue
        if _indent(line) > base:
            return line[:_indent(line)]
        break
    return lines[parent][:base] + "  "


def _block_end(lines: List[str], start: int) -> int:
    """Index just past the block opened by lines[start]."""
    base = _indent(lines[start])
    end = start + 1
    while end < len(lines):
        line = lines[end]
        if not _is_blank(line) and not line.lstrip().startswith("#") and _indent(line) <= base:
            break
        end += 1
    # leave trailing blank lines to the next block
    while end > start + 1 and _is_blank(lines[end - 1]):
        end -= 1
    return end


def set_existing_issuer_secret(text: str, secret: str = DEFAULT_ISSUER_SECRET) -> str:
    """
    Make ``identity.issuer.existingIssuerSecret`` point at ``secret``.

    An existing ``existingIssuerSecret:`` line is rewritten in place at its own
    indentation, preferring a live key over a commented-out one; any other
    matching lines are dropped so the key appears once. Otherwise the key is inserted under
    ``issuer:`` in the top-level ``identity:`` block, creating the missing
    levels as needed.
    """
    lines = text.splitlines()
    trailing = text.endswith("\n") or not text

    matches = []
    for i, line in enumerate(lines):
        m = _ISSUER_SECRET_LINE.match(line)
        if m:
            matches.append((i, m))
    if matches:
        # the live key wins over commented examples; the rest are dropped
        keep, m = next(((i, m) for i, m in matches if not lines[i].lstrip().startswith("#")), matches[0])
        lines[keep] = f"{m.group('indent')}{ISSUER_SECRET_KEY}: {secret}"
        drop = {i for i, _ in matches if i != keep}
        return _join([l for i, l in enumerate(lines) if i not in drop], trailing)

    identity = next((i for i, l in enumerate(lines) if _IDENTITY_LINE.match(l)), None)
    if identity is None:
        if lines and not _is_blank(lines[-1]):
            lines.append("")
        lines += ["identity:", "  issuer:", f"    {ISSUER_SECRET_KEY}: {secret}"]
        return _join(lines, True)

    end = _block_end(lines, identity)
    issuer: Optional[int] = None
    for i in range(identity + 1, end):
        if _ISSUER_LINE.match(lines[i]):
            issuer = i
            break

    if issuer is None:
        child = _child_indent(lines, identity)
        insert = [f"{child}issuer:", f"{child}  {ISSUER_SECRET_KEY}: {secret}"]
        lines[identity + 1:identity + 1] = insert
        return _join(lines, trailing)

    child = _child_indent(lines, issuer)
    lines.insert(issuer + 1, f"{child}{ISSUER_SECRET_KEY}: {secret}")
    return _join(lines, trailing)


def _verify(text: str, pem: str, secret: str, path: Path) -> None:
    try:
        data = yaml.load(text, Loader=_UniqueKeyLoader) or {}
    except yaml.YAMLError as e:
        raise ValuesPatchError(f"Patched {path} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ValuesPatchError(f"Patched {path} is not a YAML mapping")

    anchors = data.get(TRUST_ANCHORS_KEY)
    if not isinstance(anchors, str) or anchors.strip() != pem.strip():
        raise ValuesPatchError(f"{TRUST_ANCHORS_KEY} in {path} does not hold the root CA after patching")

    issuer = ((data.get("identity") or {}).get("issuer") or {})
    if issuer.get(ISSUER_SECRET_KEY) != secret:
        raise ValuesPatchError(f"identity.issuer.{ISSUER_SECRET_KEY} in {path} is not {secret!r} after patching")


def patch_values_text(text: str, pem: str, secret: str = DEFAULT_ISSUER_SECRET) -> str:
    return set_existing_issuer_secret(set_trust_anchors(text, pem), secret)


def patch_values_file(
    path: str | Path,
    pem: str,
    secret: str = DEFAULT_ISSUER_SECRET,
    *,
    dry_run: bool = False,
) -> bool:
    """
    Patch trustAnchorsPEM and existingIssuerSecret into a Helm values file.

    The result must parse and carry both values, otherwise ValuesPatchError is
    raised and the file is left as it was. The write goes through a temp file
    in the same directory and os.replace. Returns True when the file changed.
    """
    path = Path(path)
    if not path.is_file():
        raise ValuesPatchError(f"Missing {path}")
    pem = pem.replace("\r\n", "\n")

    original = path.read_text()
    patched = patch_values_text(original, pem, secret)
    _verify(patched, pem, secret, path)

    if patched == original:
        log.info("%s already up to date", path)
        return False

    if dry_run:
        log.info("[DRY-RUN] would patch %s", path)
        return True

    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(patched)
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise

    log.info("Patched %s with %s + %s", path, TRUST_ANCHORS_KEY, ISSUER_SECRET_KEY)
    return True
