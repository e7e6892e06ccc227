"""
Read PowerShell DSC configuration scripts without a PowerShell host.

Finds the modules a configuration depends on through its ``Import-DscResource``
statements, and reports the lexical problems PowerShell itself would reject
(unterminated strings or comments, unbalanced delimiters) so that a broken
script is refused before anything is staged.

Analysis is performed offline using a small scanner plus pattern matching:
- Comments are blanked out before statements are read
- Only constant arguments are accepted, as PowerShell requires
- ``-Name`` without ``-ModuleName`` is resolved through a resource locator
"""

import logging
import re
from bisect import bisect_right
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dsc_publish.exceptions import ConfigurationParseError, DscPublishError, ResourceAccessError
from dsc_publish.models import BUILTIN_DSC_MODULE, ConfigurationParseResult, ParseIssue
from dsc_publish.modules import ModuleResolver
from dsc_publish.util.files import read_script

logger = logging.getLogger(__name__)

IMPORT_KEYWORD = "import-dscresource"
IMPORT_PARAMETERS = ("Name", "ModuleName", "ModuleVersion")
MODULE_VERSION_PATTERN = re.compile(r"^\d+(\.\d+){1,3}$")

# Matched against the text preceding a "{" to recognise a configuration body
CONFIGURATION_HEADER = re.compile(r"(?<![\w$-])configuration\s+[\w-]+\s*$", re.IGNORECASE)

_OPENERS = {"(": ")", "{": "}", "[": "]"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}
_MISSING_CLOSER = {
    "{": "Missing closing '}' in statement block or type definition.",
    "(": "Missing closing ')' in expression.",
    "[": "Missing closing ']'.",
}
_COMMENT_MAY_FOLLOW = set(" \t\r\n;({[,|=})]")
_STATEMENT_END = set("\r\n;})")
_BAREWORD_END = set(" \t\r\n,;)}")


@dataclass
class _Frame:
    char: str
    offset: int
    configuration: bool = False


@dataclass
class _ScanResult:
    masked: str = ""
    imports: list[tuple[int, bool]] = field(default_factory=list)
    issues: list[tuple[int, str]] = field(default_factory=list)


class _UnsupportedArgument(Exception):
    def __init__(self, offset: int, message: str):
        self.offset = offset
        self.message = message
        super().__init__(message)


def parse_configuration(
    path: Path, resource_locator: ModuleResolver | None = None
) -> ConfigurationParseResult:
    """
    Collect the modules a configuration script imports.

    ``PSDesiredStateConfiguration`` is always part of the result: its built-in
    resources are available to every configuration.

    Args:
        path: Configuration script (.ps1 or .psm1)
        resource_locator: Used to find the module owning a resource that is
            imported by ``-Name`` only

    Returns:
        ConfigurationParseResult with modules and every error found

    Raises:
        OSError: If the script cannot be read
        ResourceAccessError: If a resource imported by name cannot be located
    """
    path = Path(path)
    result = ConfigurationParseResult(path=path)
    try:
        text = read_script(path)
    except UnicodeDecodeError as e:
        result.errors.append(
            ParseIssue(f"The file is not valid {e.encoding} text: {e.reason} at byte {e.start}.")
        )
        return result

    line_starts = _line_starts(text)

    def issue(offset: int, message: str) -> None:
        line, column = _position(line_starts, offset)
        result.errors.append(ParseIssue(message, line, column))

    scan = _scan(text)
    for offset, message in scan.issues:
        issue(offset, message)

    # Statement arguments are only trustworthy in a lexically valid script
    if not scan.issues:
        for offset, in_configuration in scan.imports:
            if not in_configuration:
                issue(offset, "Import-DscResource can only be used inside a Configuration block.")
                continue
            try:
                modules, resources = _read_import_statement(
                    scan.masked, offset + len(IMPORT_KEYWORD)
                )
            except _UnsupportedArgument as e:
                issue(e.offset, e.message)
                continue

            for name, version in modules:
                _add_module(result, name, version, lambda msg, o=offset: issue(o, msg))

            for resource in resources:
                name, version = _locate_resource(resource, resource_locator)
                _add_module(result, name, version, lambda msg, o=offset: issue(o, msg))

    if not _find_module(result.required_modules, BUILTIN_DSC_MODULE):
        result.required_modules[BUILTIN_DSC_MODULE] = None

    logger.debug(
        "Parsed %s: %d module(s), %d error(s)",
        path,
        len(result.required_modules),
        len(result.errors),
    )
    return result


def load_required_modules(
    path: Path, resource_locator: ModuleResolver | None = None
) -> dict[str, str | None]:
    """
    Parse a configuration and return the modules that must be packaged.

    Raises:
        ResourceAccessError: If the script or a referenced resource cannot be accessed
        ConfigurationParseError: If the script has parse errors (all are listed)
    """
    logger.info("Parsing configuration script: %s", path)
    try:
        result = parse_configuration(path, resource_locator)
    except OSError as e:
        raise ResourceAccessError(f"cannot read '{path}': {e.strerror or e}") from e

    if result.has_errors:
        raise ConfigurationParseError(str(path), [str(error) for error in result.errors])

    return without_builtin_module(result.required_modules)


def without_builtin_module(modules: dict[str, str | None]) -> dict[str, str | None]:
    """Drop PSDesiredStateConfiguration; the target node always ships the latest one."""
    return {
        name: version
        for name, version in modules.items()
        if name.lower() != BUILTIN_DSC_MODULE.lower()
    }


def _locate_resource(
    resource: str, resource_locator: ModuleResolver | None
) -> tuple[str, str | None]:
    if resource_locator is None:
        raise ResourceAccessError(f"no module resolver available to locate resource '{resource}'")
    try:
        return resource_locator.find_resource_module(resource)
    except DscPublishError as e:
        raise ResourceAccessError(f"resource '{resource}': {e.message}") from e


def _find_module(modules: dict[str, str | None], name: str) -> str | None:
    for key in modules:
        if key.lower() == name.lower():
            return key
    return None


def _add_module(result: ConfigurationParseResult, name: str, version: str | None, report) -> None:
    existing = _find_module(result.required_modules, name)
    if existing is None:
        result.required_modules[name] = version
        return

    current = result.required_modules[existing]
    if version is None or current == version:
        return
    if current is None:
        result.required_modules[existing] = version
        return
    report(f"Module '{name}' is imported with conflicting versions {current} and {version}.")


def _line_starts(text: str) -> list[int]:
    starts = [0]
    for match in re.finditer("\n", text):
        starts.append(match.end())
    return starts


def _position(line_starts: list[int], offset: int) -> tuple[int, int]:
    line = bisect_right(line_starts, offset)
    return line, offset - line_starts[line - 1] + 1


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


def _scan(text: str) -> _ScanResult:
    """Blank out comments, track delimiters and record Import-DscResource keywords."""
    masked = list(text)
    result = _ScanResult()
    stack: list[_Frame] = []
    n = len(text)
    i = 0

    def blank(start: int, end: int) -> None:
        for k in range(start, end):
            if masked[k] not in "\r\n":
                masked[k] = " "

    while i < n:
        ch = text[i]
        prev = text[i - 1] if i else "\n"

        if ch == "`":
            i += 2
            continue

        if text.startswith("<#", i):
            end = text.find("#>", i + 2)
            if end == -1:
                result.issues.append((i, "The comment is missing the terminator: #>."))
                blank(i, n)
                break
            blank(i, end + 2)
            i = end + 2
            continue

        if ch == "#" and prev in _COMMENT_MAY_FOLLOW:
            end = text.find("\n", i)
            end = n if end == -1 else end
            blank(i, end)
            i = end
            continue

        if ch == "@" and text[i + 1 : i + 2] in ("'", '"'):
            i = _skip_here_string(text, i, result)
            continue

        if ch in ("'", '"'):
            i = _skip_string(text, i, result)
            continue

        if ch in _OPENERS:
            configuration = ch == "{" and bool(
                CONFIGURATION_HEADER.search("".join(masked[max(0, i - 256) : i]))
            )
            stack.append(_Frame(ch, i, configuration))
            i += 1
            continue

        if ch in _CLOSERS:
            opener = _CLOSERS[ch]
            if any(frame.char == opener for frame in stack):
                while stack[-1].char != opener:
                    frame = stack.pop()
                    result.issues.append((frame.offset, _MISSING_CLOSER[frame.char]))
                stack.pop()
            else:
                result.issues.append((i, f"Unexpected token '{ch}' in expression or statement."))
            i += 1
            continue

        end = i + len(IMPORT_KEYWORD)
        if (
            ch in "iI"
            and text[i:end].lower() == IMPORT_KEYWORD
            and not _is_word_char(prev)
            and not _is_word_char(text[end : end + 1])
        ):
            result.imports.append((i, any(frame.configuration for frame in stack)))
            i = end
            continue

        i += 1

    for frame in stack:
        result.issues.append((frame.offset, _MISSING_CLOSER[frame.char]))

    result.masked = "".join(masked)
    return result


def _is_word_char(ch: str) -> bool:
    return bool(ch) and (ch.isalnum() or ch in "_-")


def _skip_string(text: str, start: int, result: _ScanResult) -> int:
    quote = text[start]
    n = len(text)
    i = start + 1
    while i < n:
        ch = text[i]
        if quote == '"' and ch == "`":
            i += 2
            continue
        if ch == quote:
            if text[i + 1 : i + 2] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    result.issues.append((start, f"The string is missing the terminator: {quote}."))
    return n


def _skip_here_string(text: str, start: int, result: _ScanResult) -> int:
    quote = text[start + 1]
    header_end = text.find("\n", start + 2)
    if header_end == -1 or text[start + 2 : header_end].strip():
        result.issues.append(
            (
                start,
                "No characters are allowed after a here-string header "
                "but before the end of the line.",
            )
        )
        return start + 2

    end = text.find("\n" + quote + "@", header_end)
    if end == -1:
        result.issues.append((start, f"The string is missing the terminator: {quote}@."))
        return len(text)
    return end + 3


# ---------------------------------------------------------------------------
# Import-DscResource arguments
# ---------------------------------------------------------------------------


def _read_import_statement(
    masked: str, offset: int
) -> tuple[list[tuple[str, str | None]], list[str]]:
    """
    Read one Import-DscResource statement.

    Returns:
        (modules, resources): module name/version pairs from -ModuleName, or,
        when no module is named, the resource names from -Name
    """
    reader = _ArgumentReader(masked, offset)
    named, positional = reader.read_arguments()
    bound = _bind_parameters(named, positional)

    modules: list[tuple[str, str | None]] = []
    for item in _flatten(bound.get("ModuleName")):
        if isinstance(item, dict):
            spec = {str(k).lower(): v for k, v in item.items()}
            name = spec.get("modulename")
            version = spec.get("requiredversion") or spec.get("moduleversion")
            if not isinstance(name, str) or not name:
                raise _UnsupportedArgument(offset, "Module specification is missing the ModuleName key.")
            modules.append((name, _check_version(version, offset)))
        else:
            modules.append((item, None))

    if "ModuleVersion" in bound:
        version = bound["ModuleVersion"]
        if not isinstance(version, str):
            raise _UnsupportedArgument(offset, "ModuleVersion must be a single version string.")
        if len(modules) != 1:
            raise _UnsupportedArgument(
                offset, "The ModuleVersion parameter can only be used with a single ModuleName."
            )
        modules = [(modules[0][0], _check_version(version, offset))]

    if modules:
        return modules, []

    resources = [item for item in _flatten(bound.get("Name")) if isinstance(item, str)]
    if not resources:
        raise _UnsupportedArgument(
            offset, "Import-DscResource requires a -ModuleName or -Name argument."
        )
    return [], resources


def _check_version(version: Any, offset: int) -> str | None:
    if version is None:
        return None
    if not isinstance(version, str) or not MODULE_VERSION_PATTERN.match(version):
        raise _UnsupportedArgument(offset, f"'{version}' is not a valid module version.")
    return version


def _flatten(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        items = []
        for item in value:
            items.extend(_flatten(item))
        return items
    return [value]


def _bind_parameters(
    named: list[tuple[str, Any, int]], positional: list[tuple[Any, int]]
) -> dict[str, Any]:
    bound: dict[str, Any] = {}
    for given, value, offset in named:
        matches = [p for p in IMPORT_PARAMETERS if p.lower().startswith(given.lower())]
        exact = [p for p in matches if p.lower() == given.lower()]
        if exact:
            matches = exact
        if not matches:
            raise _UnsupportedArgument(
                offset, f"A parameter cannot be found that matches parameter name '{given}'."
            )
        if len(matches) > 1:
            raise _UnsupportedArgument(
                offset,
                f"Parameter cannot be processed because the parameter name '{given}' is "
                f"ambiguous. Possible matches include: -{' -'.join(matches)}.",
            )
        if matches[0] in bound:
            raise _UnsupportedArgument(
                offset,
                f"Cannot bind parameter because parameter '{matches[0]}' "
                "is specified more than once.",
            )
        bound[matches[0]] = value

    for value, offset in positional:
        if "Name" in bound:
            raise _UnsupportedArgument(
                offset, f"A positional parameter cannot be found that accepts argument '{value}'."
            )
        bound["Name"] = value

    return bound


class _ArgumentReader:
    """Reads the constant arguments of a single statement from comment-free text."""

    def __init__(self, text: str, offset: int):
        self.text = text
        self.pos = offset

    def read_arguments(self) -> tuple[list[tuple[str, Any, int]], list[tuple[Any, int]]]:
        named: list[tuple[str, Any, int]] = []
        positional: list[tuple[Any, int]] = []

        while True:
            self._skip_inline_space()
            if self._at_statement_end():
                break

            start = self.pos
            if self._peek() == "-" and self._peek(1).isalpha():
                self.pos += 1
                name = self._read_while(lambda c: c.isalnum() or c == "_")
                if self._peek() == ":":
                    self.pos += 1
                self._skip_inline_space()
                if self._at_statement_end() or (
                    self._peek() == "-" and self._peek(1).isalpha()
                ):
                    raise _UnsupportedArgument(
                        start, f"Missing an argument for parameter '{name}'."
                    )
                named.append((name, self._read_value_list(), start))
            else:
                positional.append((self._read_value_list(), start))

        return named, positional

    def _peek(self, ahead: int = 0) -> str:
        return self.text[self.pos + ahead : self.pos + ahead + 1]

    def _at_statement_end(self) -> bool:
        return self.pos >= len(self.text) or self._peek() in _STATEMENT_END

    def _read_while(self, predicate) -> str:
        start = self.pos
        while self.pos < len(self.text) and predicate(self.text[self.pos]):
            self.pos += 1
        return self.text[start : self.pos]

    def _skip_inline_space(self) -> None:
        while self.pos < len(self.text):
            ch = self._peek()
            if ch in " \t":
                self.pos += 1
            elif ch == "`" and self._peek(1) in ("\r", "\n"):
                self.pos += 2
                if self.text[self.pos - 1] == "\r" and self._peek() == "\n":
                    self.pos += 1
            else:
                break

    def _skip_all_space(self) -> None:
        self._read_while(lambda c: c in " \t\r\n")

    def _read_value_list(self) -> Any:
        values = [self._read_value()]
        while True:
            save = self.pos
            self._skip_inline_space()
            if self._peek() != ",":
                self.pos = save
                break
            self.pos += 1
            self._skip_all_space()
            values.append(self._read_value())
        return values[0] if len(values) == 1 else values

    def _read_value(self) -> Any:
        ch = self._peek()
        if ch in ("'", '"'):
            return self._read_string()
        if self.text.startswith("@(", self.pos):
            return self._read_array()
        if self.text.startswith("@{", self.pos):
            return self._read_hashtable()
        if ch in ("$", "(", "["):
            raise _UnsupportedArgument(
                self.pos,
                "Import-DscResource only accepts constant values; "
                "variables and expressions cannot be used.",
            )
        return self._read_bareword()

    def _read_string(self) -> str:
        quote = self._peek()
        start = self.pos
        self.pos += 1
        chars = []
        while self.pos < len(self.text):
            ch = self._peek()
            if quote == '"' and ch == "`":
                chars.append(self._peek(1))
                self.pos += 2
                continue
            if quote == '"' and ch == "$" and re.match(r"[\w{(]", self._peek(1)):
                raise _UnsupportedArgument(
                    self.pos,
                    "Import-DscResource only accepts constant values; "
                    "variables and expressions cannot be used.",
                )
            if ch == quote:
                if self._peek(1) == quote:
                    chars.append(quote)
                    self.pos += 2
                    continue
                self.pos += 1
                return "".join(chars)
            chars.append(ch)
            self.pos += 1
        raise _UnsupportedArgument(start, f"The string is missing the terminator: {quote}.")

    def _read_bareword(self) -> str:
        start = self.pos
        word = self._read_while(lambda c: c not in _BAREWORD_END)
        if not word:
            raise _UnsupportedArgument(
                start, f"Unexpected token '{self._peek()}' in expression or statement."
            )
        return word

    def _read_array(self) -> list:
        start = self.pos
        self.pos += 2
        items = []
        while True:
            self._skip_all_space()
            ch = self._peek()
            if not ch:
                raise _UnsupportedArgument(start, "Missing closing ')' in expression.")
            if ch == ")":
                self.pos += 1
                return items
            if ch in ",;":
                self.pos += 1
                continue
            items.append(self._read_value())

    def _read_hashtable(self) -> dict:
        start = self.pos
        self.pos += 2
        table = {}
        while True:
            self._skip_all_space()
            ch = self._peek()
            if not ch:
                raise _UnsupportedArgument(
                    start, "Missing closing '}' in statement block or type definition."
                )
            if ch == "}":
                self.pos += 1
                return table
            if ch == ";":
                self.pos += 1
                continue

            if ch in ("'", '"'):
                key = self._read_string()
            else:
                key = self._read_while(lambda c: c not in " \t\r\n=;}")
            self._skip_inline_space()
            if self._peek() != "=":
                raise _UnsupportedArgument(
                    self.pos, "Missing '=' operator after key in hash literal."
                )
            self.pos += 1
            self._skip_inline_space()
            table[key] = self._read_value()
